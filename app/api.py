"""HTTP route definitions for the service."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.schemas import (
    DeleteResponse,
    DocumentResponse,
    Extreme,
    ExtremesResponse,
    PagedResponse,
    StatsResponse,
    encode_documents,
)
from models.records import (
    LOGS_COLLECTION,
    USERS_COLLECTION,
    WEATHERS_COLLECTION,
    Scope,
)
from services.errors import ClientInputError, DocumentStoreError
from services.filters import parameter_map
from services.projection import ProjectionBuilder
from services.query_service import QueryService, build_default_query_service
from settings import get_settings

router = APIRouter()

MAX_PAGE_LIMIT = 1000

_LOG_TIME_FIELD = "deletedAt"
_LOG_DEFAULT_FILTER = {_LOG_TIME_FIELD: {"gte": "2021-01-01"}}
_LOG_DEFAULT_SORT = {_LOG_TIME_FIELD: -1}
_USER_HIDDEN_FIELDS = ("password",)
_USER_PROJECTION = ProjectionBuilder().hide(_USER_HIDDEN_FIELDS).build()
_USER_DELETE_FIELDS = ("role", "createdAt", "lastLoggedInAt")


def get_query_service() -> QueryService:
    return build_default_query_service()


@contextmanager
def _query_errors() -> Iterator[None]:
    try:
        yield
    except ClientInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except DocumentStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The document store failed to execute the query.",
        ) from exc
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.args[0] if exc.args else "Not found.",
        ) from exc


def _page_limit(limit: Optional[int]) -> int:
    return limit if limit is not None else get_settings().default_page_limit


def _scope(
    device_name: Optional[str],
    longitude: Optional[float],
    latitude: Optional[float],
) -> Scope:
    if (longitude is None) != (latitude is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="longitude and latitude must be supplied together.",
        )
    point = (longitude, latitude) if longitude is not None and latitude is not None else None
    return Scope(device=device_name or None, point=point)


@router.get(
    "/weathers",
    response_model=PagedResponse,
    summary="List weather readings with filters, sorting and pagination.",
)
def list_weathers(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_LIMIT),
    page: int = Query(1, ge=1),
    service: QueryService = Depends(get_query_service),
) -> PagedResponse:
    page_limit = _page_limit(limit)
    with _query_errors():
        result = service.list_documents(
            WEATHERS_COLLECTION,
            parameter_map(request.query_params.multi_items()),
            limit=page_limit,
            page=page,
        )
    return PagedResponse.from_page(result, page_limit)


@router.get(
    "/weathers/stats",
    response_model=StatsResponse,
    summary="Max, min, average and median of a metric, optionally per group.",
)
def weather_stats(
    request: Request,
    agg_field: str = Query(..., alias="aggField"),
    group_by: Optional[str] = Query(None, alias="groupBy"),
    device_name: Optional[str] = Query(None, alias="deviceName"),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    recent_months: Optional[int] = Query(None, alias="recentMonths", ge=1),
    service: QueryService = Depends(get_query_service),
) -> StatsResponse:
    scope = _scope(device_name, longitude, latitude)
    with _query_errors():
        result = service.stats(
            parameter_map(request.query_params.multi_items()),
            stat_field=agg_field,
            scope=scope,
            group_by=group_by,
            recent_months=recent_months,
        )
    return StatsResponse.from_result(result)


@router.get(
    "/weathers/extremes",
    response_model=ExtremesResponse,
    summary="Readings tied at the maximum or minimum of a metric.",
)
def weather_extremes(
    request: Request,
    agg_field: str = Query(..., alias="aggField"),
    extreme: Extreme = Query(Extreme.max),
    device_name: Optional[str] = Query(None, alias="deviceName"),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    recent_months: Optional[int] = Query(None, alias="recentMonths", ge=1),
    service: QueryService = Depends(get_query_service),
) -> ExtremesResponse:
    scope = _scope(device_name, longitude, latitude)
    with _query_errors():
        result = service.extremes(
            parameter_map(request.query_params.multi_items()),
            stat_field=agg_field,
            scope=scope,
            extreme=extreme.value,
            recent_months=recent_months,
        )
    return ExtremesResponse.from_result(result, extreme)


@router.get(
    "/weathers/{weather_id}",
    response_model=DocumentResponse,
    summary="Fetch a single weather reading.",
)
def show_weather(
    weather_id: str,
    service: QueryService = Depends(get_query_service),
) -> DocumentResponse:
    with _query_errors():
        document = service.find_document(WEATHERS_COLLECTION, weather_id)
    return DocumentResponse(result=encode_documents([document])[0])


@router.get(
    "/logs",
    response_model=PagedResponse,
    summary="List soft-deleted weather readings, newest deletion first.",
)
def list_logs(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_LIMIT),
    page: int = Query(1, ge=1),
    service: QueryService = Depends(get_query_service),
) -> PagedResponse:
    page_limit = _page_limit(limit)
    with _query_errors():
        result = service.list_documents(
            LOGS_COLLECTION,
            parameter_map(request.query_params.multi_items()),
            limit=page_limit,
            page=page,
            defaults=_LOG_DEFAULT_FILTER,
            default_sort=_LOG_DEFAULT_SORT,
        )
    return PagedResponse.from_page(result, page_limit)


@router.get(
    "/logs/{log_id}",
    response_model=DocumentResponse,
    summary="Fetch a single log record.",
)
def show_log(
    log_id: str,
    service: QueryService = Depends(get_query_service),
) -> DocumentResponse:
    with _query_errors():
        document = service.find_document(LOGS_COLLECTION, log_id)
    return DocumentResponse(result=encode_documents([document])[0])


@router.delete(
    "/logs/{log_id}",
    response_model=DeleteResponse,
    summary="Permanently delete a single log record.",
)
def delete_log(
    log_id: str,
    service: QueryService = Depends(get_query_service),
) -> DeleteResponse:
    with _query_errors():
        deleted = service.delete_document(LOGS_COLLECTION, log_id)
    return DeleteResponse(deleted_count=deleted)


@router.delete(
    "/logs",
    response_model=DeleteResponse,
    summary="Permanently delete log records within a deletedAt range.",
)
def delete_logs(
    request: Request,
    service: QueryService = Depends(get_query_service),
) -> DeleteResponse:
    with _query_errors():
        deleted = service.delete_documents(
            LOGS_COLLECTION,
            parameter_map(request.query_params.multi_items()),
            _LOG_TIME_FIELD,
        )
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Logs not found in this date range.",
        )
    return DeleteResponse(deleted_count=deleted)


@router.get(
    "/users",
    response_model=PagedResponse,
    summary="List user accounts without password hashes.",
)
def list_users(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_LIMIT),
    page: int = Query(1, ge=1),
    service: QueryService = Depends(get_query_service),
) -> PagedResponse:
    page_limit = _page_limit(limit)
    with _query_errors():
        result = service.list_documents(
            USERS_COLLECTION,
            parameter_map(request.query_params.multi_items()),
            limit=page_limit,
            page=page,
            projection=_USER_PROJECTION,
            protected_fields=_USER_HIDDEN_FIELDS,
        )
    return PagedResponse.from_page(result, page_limit)


@router.get(
    "/users/{user_id}",
    response_model=DocumentResponse,
    summary="Fetch a single user account without its password hash.",
)
def show_user(
    user_id: str,
    service: QueryService = Depends(get_query_service),
) -> DocumentResponse:
    with _query_errors():
        document = service.find_document(USERS_COLLECTION, user_id, _USER_PROJECTION)
    return DocumentResponse(result=encode_documents([document])[0])


@router.delete(
    "/users/batch",
    response_model=DeleteResponse,
    summary="Delete user accounts matching role, createdAt or lastLoggedInAt conditions.",
)
def delete_users(
    request: Request,
    service: QueryService = Depends(get_query_service),
) -> DeleteResponse:
    with _query_errors():
        deleted = service.delete_documents(
            USERS_COLLECTION,
            parameter_map(request.query_params.multi_items()),
            _USER_DELETE_FIELDS,
        )
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Users not found for these conditions.",
        )
    return DeleteResponse(deleted_count=deleted)


@router.delete(
    "/users/{user_id}",
    response_model=DeleteResponse,
    summary="Delete a single user account.",
)
def delete_user(
    user_id: str,
    service: QueryService = Depends(get_query_service),
) -> DeleteResponse:
    with _query_errors():
        deleted = service.delete_document(USERS_COLLECTION, user_id)
    return DeleteResponse(deleted_count=deleted)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
