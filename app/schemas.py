"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import DBRef, ObjectId
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.records import DateRange
from services.pagination import PageResult
from services.query_service import AggregateResult

_BSON_ENCODERS = {
    ObjectId: str,
    DBRef: lambda ref: {"$ref": ref.collection, "$id": str(ref.id)},
}


def encode_documents(documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Make store documents JSON-safe (ObjectId and DBRef become strings)."""
    return jsonable_encoder(documents, custom_encoder=_BSON_ENCODERS)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Extreme(str, Enum):
    """Which end of the value range an extremes query selects."""

    max = "max"
    min = "min"


class Paging(CamelModel):
    total_count: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    current_page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)


class PagedResponse(CamelModel):
    """One page of documents plus the paging metadata for the whole result."""

    paging: Paging
    result: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_page(cls, page: PageResult[Dict[str, Any]], limit: int) -> "PagedResponse":
        return cls(
            paging=Paging(
                total_count=page.total_count,
                total_pages=page.total_pages,
                current_page=page.current_page,
                limit=limit,
            ),
            result=encode_documents(page.data),
        )


class Window(CamelModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_range(cls, window: Optional[DateRange]) -> Optional["Window"]:
        if window is None:
            return None
        return cls(start=window.start, end=window.end)


class StatsResponse(CamelModel):
    """Per-group max/min/avg/median summaries of one weather metric."""

    field: str
    group_by: Optional[str] = None
    grouped: bool = False
    window: Optional[Window] = Field(
        default=None,
        description="Resolved time window; null when the request supplied its own time filter.",
    )
    result: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_result(cls, aggregate: AggregateResult) -> "StatsResponse":
        plan = aggregate.plan
        return cls(
            field=plan.stat_field,
            group_by=plan.group_by,
            grouped=plan.grouped,
            window=Window.from_range(plan.window),
            result=encode_documents(aggregate.documents),
        )


class ExtremesResponse(CamelModel):
    """Every reading tied at the extreme value, newest first."""

    field: str
    extreme: Extreme
    window: Optional[Window] = None
    result: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_result(cls, aggregate: AggregateResult, extreme: Extreme) -> "ExtremesResponse":
        return cls(
            field=aggregate.plan.stat_field,
            extreme=extreme,
            window=Window.from_range(aggregate.plan.window),
            result=encode_documents(aggregate.documents),
        )


class DocumentResponse(CamelModel):
    result: Dict[str, Any]


class DeleteResponse(CamelModel):
    deleted_count: int = Field(..., ge=0)
