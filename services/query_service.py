"""Query orchestration between the HTTP layer and the document store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from datastore.mongo_store import MongoDocumentStore, build_default_store
from models.records import (
    TIME_FIELD,
    WEATHER_METRICS,
    WEATHERS_COLLECTION,
    DateRange,
    Scope,
)
from services.aggregator import StatGroupAssembler, extreme_stages
from services.errors import InvalidFilterValue
from services.filters import RESERVED_KEYS, ParameterMap, compile_filter, parse_sort
from services.pagination import PageResult, Paginator
from services.pipeline import PipelineBuilder, Stage
from services.scope import ScopeResolver, utcnow
from settings import get_settings

logger = logging.getLogger(__name__)

# Parameters the aggregate endpoints consume themselves; a bare ``deviceName``
# is the device scope, while ``deviceName[in]`` still compiles as a filter.
AGGREGATE_RESERVED_KEYS: FrozenSet[str] = RESERVED_KEYS | {
    "groupBy",
    "deviceName",
    "longitude",
    "latitude",
    "extreme",
}


@dataclass(frozen=True)
class AggregatePlan:
    stat_field: str
    stages: List[Stage]
    window: Optional[DateRange] = None
    group_by: Optional[str] = None
    grouped: bool = False


@dataclass
class AggregateResult:
    plan: AggregatePlan
    documents: List[Dict[str, Any]] = field(default_factory=list)


def _validate_stat_field(stat_field: str) -> None:
    if stat_field not in WEATHER_METRICS:
        raise InvalidFilterValue(
            "aggField", stat_field, f"expected one of {', '.join(WEATHER_METRICS)}"
        )


def _validate_group_by(group_by: Optional[str], stat_field: str) -> None:
    if group_by is None:
        return
    if not group_by.strip() or group_by.startswith("$"):
        raise InvalidFilterValue("groupBy", group_by, "expected a field name")
    if group_by == stat_field:
        # The summary is keyed by the stat field and would hide the group key.
        raise InvalidFilterValue("groupBy", group_by, "must differ from aggField")


def _field_of(key: str) -> str:
    return key.split("[", 1)[0]


class QueryService:
    """Compiles request parameters into pipelines and runs them."""

    def __init__(
        self,
        store: MongoDocumentStore,
        time_field: str = TIME_FIELD,
        include_median: bool = True,
        default_recent_months: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.time_field = time_field
        self.include_median = include_median
        self.resolver = ScopeResolver(
            store,
            collection=WEATHERS_COLLECTION,
            time_field=time_field,
            default_recent_months=default_recent_months,
            clock=clock,
        )

    def compile_filter(
        self,
        params: ParameterMap,
        reserved: Optional[Iterable[str]] = None,
        protected: Iterable[str] = (),
    ) -> Dict[str, Any]:
        return compile_filter(params, reserved, protected)

    def build_list_pipeline(
        self,
        predicate: Mapping[str, Any],
        sort: Optional[Mapping[str, int]],
        projection: Optional[Mapping[str, Any]],
        limit: int,
        page: int,
    ) -> List[Stage]:
        return (
            PipelineBuilder()
            .match(predicate)
            .sort(sort)
            .project(projection)
            .paginate(limit, page)
            .build()
        )

    def build_stats_pipeline(
        self,
        predicate: Mapping[str, Any],
        scope: Scope,
        stat_field: str,
        group_by: Optional[str] = None,
        recent_months: Optional[int] = None,
        explicit_range: Optional[DateRange] = None,
    ) -> AggregatePlan:
        _validate_stat_field(stat_field)
        _validate_group_by(group_by, stat_field)
        criteria, window = self._scoped_criteria(predicate, scope, recent_months, explicit_range)
        assembler = StatGroupAssembler(
            stat_field,
            group_by=group_by,
            time_field=self.time_field,
            include_median=self.include_median,
        )
        stages = PipelineBuilder().match(criteria).extend(assembler.stages()).build()
        return AggregatePlan(
            stat_field=stat_field,
            stages=stages,
            window=window,
            group_by=assembler.group_by,
            grouped=assembler.grouped,
        )

    def build_extremes_pipeline(
        self,
        predicate: Mapping[str, Any],
        scope: Scope,
        stat_field: str,
        extreme: str = "max",
        recent_months: Optional[int] = None,
        explicit_range: Optional[DateRange] = None,
    ) -> AggregatePlan:
        _validate_stat_field(stat_field)
        stages_tail = extreme_stages(stat_field, extreme, time_field=self.time_field)
        criteria, window = self._scoped_criteria(predicate, scope, recent_months, explicit_range)
        stages = PipelineBuilder().match(criteria).extend(stages_tail).build()
        return AggregatePlan(stat_field=stat_field, stages=stages, window=window)

    def _scoped_criteria(
        self,
        predicate: Mapping[str, Any],
        scope: Scope,
        recent_months: Optional[int],
        explicit_range: Optional[DateRange],
    ) -> tuple[Dict[str, Any], Optional[DateRange]]:
        scope_filter = scope.to_filter()
        for key in scope_filter:
            if key in predicate:
                raise InvalidFilterValue(key, predicate[key], "conflicts with the request scope")
        criteria: Dict[str, Any] = {**predicate, **scope_filter}
        if explicit_range is None and self.time_field in predicate:
            # The caller's own time filter bounds the query as given.
            return criteria, None
        window = self.resolver.resolve_window(scope, explicit_range, recent_months)
        condition = window.as_condition()
        if condition:
            criteria[self.time_field] = condition
        return criteria, window

    def list_documents(
        self,
        collection: str,
        params: ParameterMap,
        limit: int,
        page: int,
        defaults: Optional[ParameterMap] = None,
        default_sort: Optional[Mapping[str, int]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        protected_fields: Iterable[str] = (),
    ) -> PageResult[Dict[str, Any]]:
        paginator = Paginator(limit, page)
        predicate = self.compile_filter(
            {**(defaults or {}), **params}, protected=protected_fields
        )
        sort = parse_sort(params) or dict(default_sort or {})
        stages = self.build_list_pipeline(predicate, sort, projection, limit, page)
        result = paginator.result(self.store.execute_pipeline(collection, stages))
        logger.debug(
            "Listed documents",
            extra={"collection": collection, "total_count": result.total_count},
        )
        return result

    def stats(
        self,
        params: ParameterMap,
        stat_field: str,
        scope: Scope,
        group_by: Optional[str] = None,
        recent_months: Optional[int] = None,
        explicit_range: Optional[DateRange] = None,
    ) -> AggregateResult:
        predicate = self.compile_filter(params, AGGREGATE_RESERVED_KEYS)
        plan = self.build_stats_pipeline(
            predicate, scope, stat_field, group_by, recent_months, explicit_range
        )
        documents = self.store.execute_pipeline(WEATHERS_COLLECTION, plan.stages)
        return AggregateResult(plan=plan, documents=documents)

    def extremes(
        self,
        params: ParameterMap,
        stat_field: str,
        scope: Scope,
        extreme: str = "max",
        recent_months: Optional[int] = None,
        explicit_range: Optional[DateRange] = None,
    ) -> AggregateResult:
        predicate = self.compile_filter(params, AGGREGATE_RESERVED_KEYS)
        plan = self.build_extremes_pipeline(
            predicate, scope, stat_field, extreme, recent_months, explicit_range
        )
        documents = self.store.execute_pipeline(WEATHERS_COLLECTION, plan.stages)
        return AggregateResult(plan=plan, documents=documents)

    def find_document(
        self,
        collection: str,
        document_id: str,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        document = self.store.find_by_id(collection, document_id, projection)
        if document is None:
            raise KeyError(f"Document {document_id!r} not found in {collection!r}.")
        return document

    def delete_document(self, collection: str, document_id: str) -> int:
        deleted = self.store.delete_by_id(collection, document_id)
        if not deleted:
            raise KeyError(f"Document {document_id!r} not found in {collection!r}.")
        return deleted

    def delete_documents(
        self,
        collection: str,
        params: ParameterMap,
        fields: Union[str, Iterable[str]],
    ) -> int:
        """Delete documents matching the conditions given on ``fields`` only.

        Parameters naming any other field are ignored. At least one condition
        on ``fields`` is required so a bare request cannot empty the collection.
        """
        names = (fields,) if isinstance(fields, str) else tuple(fields)
        scoped = {key: value for key, value in params.items() if _field_of(key) in names}
        predicate = self.compile_filter(scoped)
        if not any(name in predicate for name in names):
            raise InvalidFilterValue(
                ", ".join(names), None, "a condition on this field is required"
            )
        return self.store.delete_many(collection, predicate)


@lru_cache
def build_default_query_service() -> QueryService:
    """Factory that wires the query service with the configured store."""
    settings = get_settings()
    return QueryService(
        store=build_default_store(),
        include_median=settings.stats_include_median,
        default_recent_months=settings.default_recent_months,
    )
