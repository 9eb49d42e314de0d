"""Implicit time windows for statistical queries."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from dateutil.relativedelta import relativedelta

from models.records import TIME_FIELD, WEATHERS_COLLECTION, DateRange, Scope
from services.errors import InvalidFilterValue

if TYPE_CHECKING:
    from datastore.mongo_store import DocumentStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScopeResolver:
    """Resolves the date window a statistical query runs over.

    Without an explicit range the window ends at the newest record of the
    scope (not at the current time), so replayed or historical datasets
    still produce populated windows.
    """

    def __init__(
        self,
        store: "DocumentStore",
        collection: str = WEATHERS_COLLECTION,
        time_field: str = TIME_FIELD,
        default_recent_months: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.collection = collection
        self.time_field = time_field
        self.default_recent_months = default_recent_months
        self.clock = clock

    def resolve_window(
        self,
        scope: Scope,
        explicit_range: Optional[DateRange] = None,
        recent_months: Optional[int] = None,
    ) -> DateRange:
        if explicit_range is not None:
            return explicit_range

        months = self.default_recent_months if recent_months is None else recent_months
        if isinstance(months, bool) or not isinstance(months, int) or months <= 0:
            raise InvalidFilterValue("recentMonths", recent_months, "expected a positive integer")

        latest = self.store.find_latest_timestamp(
            self.collection, scope.to_filter(), self.time_field
        )
        if latest is None:
            latest = self.clock()
            logger.warning(
                "No records found for scope; anchoring window to current time",
                extra={"collection": self.collection, "reason": repr(scope)},
            )

        window = DateRange(start=latest - relativedelta(months=months), end=latest)
        logger.debug(
            "Resolved statistics window",
            extra={
                "collection": self.collection,
                "window_start": window.start.isoformat(),
                "window_end": window.end.isoformat(),
            },
        )
        return window
