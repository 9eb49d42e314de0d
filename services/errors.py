"""Error taxonomy for query translation and pipeline execution."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class QueryError(Exception):
    """Base class for every error raised by the query layer."""


class ClientInputError(QueryError):
    """The caller supplied parameters that cannot be turned into a query."""


class InvalidFilterValue(ClientInputError):

    def __init__(self, field: str, value: Any = None, reason: Optional[str] = None) -> None:
        self.field = field
        self.value = value
        self.reason = reason or "value cannot be coerced for this operator"
        super().__init__(f"Invalid value for filter field {field!r}: {self.reason}.")


class UnsupportedOperator(ClientInputError):

    def __init__(self, field: str, operator: str) -> None:
        self.field = field
        self.operator = operator
        super().__init__(f"Unsupported operator {operator!r} for filter field {field!r}.")


class InvalidPagination(ClientInputError):

    def __init__(self, limit: Any, page: Any) -> None:
        self.limit = limit
        self.page = page
        super().__init__(
            f"Invalid pagination: limit must be > 0 and page >= 1 (got limit={limit!r}, page={page!r})."
        )


class DocumentStoreError(QueryError):
    """The document store rejected or failed an operation."""


class PipelineExecutionError(DocumentStoreError):
    """An assembled aggregation pipeline failed inside the store."""

    def __init__(self, collection: str, pipeline: List[Dict[str, Any]]) -> None:
        self.collection = collection
        self.pipeline = pipeline
        super().__init__(f"Aggregation pipeline failed on collection {collection!r}.")
