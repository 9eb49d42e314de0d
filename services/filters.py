"""Translation of flat query-string parameters into MongoDB filter predicates.

A query string such as::

    ?deviceName[in]=noosa,yandina&humidity[gt]=10&humidity[lt]=20&createdAt=2021-03-01

compiles to::

    {
        "deviceName": {"$in": ["noosa", "yandina"]},
        "humidity": {"$gt": 10, "$lt": 20},
        "createdAt": {"$gte": datetime(2021, 3, 1), "$lte": datetime(2021, 3, 1, 23, 59, 59, 999000)},
    }

The nested form ``{"createdAt": {"gte": "2021-03-01"}}`` (as produced by
transports that already parse brackets) compiles exactly like
``{"createdAt[gte]": "2021-03-01"}``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, time, timezone
from enum import Enum
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from services.errors import InvalidFilterValue, UnsupportedOperator

logger = logging.getLogger(__name__)

RESERVED_KEYS: FrozenSet[str] = frozenset(
    {"limit", "page", "sort", "aggField", "recentMonths", "operation"}
)

_OPERATOR_KEY = re.compile(r"^(?P<field>.+)\[(?P<operator>[^\[\]]+)\]$")
_SORT_KEY = re.compile(r"^sort\[(?P<field>.+)\]$")
_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_INTEGER = re.compile(r"^[+-]?\d+$")

# BSON dates carry millisecond precision.
_END_OF_DAY = time(23, 59, 59, 999000)

Scalar = Union[str, int, float, bool, datetime]
ParameterValue = Union[Scalar, List[Scalar], Tuple[Scalar, ...], Mapping[str, Any]]
ParameterMap = Mapping[str, ParameterValue]

_SCALAR_TYPES = (str, int, float, datetime)


class Operator(str, Enum):
    """Bracket operators accepted in ``field[operator]`` keys."""

    gte = "gte"
    gt = "gt"
    lte = "lte"
    lt = "lt"
    in_ = "in"
    all = "all"
    eq = "eq"

    @property
    def mongo(self) -> str:
        return f"${self.value}"


_ARRAY_OPERATORS = frozenset({Operator.in_, Operator.all})
_POINT_OPERATORS = frozenset({Operator.gte, Operator.gt, Operator.lt})


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime string into a naive UTC datetime.

    Returns ``None`` for anything that does not start with ``YYYY-MM-DD`` or
    fails to parse, so plain numbers are never mistaken for dates.
    """
    candidate = value.strip()
    if not _DATE_PREFIX.match(candidate):
        return None
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def is_date_only(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    return bool(_DATE_ONLY.match(candidate)) and parse_datetime(candidate) is not None


def day_bounds(value: str) -> Tuple[datetime, datetime]:
    """First and last representable instant of a ``YYYY-MM-DD`` day."""
    start = parse_datetime(value)
    if start is None:
        raise ValueError(f"{value!r} is not a calendar date")
    return start, datetime.combine(start.date(), _END_OF_DAY)


def coerce_scalar(value: Any) -> Any:
    """Infer the type of a query-string scalar: date, number, boolean or string."""
    if not isinstance(value, str):
        return value
    parsed = parse_datetime(value)
    if parsed is not None:
        return parsed
    candidate = value.strip()
    if _NUMBER.match(candidate):
        return int(candidate) if _INTEGER.match(candidate) else float(candidate)
    if value in ("true", "false"):
        return value == "true"
    return value


def parameter_map(pairs: Iterable[Tuple[str, str]]) -> Dict[str, Union[str, List[str]]]:
    """Collapse raw query-string pairs into a ``ParameterMap``.

    Repeated keys become lists in arrival order.
    """
    params: Dict[str, Union[str, List[str]]] = {}
    for key, value in pairs:
        existing = params.get(key)
        if existing is None:
            params[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            params[key] = [existing, value]
    return params


class FilterCompiler:
    """Compiles a ``ParameterMap`` into a MongoDB predicate.

    The compiler holds no per-call state; compiling the same map twice yields
    equal predicates.
    """

    def __init__(
        self,
        reserved: Optional[Iterable[str]] = None,
        protected: Iterable[str] = (),
    ) -> None:
        self.reserved: FrozenSet[str] = (
            RESERVED_KEYS if reserved is None else frozenset(reserved)
        )
        self.protected: FrozenSet[str] = frozenset(protected)

    def compile(self, params: ParameterMap) -> Dict[str, Any]:
        predicate: Dict[str, Any] = {}
        for key, value in params.items():
            if self.is_reserved(key):
                continue

            if isinstance(value, Mapping):
                self._check_field(key)
                for operator, inner in value.items():
                    _validate_shape(key, inner)
                    self._apply_operator(predicate, key, str(operator), inner)
                continue

            _validate_shape(key, value)
            match = _OPERATOR_KEY.match(key)
            if match:
                field = match.group("field")
                self._check_field(field)
                self._apply_operator(predicate, field, match.group("operator"), value)
            else:
                self._check_field(key)
                self._assign(predicate, key, value)

        logger.debug(
            "Compiled filter predicate",
            extra={"field": ",".join(predicate) or None},
        )
        return predicate

    def is_reserved(self, key: str) -> bool:
        return key in self.reserved or bool(_SORT_KEY.match(key))

    def _check_field(self, field: str) -> None:
        # Keys become top-level $match entries; operators such as $where must not.
        parts = field.split(".")
        if not field or any(not part or part.startswith("$") for part in parts):
            raise InvalidFilterValue(field, None, "not a valid field name")
        if parts[0] in self.protected:
            raise InvalidFilterValue(field, None, "this field cannot be filtered on")

    def _apply_operator(
        self, predicate: Dict[str, Any], field: str, name: str, value: Any
    ) -> None:
        try:
            operator = Operator(name)
        except ValueError:
            raise UnsupportedOperator(field, name) from None

        conditions = _operator_object(predicate, field)
        if operator in _ARRAY_OPERATORS:
            conditions[operator.mongo] = _parse_array(field, value)
        elif operator is Operator.eq:
            if is_date_only(value):
                start, end = day_bounds(value)
                conditions["$gte"] = start
                conditions["$lte"] = end
            else:
                conditions["$eq"] = _parse_scalar(field, value)
        elif operator is Operator.lte:
            if is_date_only(value):
                conditions["$lte"] = day_bounds(value)[1]
            else:
                conditions["$lte"] = _parse_scalar(field, value)
        elif operator in _POINT_OPERATORS:
            conditions[operator.mongo] = _parse_scalar(field, value)
        else:  # pragma: no cover - every Operator member is handled above
            raise UnsupportedOperator(field, operator.value)

    @staticmethod
    def _assign(predicate: Dict[str, Any], field: str, value: Any) -> None:
        if is_date_only(value):
            start, end = day_bounds(value)
            predicate[field] = {"$gte": start, "$lte": end}
        elif isinstance(value, str):
            parsed = parse_datetime(value)
            predicate[field] = parsed if parsed is not None else value
        elif isinstance(value, (list, tuple)):
            predicate[field] = list(value)
        else:
            predicate[field] = value


def _operator_object(predicate: Dict[str, Any], field: str) -> Dict[str, Any]:
    existing = predicate.get(field)
    if isinstance(existing, dict):
        return existing
    conditions: Dict[str, Any] = {}
    predicate[field] = conditions
    return conditions


def _validate_shape(field: str, value: Any) -> None:
    if isinstance(value, _SCALAR_TYPES):
        return
    if isinstance(value, (list, tuple)) and all(
        isinstance(item, _SCALAR_TYPES) for item in value
    ):
        return
    raise InvalidFilterValue(field, value, "unsupported parameter shape")


def _parse_array(field: str, value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return value.split(",")
    raise InvalidFilterValue(field, value, "expected a list or a comma-separated string")


def _parse_scalar(field: str, value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        raise InvalidFilterValue(field, value, "expected a single value")
    return coerce_scalar(value)


def _parse_direction(value: Any) -> Optional[int]:
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[-1]
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed in (1, -1) else None


def parse_sort(params: ParameterMap) -> Dict[str, int]:
    """Extract ``sort[field]=1|-1`` keys in order; other directions are ignored."""
    sort: Dict[str, int] = {}
    for key, value in params.items():
        if key == "sort" and isinstance(value, Mapping):
            entries: Iterable[Tuple[str, Any]] = value.items()
        else:
            match = _SORT_KEY.match(key)
            if not match:
                continue
            entries = [(match.group("field"), value)]
        for field, direction in entries:
            parsed = _parse_direction(direction)
            if parsed is not None:
                sort[field] = parsed
    return sort


def compile_filter(
    params: ParameterMap,
    reserved: Optional[Iterable[str]] = None,
    protected: Iterable[str] = (),
) -> Dict[str, Any]:
    return FilterCompiler(reserved, protected).compile(params)
