"""Statistical aggregation stages for weather readings."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.records import DEVICE_FIELD, TIME_FIELD
from services.errors import InvalidFilterValue
from services.pipeline import Group, Match, Project, ReplaceRoot, Sort, Stage, Unwind

DEFAULT_CARRY_FIELDS: Tuple[str, ...] = (DEVICE_FIELD, TIME_FIELD)

_EXTREME_ACCUMULATORS = {"max": "$max", "min": "$min"}


def _alias(prefix: str, field: str) -> str:
    # Accumulator names may not contain dots.
    return f"{prefix}_{field.replace('.', '_')}"


class StatGroupAssembler:
    """Builds the group/project pair computing max, min, avg and median of a field.

    The min and max entries carry provenance (``carry_fields``) of the record
    that produced them. Instead of a second lookup, the input is sorted by the
    statistic descending and then by time descending, so ``$first`` of each
    carry field belongs to the maximum and ``$last`` to the minimum. The
    stages returned by :meth:`stages` include that sort; callers using
    :meth:`group_stages` directly must apply :meth:`presort` first.
    """

    def __init__(
        self,
        stat_field: str,
        group_by: Optional[str] = None,
        carry_fields: Iterable[str] = DEFAULT_CARRY_FIELDS,
        time_field: str = TIME_FIELD,
        include_median: bool = True,
    ) -> None:
        self.stat_field = stat_field
        self.group_by = group_by or None
        self.time_field = time_field
        self.include_median = include_median
        self.carry_fields: Tuple[str, ...] = tuple(
            field for field in dict.fromkeys(carry_fields) if field != stat_field
        )

    @property
    def grouped(self) -> bool:
        return self.group_by is not None

    def value_filter(self) -> Match:
        return Match({self.stat_field: {"$ne": None}})

    def presort(self) -> Sort:
        return Sort(((self.stat_field, -1), (self.time_field, -1)))

    def working_set(self) -> Project:
        spec: Dict[str, Any] = {"_id": 0, self.stat_field: 1}
        for field in self.carry_fields:
            spec[field] = 1
        if self.group_by is not None:
            spec[self.group_by] = 1
        return Project(spec)

    def group(self) -> Group:
        field = self.stat_field
        path = f"${field}"
        spec: Dict[str, Any] = {
            "_id": f"${self.group_by}" if self.group_by is not None else None,
            _alias("max", field): {"$max": path},
            _alias("min", field): {"$min": path},
            _alias("avg", field): {"$avg": path},
        }
        if self.include_median:
            spec[_alias("median", field)] = {
                "$median": {"input": path, "method": "approximate"}
            }
        for carry in self.carry_fields:
            spec[_alias("max", carry)] = {"$first": f"${carry}"}
            spec[_alias("min", carry)] = {"$last": f"${carry}"}
        return Group(spec)

    def project(self) -> Project:
        field = self.stat_field
        maximum: Dict[str, Any] = {"value": f"${_alias('max', field)}"}
        minimum: Dict[str, Any] = {"value": f"${_alias('min', field)}"}
        for carry in self.carry_fields:
            maximum[carry] = f"${_alias('max', carry)}"
            minimum[carry] = f"${_alias('min', carry)}"

        summary: Dict[str, Any] = {
            "max": maximum,
            "min": minimum,
            "avg": {"value": f"${_alias('avg', field)}"},
        }
        if self.include_median:
            summary["median"] = {"value": f"${_alias('median', field)}"}

        spec: Dict[str, Any] = {"_id": 0}
        if self.group_by is not None:
            spec[self.group_by] = "$_id"
        spec[field] = summary
        return Project(spec)

    def group_stages(self) -> List[Stage]:
        return [self.group(), self.project()]

    def final_sort(self) -> Optional[Sort]:
        if self.group_by is None:
            return None
        return Sort(((self.group_by, 1),))

    def stages(self) -> List[Stage]:
        stages: List[Stage] = [
            self.value_filter(),
            self.presort(),
            self.working_set(),
            *self.group_stages(),
        ]
        final = self.final_sort()
        if final is not None:
            stages.append(final)
        return stages


def extreme_stages(
    stat_field: str,
    extreme: str = "max",
    carry_fields: Iterable[str] = DEFAULT_CARRY_FIELDS,
    time_field: str = TIME_FIELD,
) -> List[Stage]:
    """Stages returning every record tied at the max (or min) of ``stat_field``.

    Results are flattened back to plain records and ordered newest first.
    """
    accumulator = _EXTREME_ACCUMULATORS.get(extreme)
    if accumulator is None:
        raise InvalidFilterValue("extreme", extreme, "expected 'max' or 'min'")

    fields = tuple(dict.fromkeys((stat_field, *carry_fields)))
    return [
        Match({stat_field: {"$ne": None}}),
        Project({"_id": 0, **{name: 1 for name in fields}}),
        Group(
            {
                "_id": None,
                "extreme": {accumulator: f"${stat_field}"},
                "docs": {"$push": {name: f"${name}" for name in fields}},
            }
        ),
        Project(
            {
                "docs": {
                    "$filter": {
                        "input": "$docs",
                        "as": "doc",
                        "cond": {"$eq": [f"$$doc.{stat_field}", "$extreme"]},
                    }
                }
            }
        ),
        Unwind("docs"),
        ReplaceRoot("docs"),
        Sort(((time_field, -1),)),
    ]
