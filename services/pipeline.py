"""Immutable assembly of MongoDB aggregation pipelines."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from services.pagination import Paginate, Paginator


def _field_path(path: str) -> str:
    return path if path.startswith("$") else f"${path}"


@dataclass(frozen=True)
class Match:
    predicate: Mapping[str, Any]

    def to_document(self) -> Dict[str, Any]:
        return {"$match": dict(self.predicate)}


@dataclass(frozen=True)
class Sort:
    fields: Tuple[Tuple[str, int], ...]

    def to_document(self) -> Dict[str, Any]:
        return {"$sort": dict(self.fields)}


@dataclass(frozen=True)
class Project:
    spec: Mapping[str, Any]

    def to_document(self) -> Dict[str, Any]:
        return {"$project": dict(self.spec)}


@dataclass(frozen=True)
class Group:
    spec: Mapping[str, Any]

    def to_document(self) -> Dict[str, Any]:
        return {"$group": dict(self.spec)}


@dataclass(frozen=True)
class Unwind:
    path: str

    def to_document(self) -> Dict[str, Any]:
        return {"$unwind": _field_path(self.path)}


@dataclass(frozen=True)
class ReplaceRoot:
    path: str

    def to_document(self) -> Dict[str, Any]:
        return {"$replaceRoot": {"newRoot": _field_path(self.path)}}


@dataclass(frozen=True)
class Limit:
    count: int

    def to_document(self) -> Dict[str, Any]:
        return {"$limit": self.count}


Stage = Union[Match, Sort, Project, Group, Paginate, Unwind, ReplaceRoot, Limit]


def render(stages: Iterable[Stage]) -> List[Dict[str, Any]]:
    """Render stage objects as the documents the driver expects."""
    return [stage.to_document() for stage in stages]


@dataclass(frozen=True)
class PipelineBuilder:
    """Fluent pipeline assembler.

    Every method returns a new builder, so a partially built pipeline can be
    shared as a prefix without later calls leaking into it. Stages given an
    empty or missing spec are omitted rather than emitted as no-ops.

    Example::

        stages = (
            PipelineBuilder()
            .match({"deviceName": "noosa_sensor"})
            .sort({"createdAt": -1})
            .paginate(limit=10, page=2)
            .build()
        )
    """

    stages: Tuple[Stage, ...] = ()

    def _append(self, stage: Stage) -> "PipelineBuilder":
        return replace(self, stages=self.stages + (stage,))

    def match(self, predicate: Optional[Mapping[str, Any]]) -> "PipelineBuilder":
        if not predicate:
            return self
        return self._append(Match(deepcopy(dict(predicate))))

    def sort(self, spec: Optional[Mapping[str, int]]) -> "PipelineBuilder":
        if not spec:
            return self
        return self._append(Sort(tuple(spec.items())))

    def project(self, spec: Optional[Mapping[str, Any]]) -> "PipelineBuilder":
        if not spec:
            return self
        return self._append(Project(deepcopy(dict(spec))))

    def group(self, spec: Optional[Mapping[str, Any]]) -> "PipelineBuilder":
        if not spec:
            return self
        return self._append(Group(deepcopy(dict(spec))))

    def paginate(self, limit: int, page: int) -> "PipelineBuilder":
        return self._append(Paginator(limit, page).stage())

    def unwind(self, path: str) -> "PipelineBuilder":
        return self._append(Unwind(path))

    def replace_root(self, path: str) -> "PipelineBuilder":
        return self._append(ReplaceRoot(path))

    def limit(self, count: int) -> "PipelineBuilder":
        return self._append(Limit(count))

    def extend(self, stages: Iterable[Stage]) -> "PipelineBuilder":
        return replace(self, stages=self.stages + tuple(stages))

    def build(self) -> List[Stage]:
        return list(self.stages)
