from __future__ import annotations

from typing import Dict, Iterable


class ProjectionBuilder:
    """Accumulates field inclusions and exclusions for a projection.

    MongoDB rejects projections mixing both kinds, except for ``_id``.
    """

    def __init__(self) -> None:
        self._projection: Dict[str, int] = {}

    def show(self, fields: Iterable[str] = ()) -> "ProjectionBuilder":
        for field in fields:
            self._projection[field] = 1
        return self

    def hide(self, fields: Iterable[str] = ()) -> "ProjectionBuilder":
        for field in fields:
            self._projection[field] = 0
        return self

    def build(self) -> Dict[str, int]:
        modes = {value for field, value in self._projection.items() if field != "_id"}
        if len(modes) > 1:
            raise ValueError("Projection cannot mix included and excluded fields.")
        return dict(self._projection)
