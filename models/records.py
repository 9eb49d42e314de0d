"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

WEATHERS_COLLECTION = "weathers"
LOGS_COLLECTION = "logs"
USERS_COLLECTION = "users"

TIME_FIELD = "createdAt"
DEVICE_FIELD = "deviceName"
LOCATION_FIELD = "geoLocation"

# Numeric readings a statistical query may aggregate over.
WEATHER_METRICS: Tuple[str, ...] = (
    "precipitation",
    "temperature",
    "atmosphericPressure",
    "maxWindSpeed",
    "solarRadiation",
    "vaporPressure",
    "humidity",
    "windDirection",
)


@dataclass(frozen=True)
class Scope:
    """Narrows a statistical query to a device, a location, or everything."""

    device: Optional[str] = None
    point: Optional[Tuple[float, float]] = None

    @property
    def is_empty(self) -> bool:
        return self.device is None and self.point is None

    def to_filter(self) -> Dict[str, Any]:
        """Exact-match filter selecting the records inside this scope.

        ``point`` is ``(longitude, latitude)``, the GeoJSON coordinate order.
        """
        criteria: Dict[str, Any] = {}
        if self.device is not None:
            criteria[DEVICE_FIELD] = self.device
        if self.point is not None:
            longitude, latitude = self.point
            criteria[f"{LOCATION_FIELD}.type"] = "Point"
            criteria[f"{LOCATION_FIELD}.coordinates"] = [longitude, latitude]
        return criteria


@dataclass(frozen=True)
class DateRange:
    """Inclusive time window."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def as_condition(self) -> Dict[str, datetime]:
        condition: Dict[str, datetime] = {}
        if self.start is not None:
            condition["$gte"] = self.start
        if self.end is not None:
            condition["$lte"] = self.end
        return condition
