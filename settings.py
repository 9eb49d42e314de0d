from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_MONGO_URI_ENV = "MONGO_URI"
_MONGO_DBNAME_ENV = "MONGO_DBNAME"
_SERVER_TIMEOUT_ENV = "MONGO_SERVER_SELECTION_TIMEOUT_MS"
_PAGE_LIMIT_ENV = "DEFAULT_PAGE_LIMIT"
_RECENT_MONTHS_ENV = "DEFAULT_RECENT_MONTHS"
_INCLUDE_MEDIAN_ENV = "STATS_INCLUDE_MEDIAN"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    mongo_uri: str
    database_name: str
    server_selection_timeout_ms: int
    default_page_limit: int
    default_recent_months: int
    stats_include_median: bool
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        mongo_uri=_read_str_env(_MONGO_URI_ENV, "mongodb://localhost:27017"),
        database_name=_read_str_env(_MONGO_DBNAME_ENV, "weather_api"),
        server_selection_timeout_ms=_read_positive_int(_SERVER_TIMEOUT_ENV, 5000),
        default_page_limit=_read_positive_int(_PAGE_LIMIT_ENV, 10),
        default_recent_months=_read_positive_int(_RECENT_MONTHS_ENV, 3),
        stats_include_median=_read_bool(_INCLUDE_MEDIAN_ENV, True),
        log_level=_read_log_level("INFO"),
    )
