from __future__ import annotations

from typing import Iterable

from datastore.mongo_store import build_default_store
from services.query_service import build_default_query_service
from settings import get_settings


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_environment_overrides_apply(monkeypatch) -> None:
    monkeypatch.setenv("MONGO_URI", "mongodb://weather-db.invalid:27017")
    monkeypatch.setenv("MONGO_DBNAME", "weather_custom")
    monkeypatch.setenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "250")
    monkeypatch.setenv("DEFAULT_PAGE_LIMIT", "25")
    monkeypatch.setenv("DEFAULT_RECENT_MONTHS", "6")
    monkeypatch.setenv("STATS_INCLUDE_MEDIAN", "off")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    caches = (get_settings, build_default_store, build_default_query_service)
    _clear_caches(caches)

    settings = get_settings()
    service = build_default_query_service()

    try:
        assert settings.mongo_uri == "mongodb://weather-db.invalid:27017"
        assert settings.server_selection_timeout_ms == 250
        assert settings.default_page_limit == 25
        assert settings.log_level == "DEBUG"
        assert service.store.name == "weather_custom"
        assert service.include_median is False
        assert service.resolver.default_recent_months == 6
    finally:
        service.store.close()
        _clear_caches(caches)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("MONGO_DBNAME", "   ")
    monkeypatch.setenv("DEFAULT_PAGE_LIMIT", "-3")
    monkeypatch.setenv("DEFAULT_RECENT_MONTHS", "soon")
    monkeypatch.setenv("STATS_INCLUDE_MEDIAN", "maybe")
    get_settings.cache_clear()

    try:
        settings = get_settings()

        assert settings.database_name == "weather_api"
        assert settings.default_page_limit == 10
        assert settings.default_recent_months == 3
        assert settings.stats_include_median is True
    finally:
        get_settings.cache_clear()
