from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from datastore.mongo_store import MongoDocumentStore
from services.query_service import QueryService

START = datetime(2021, 1, 1, 6, 0)


def _seed(store: MongoDocumentStore) -> None:
    store.insert_many(
        "weathers",
        [
            {
                "deviceName": "noosa_sensor" if index % 2 == 0 else "yandina_sensor",
                "precipitation": float(index % 5),
                "humidity": 40 + index,
                "createdAt": START + timedelta(days=index * 3),
                "geoLocation": {"type": "Point", "coordinates": [152.77, -26.53]},
            }
            for index in range(25)
        ],
    )
    store.insert_many(
        "logs",
        [
            {"deviceName": "noosa_sensor", "deletedAt": datetime(2020, 12, 31)},
            {"deviceName": "noosa_sensor", "deletedAt": datetime(2021, 2, 1)},
            {"deviceName": "yandina_sensor", "deletedAt": datetime(2021, 3, 1)},
        ],
    )
    store.insert_many(
        "users",
        [{"email": "ops@example.com", "password": "$2b$hash", "role": "admin"}],
    )


@pytest.fixture
def service(mongo_store: MongoDocumentStore) -> QueryService:
    _seed(mongo_store)
    return QueryService(mongo_store, include_median=False)


@pytest.fixture
def api_client(service: QueryService, monkeypatch) -> Iterator[TestClient]:
    services: Dict[str, QueryService] = {"default": service}

    def build_test_service() -> QueryService:
        return services["default"]

    def cache_clear() -> None:
        services.clear()
        services["default"] = service

    build_test_service.cache_clear = cache_clear  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_query_service", build_test_service)
    monkeypatch.setattr("app.api.build_default_query_service", build_test_service)

    app = create_app()
    with TestClient(app) as client:
        yield client


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
    assert api_client.get("/").json()["status"] == "ok"


def test_list_weathers_paginates(api_client: TestClient) -> None:
    response = api_client.get("/weathers", params={"limit": 10, "page": 3})

    assert response.status_code == 200
    body = response.json()
    assert body["paging"] == {
        "totalCount": 25,
        "totalPages": 3,
        "currentPage": 3,
        "limit": 10,
    }
    assert len(body["result"]) == 5
    assert all(isinstance(doc["_id"], str) for doc in body["result"])


def test_list_weathers_filters_and_sorts(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers",
        params={"deviceName[in]": "yandina_sensor", "humidity[gte]": "60", "sort[humidity]": "-1"},
    )

    assert response.status_code == 200
    humidities = [doc["humidity"] for doc in response.json()["result"]]
    assert humidities == [63, 61]


def test_unknown_operator_returns_bad_request(api_client: TestClient) -> None:
    response = api_client.get("/weathers", params={"humidity[regex]": "4"})

    assert response.status_code == 400
    assert "regex" in response.json()["detail"]


def test_limit_is_validated(api_client: TestClient) -> None:
    assert api_client.get("/weathers", params={"limit": 0}).status_code == 422


def test_stats_grouped_by_device(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers/stats",
        params={"aggField": "humidity", "groupBy": "deviceName", "recentMonths": 12},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["field"] == "humidity"
    assert body["grouped"] is True
    assert body["groupBy"] == "deviceName"
    assert body["window"]["end"] == "2021-03-14T06:00:00"
    assert [group["deviceName"] for group in body["result"]] == [
        "noosa_sensor",
        "yandina_sensor",
    ]
    noosa = body["result"][0]["humidity"]
    assert noosa["max"] == {
        "value": 64,
        "deviceName": "noosa_sensor",
        "createdAt": "2021-03-14T06:00:00",
    }
    assert noosa["min"]["value"] == 40


def test_stats_with_device_scope(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers/stats",
        params={"aggField": "humidity", "deviceName": "yandina_sensor", "recentMonths": 1},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["grouped"] is False
    assert body["window"] == {"start": "2021-02-11T06:00:00", "end": "2021-03-11T06:00:00"}
    assert body["result"][0]["humidity"]["max"]["value"] == 63


def test_stats_rejects_unknown_metric(api_client: TestClient) -> None:
    response = api_client.get("/weathers/stats", params={"aggField": "password"})

    assert response.status_code == 400
    assert "aggField" in response.json()["detail"]


def test_stats_requires_complete_point(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers/stats", params={"aggField": "humidity", "longitude": 152.77}
    )

    assert response.status_code == 400


def test_extremes_lists_tied_readings(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers/extremes",
        params={"aggField": "precipitation", "recentMonths": 12},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["extreme"] == "max"
    assert [doc["precipitation"] for doc in body["result"]] == [4.0] * 5
    assert body["result"][0]["createdAt"] == "2021-03-14T06:00:00"


def test_show_weather_and_missing_weather(
    api_client: TestClient, service: QueryService
) -> None:
    document = service.store.database["weathers"].find_one({"humidity": 40})

    found = api_client.get(f"/weathers/{document['_id']}")
    missing = api_client.get("/weathers/64b7f0c2a1b2c3d4e5f60718")

    assert found.status_code == 200
    assert found.json()["result"]["humidity"] == 40
    assert missing.status_code == 404


def test_logs_default_to_recent_deletions(api_client: TestClient) -> None:
    response = api_client.get("/logs")

    assert response.status_code == 200
    body = response.json()
    assert body["paging"]["totalCount"] == 2
    assert [doc["deletedAt"] for doc in body["result"]] == [
        "2021-03-01T00:00:00",
        "2021-02-01T00:00:00",
    ]


def test_delete_logs_by_range(api_client: TestClient) -> None:
    response = api_client.request(
        "DELETE",
        "/logs",
        params={"deletedAt[gte]": "2021-02-01", "deletedAt[lte]": "2021-02-28"},
    )

    assert response.status_code == 200
    assert response.json() == {"deletedCount": 1}

    again = api_client.request(
        "DELETE",
        "/logs",
        params={"deletedAt[gte]": "2021-02-01", "deletedAt[lte]": "2021-02-28"},
    )
    assert again.status_code == 404
    assert again.json()["detail"] == "Logs not found in this date range."


def test_delete_logs_requires_range(api_client: TestClient) -> None:
    response = api_client.request("DELETE", "/logs", params={"deviceName": "noosa_sensor"})

    assert response.status_code == 400


def test_show_and_delete_single_log(api_client: TestClient, service: QueryService) -> None:
    log = service.store.database["logs"].find_one({"deviceName": "yandina_sensor"})

    shown = api_client.get(f"/logs/{log['_id']}")
    deleted = api_client.delete(f"/logs/{log['_id']}")
    missing = api_client.delete(f"/logs/{log['_id']}")

    assert shown.json()["result"]["deviceName"] == "yandina_sensor"
    assert deleted.json() == {"deletedCount": 1}
    assert missing.status_code == 404


def test_users_hide_password(api_client: TestClient) -> None:
    response = api_client.get("/users")

    assert response.status_code == 200
    [user] = response.json()["result"]
    assert user["email"] == "ops@example.com"
    assert "password" not in user


def test_operator_keys_are_rejected(api_client: TestClient) -> None:
    response = api_client.get("/weathers", params={"$where": "sleep(5000) || true"})

    assert response.status_code == 400
    assert "$where" in response.json()["detail"]


def test_users_cannot_filter_on_password(api_client: TestClient) -> None:
    for params in ({"password[gte]": "$2b"}, {"password": "$2b$hash"}):
        response = api_client.get("/users", params=params)

        assert response.status_code == 400
        assert "password" in response.json()["detail"]


def test_show_user_hides_password(api_client: TestClient, service: QueryService) -> None:
    user = service.store.database["users"].find_one({"email": "ops@example.com"})

    found = api_client.get(f"/users/{user['_id']}")
    missing = api_client.get("/users/64b7f0c2a1b2c3d4e5f60718")

    assert found.status_code == 200
    assert found.json()["result"]["email"] == "ops@example.com"
    assert "password" not in found.json()["result"]
    assert missing.status_code == 404


def test_delete_single_user(api_client: TestClient, service: QueryService) -> None:
    user = service.store.database["users"].find_one({"email": "ops@example.com"})

    deleted = api_client.delete(f"/users/{user['_id']}")
    again = api_client.delete(f"/users/{user['_id']}")

    assert deleted.json() == {"deletedCount": 1}
    assert again.status_code == 404


def test_delete_users_by_role(api_client: TestClient, service: QueryService) -> None:
    service.store.insert_many(
        "users",
        [
            {"email": "teach@example.com", "password": "$2b$x", "role": "teacher"},
            {"email": "kid@example.com", "password": "$2b$y", "role": "student"},
        ],
    )

    response = api_client.request(
        "DELETE",
        "/users/batch",
        params={"role[in]": "admin,teacher", "email": "kid@example.com"},
    )

    assert response.status_code == 200
    assert response.json() == {"deletedCount": 2}
    remaining = [doc["email"] for doc in service.store.database["users"].find()]
    assert remaining == ["kid@example.com"]

    again = api_client.request("DELETE", "/users/batch", params={"role": "admin"})
    assert again.status_code == 404
    assert again.json()["detail"] == "Users not found for these conditions."


def test_delete_users_requires_condition(api_client: TestClient, service: QueryService) -> None:
    response = api_client.request(
        "DELETE", "/users/batch", params={"email": "ops@example.com"}
    )

    assert response.status_code == 400
    assert service.store.database["users"].count_documents({}) == 1


def test_stats_rejects_group_by_on_aggregated_field(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers/stats", params={"aggField": "humidity", "groupBy": "humidity"}
    )

    assert response.status_code == 400
    assert "groupBy" in response.json()["detail"]


def test_stats_rejects_device_filter_conflicting_with_scope(api_client: TestClient) -> None:
    response = api_client.get(
        "/weathers/stats",
        params={
            "aggField": "humidity",
            "deviceName": "noosa_sensor",
            "deviceName[in]": "yandina_sensor",
        },
    )

    assert response.status_code == 400
    assert "deviceName" in response.json()["detail"]
