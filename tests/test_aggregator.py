"""Unit tests for the statistical aggregation stages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import pytest

from datastore.mongo_store import MongoDocumentStore
from services.aggregator import StatGroupAssembler, extreme_stages
from services.errors import InvalidFilterValue
from services.pipeline import Match, Sort, render


def _reading(device: str, precipitation: Optional[float], day: int) -> Dict[str, Any]:
    """Helper to build deterministic weather readings."""

    return {
        "deviceName": device,
        "precipitation": precipitation,
        "createdAt": datetime(2021, 1, day, 12, 0),
    }


@pytest.fixture
def seeded_store(mongo_store: MongoDocumentStore) -> MongoDocumentStore:
    mongo_store.insert_many(
        "weathers",
        [
            _reading("noosa_sensor", 5.0, 1),
            _reading("noosa_sensor", 9.0, 2),
            _reading("yandina_sensor", 1.0, 3),
            _reading("yandina_sensor", 3.0, 4),
            _reading("noosa_sensor", 9.0, 5),
            _reading("yandina_sensor", None, 6),
        ],
    )
    return mongo_store


def test_group_spec_without_grouping() -> None:
    assembler = StatGroupAssembler("precipitation")

    group = assembler.group().to_document()["$group"]

    assert assembler.grouped is False
    assert group["_id"] is None
    assert group["max_precipitation"] == {"$max": "$precipitation"}
    assert group["min_precipitation"] == {"$min": "$precipitation"}
    assert group["avg_precipitation"] == {"$avg": "$precipitation"}
    assert group["median_precipitation"] == {
        "$median": {"input": "$precipitation", "method": "approximate"}
    }
    assert group["max_deviceName"] == {"$first": "$deviceName"}
    assert group["min_createdAt"] == {"$last": "$createdAt"}


def test_projection_shapes_summary() -> None:
    project = StatGroupAssembler("temperature", group_by="deviceName").project()

    assert project.to_document() == {
        "$project": {
            "_id": 0,
            "deviceName": "$_id",
            "temperature": {
                "max": {
                    "value": "$max_temperature",
                    "deviceName": "$max_deviceName",
                    "createdAt": "$max_createdAt",
                },
                "min": {
                    "value": "$min_temperature",
                    "deviceName": "$min_deviceName",
                    "createdAt": "$min_createdAt",
                },
                "avg": {"value": "$avg_temperature"},
                "median": {"value": "$median_temperature"},
            },
        }
    }


def test_median_can_be_disabled() -> None:
    assembler = StatGroupAssembler("humidity", include_median=False)

    assert "median_humidity" not in assembler.group().spec
    assert "median" not in assembler.project().spec["humidity"]


def test_stages_presort_before_grouping() -> None:
    stages = StatGroupAssembler("humidity", group_by="deviceName").stages()

    assert stages[0] == Match({"humidity": {"$ne": None}})
    assert stages[1] == Sort((("humidity", -1), ("createdAt", -1)))
    assert render(stages)[-1] == {"$sort": {"deviceName": 1}}


def test_ungrouped_stages_have_no_final_sort() -> None:
    stages = StatGroupAssembler("humidity").stages()

    assert StatGroupAssembler("humidity").final_sort() is None
    assert "$project" in render(stages)[-1]


def test_min_and_max_carry_provenance(seeded_store: MongoDocumentStore) -> None:
    assembler = StatGroupAssembler("precipitation", include_median=False)

    documents = seeded_store.execute_pipeline("weathers", assembler.stages())

    assert len(documents) == 1
    summary = documents[0]["precipitation"]
    assert summary["max"] == {
        "value": 9.0,
        "deviceName": "noosa_sensor",
        "createdAt": datetime(2021, 1, 5, 12, 0),
    }
    assert summary["min"] == {
        "value": 1.0,
        "deviceName": "yandina_sensor",
        "createdAt": datetime(2021, 1, 3, 12, 0),
    }
    assert summary["avg"]["value"] == pytest.approx(5.4)


def test_grouped_summaries_are_sorted_by_group_key(seeded_store: MongoDocumentStore) -> None:
    assembler = StatGroupAssembler(
        "precipitation", group_by="deviceName", include_median=False
    )

    documents = seeded_store.execute_pipeline("weathers", assembler.stages())

    assert [doc["deviceName"] for doc in documents] == ["noosa_sensor", "yandina_sensor"]
    yandina = documents[1]["precipitation"]
    assert yandina["max"]["value"] == 3.0
    assert yandina["max"]["createdAt"] == datetime(2021, 1, 4, 12, 0)
    assert yandina["min"]["value"] == 1.0
    assert yandina["avg"]["value"] == pytest.approx(2.0)


def test_extreme_stages_return_every_tied_record(seeded_store: MongoDocumentStore) -> None:
    documents = seeded_store.execute_pipeline("weathers", extreme_stages("precipitation"))

    assert [doc["createdAt"] for doc in documents] == [
        datetime(2021, 1, 5, 12, 0),
        datetime(2021, 1, 2, 12, 0),
    ]
    assert all(doc["precipitation"] == 9.0 for doc in documents)


def test_extreme_stages_support_minimum(seeded_store: MongoDocumentStore) -> None:
    documents = seeded_store.execute_pipeline(
        "weathers", extreme_stages("precipitation", extreme="min")
    )

    assert documents == [
        {
            "precipitation": 1.0,
            "deviceName": "yandina_sensor",
            "createdAt": datetime(2021, 1, 3, 12, 0),
        }
    ]


def test_extreme_stages_reject_unknown_extreme() -> None:
    with pytest.raises(InvalidFilterValue):
        extreme_stages("precipitation", extreme="mean")
