from __future__ import annotations

from typing import Iterator

import mongomock
import pytest

from datastore.mongo_store import MongoDocumentStore


@pytest.fixture
def mongo_store() -> Iterator[MongoDocumentStore]:
    """Document store backed by an in-memory mongomock database."""
    client = mongomock.MongoClient()
    store = MongoDocumentStore(database=client["weather_api_test"], client=client)
    try:
        yield store
    finally:
        store.close()
