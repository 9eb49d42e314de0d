from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from models.records import TIME_FIELD
from services.errors import DocumentStoreError, PipelineExecutionError
from services.pipeline import Stage, render
from settings import get_settings

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """The two read primitives the query layer depends on."""

    def execute_pipeline(
        self, collection: str, stages: Sequence[Stage]
    ) -> List[Dict[str, Any]]: ...

    def find_latest_timestamp(
        self,
        collection: str,
        scope_filter: Mapping[str, Any],
        time_field: str = TIME_FIELD,
    ) -> Optional[datetime]: ...


def _object_id(document_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return None


class MongoDocumentStore:

    def __init__(self, database: Database, client: Optional[MongoClient] = None) -> None:
        self.database = database
        self._client = client

    @property
    def name(self) -> str:
        return self.database.name

    def execute_pipeline(
        self, collection: str, stages: Sequence[Stage]
    ) -> List[Dict[str, Any]]:
        pipeline = render(stages)
        logger.debug(
            "Executing aggregation pipeline",
            extra={"collection": collection, "stage_count": len(pipeline), "pipeline": pipeline},
        )
        try:
            return list(self.database[collection].aggregate(pipeline))
        except PyMongoError as exc:
            logger.error(
                "Aggregation pipeline failed",
                extra={"collection": collection, "reason": str(exc), "pipeline": pipeline},
            )
            raise PipelineExecutionError(collection, pipeline) from exc

    def find_latest_timestamp(
        self,
        collection: str,
        scope_filter: Mapping[str, Any],
        time_field: str = TIME_FIELD,
    ) -> Optional[datetime]:
        query = {**scope_filter, time_field: {"$ne": None}}
        try:
            document = self.database[collection].find_one(
                query,
                projection={time_field: 1, "_id": 0},
                sort=[(time_field, DESCENDING)],
            )
        except PyMongoError as exc:
            logger.error(
                "Latest timestamp lookup failed",
                extra={"collection": collection, "reason": str(exc)},
            )
            raise DocumentStoreError(
                f"Latest timestamp lookup failed on collection {collection!r}."
            ) from exc
        if document is None:
            return None
        return document.get(time_field)

    def find_by_id(
        self,
        collection: str,
        document_id: str,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        object_id = _object_id(document_id)
        if object_id is None:
            return None
        try:
            return self.database[collection].find_one({"_id": object_id}, projection=projection)
        except PyMongoError as exc:
            logger.error(
                "Document lookup failed",
                extra={"collection": collection, "document_id": document_id, "reason": str(exc)},
            )
            raise DocumentStoreError(f"Lookup failed on collection {collection!r}.") from exc

    def delete_by_id(self, collection: str, document_id: str) -> int:
        object_id = _object_id(document_id)
        if object_id is None:
            return 0
        return self.delete_many(collection, {"_id": object_id})

    def delete_many(self, collection: str, predicate: Mapping[str, Any]) -> int:
        try:
            result = self.database[collection].delete_many(dict(predicate))
        except PyMongoError as exc:
            logger.error(
                "Delete failed",
                extra={"collection": collection, "reason": str(exc)},
            )
            raise DocumentStoreError(f"Delete failed on collection {collection!r}.") from exc
        logger.info(
            "Deleted documents",
            extra={"collection": collection, "total_count": result.deleted_count},
        )
        return result.deleted_count

    def insert_many(
        self, collection: str, documents: Iterable[Mapping[str, Any]]
    ) -> List[ObjectId]:
        payload = [dict(document) for document in documents]
        if not payload:
            return []
        try:
            result = self.database[collection].insert_many(payload)
        except PyMongoError as exc:
            logger.error(
                "Insert failed",
                extra={"collection": collection, "reason": str(exc)},
            )
            raise DocumentStoreError(f"Insert failed on collection {collection!r}.") from exc
        return list(result.inserted_ids)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


@lru_cache
def build_default_store(
    uri: Optional[str] = None,
    database: Optional[str] = None,
) -> MongoDocumentStore:
    settings = get_settings()
    mongo_uri = settings.mongo_uri if uri is None else uri
    database_name = settings.database_name if database is None else database
    client: MongoClient = MongoClient(
        mongo_uri,
        serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
    )
    return MongoDocumentStore(database=client[database_name], client=client)
