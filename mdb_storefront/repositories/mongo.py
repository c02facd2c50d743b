"""
MongoDB Repository Implementation

Implements the DocumentRepository interface directly on a Motor database.
This is the raw driver access path: documents are written as given, with no
schema validation beyond what the server enforces (unique indexes).
"""

import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import OperationFailure

from ..constants import (
    CREATED_AT_FIELD,
    ID_FIELD,
    UPDATED_AT_FIELD,
    VERSION_FIELD,
)
from ..exceptions import ConflictError
from ..schemas import SchemaRegistry
from .base import DocumentRepository, to_object_id, utcnow

logger = logging.getLogger(__name__)


class MongoRepository(DocumentRepository):
    """
    MongoDB implementation of the DocumentRepository interface.

    Every call borrows a pooled connection from the Motor client for a single
    operation; nothing is held between calls.

    Example:
        repo = MongoRepository(client["shop"], default_registry())
        doc = await repo.insert("Category", {"name": "Sofa Beds", "slug": "sofa-beds"})
        same = await repo.get("Category", str(doc["_id"]))
    """

    def __init__(self, database: AsyncIOMotorDatabase, registry: SchemaRegistry):
        """
        Initialize the MongoDB repository.

        Args:
            database: Motor database the collections live in
            registry: Schema registry mapping kinds to collections
        """
        super().__init__(registry)
        self._database = database

    def _collection(self, kind: str) -> AsyncIOMotorCollection:
        return self._database[self.registry.get(kind).collection]

    @staticmethod
    def _to_query(filter: dict[str, Any] | None) -> dict[str, Any]:
        query = dict(filter or {})
        if ID_FIELD not in query:
            return query
        condition = query[ID_FIELD]
        if isinstance(condition, dict):
            query[ID_FIELD] = {
                op: (
                    [to_object_id(v) for v in operand]
                    if op in ("$in", "$nin")
                    else to_object_id(operand)
                )
                for op, operand in condition.items()
            }
        else:
            query[ID_FIELD] = to_object_id(condition)
        return query

    async def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        now = utcnow()
        document = {
            **fields,
            VERSION_FIELD: 1,
            CREATED_AT_FIELD: now,
            UPDATED_AT_FIELD: now,
        }
        result = await self._collection(kind).insert_one(document)
        document[ID_FIELD] = result.inserted_id
        logger.debug(f"Inserted {kind} with id={result.inserted_id}")
        return document

    async def get(self, kind: str, id: str) -> dict[str, Any] | None:
        return await self._collection(kind).find_one({ID_FIELD: to_object_id(id)})

    async def find(
        self,
        kind: str,
        filter: dict[str, Any] | None = None,
        skip: int = 0,
        limit: int = 100,
        sort: list[tuple[str, int]] | None = None,
    ) -> list[dict[str, Any]]:
        cursor = self._collection(kind).find(self._to_query(filter))

        if sort:
            cursor = cursor.sort(sort)
        if skip > 0:
            cursor = cursor.skip(skip)
        if limit > 0:
            cursor = cursor.limit(limit)

        return await cursor.to_list(length=limit if limit > 0 else None)

    async def count(self, kind: str, filter: dict[str, Any] | None = None) -> int:
        return await self._collection(kind).count_documents(self._to_query(filter))

    async def update(
        self,
        kind: str,
        id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        object_id = to_object_id(id)
        query: dict[str, Any] = {ID_FIELD: object_id}
        if expected_version is not None:
            query[VERSION_FIELD] = expected_version

        collection = self._collection(kind)
        updated = await collection.find_one_and_update(
            query,
            {
                "$set": {**patch, UPDATED_AT_FIELD: utcnow()},
                "$inc": {VERSION_FIELD: 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None or expected_version is None:
            return updated

        # The filter missed: either the id is unknown or the version moved on
        current = await collection.find_one({ID_FIELD: object_id}, projection={VERSION_FIELD: 1})
        if current is None:
            return None
        raise ConflictError(
            "Entity was modified by another writer",
            kind=kind,
            entity_id=str(id),
            expected_version=expected_version,
            current_version=current.get(VERSION_FIELD),
        )

    async def ping(self) -> bool:
        await self._database.command("ping")
        return True

    async def ensure_indexes(self) -> list[str]:
        """
        Create the sparse unique indexes declared by the registry.

        Returns:
            Names of the indexes that exist afterwards
        """
        created = []
        for schema in self.registry:
            collection = self._database[schema.collection]
            for field_name in schema.unique:
                try:
                    name = await collection.create_index(
                        field_name, unique=True, sparse=True, name=f"{field_name}_unique"
                    )
                    created.append(name)
                except OperationFailure as e:
                    logger.error(
                        f"Failed to create unique index on {schema.collection}.{field_name}: "
                        f"{e.details}",
                        exc_info=True,
                    )
                    raise
        return created
