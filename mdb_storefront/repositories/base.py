"""
Abstract Repository Pattern

Defines the document repository interface shared by both access paths, plus
an in-memory implementation with unique-index emulation for tests and local
development.
"""

import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from ..constants import (
    CREATED_AT_FIELD,
    ID_FIELD,
    UPDATED_AT_FIELD,
    VERSION_FIELD,
)
from ..exceptions import ConflictError
from ..schemas import SchemaRegistry


def to_object_id(id: Any) -> Any:
    """Convert a string id to ObjectId when it is a valid one."""
    if isinstance(id, str) and ObjectId.is_valid(id):
        return ObjectId(id)
    return id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRepository(ABC):
    """
    Abstract repository over the storefront collections.

    Every method takes the entity ``kind``; the schema registry maps it to a
    collection. Documents returned include ``_id`` and ``_version``.
    """

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    @abstractmethod
    async def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a new document.

        Args:
            kind: Entity kind
            fields: Entity fields (no store-managed keys)

        Returns:
            The stored document, including ``_id`` and ``_version``

        Raises:
            DuplicateKeyError: If a unique index rejects the document
        """
        pass

    @abstractmethod
    async def get(self, kind: str, id: str) -> dict[str, Any] | None:
        """Get a document by id, or None if it does not exist."""
        pass

    @abstractmethod
    async def find(
        self,
        kind: str,
        filter: dict[str, Any] | None = None,
        skip: int = 0,
        limit: int = 100,
        sort: list[tuple[str, int]] | None = None,
    ) -> list[dict[str, Any]]:
        """Find documents matching a MongoDB-style filter."""
        pass

    @abstractmethod
    async def count(self, kind: str, filter: dict[str, Any] | None = None) -> int:
        """Count documents matching a filter."""
        pass

    @abstractmethod
    async def update(
        self,
        kind: str,
        id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        """
        Apply ``patch`` atomically and bump the version.

        Returns:
            The updated document, or None if no document has this id

        Raises:
            ConflictError: If ``expected_version`` does not match the stored one
            DuplicateKeyError: If a unique index rejects the patch
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backing store answers."""
        pass


def _matches_condition(value: Any, present: bool, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in":
                if value not in operand:
                    return False
            elif op == "$nin":
                if value in operand:
                    return False
            elif op == "$eq":
                if not present or value != operand:
                    return False
            elif op == "$ne":
                if value == operand:
                    return False
            elif op == "$exists":
                if present != bool(operand):
                    return False
            elif op == "$gt":
                if not present or value <= operand:
                    return False
            elif op == "$lt":
                if not present or value >= operand:
                    return False
            elif op == "$gte":
                if not present or value < operand:
                    return False
            elif op == "$lte":
                if not present or value > operand:
                    return False
            else:
                raise ValueError(f"Unsupported operator in memory filter: {op}")
        return True
    return present and value == condition


def matches_filter(document: dict[str, Any], filter: dict[str, Any]) -> bool:
    """Simple filter matching for in-memory documents."""
    for key, condition in filter.items():
        if key == ID_FIELD:
            condition = (
                {
                    op: ([to_object_id(x) for x in v] if op in ("$in", "$nin") else to_object_id(v))
                    for op, v in condition.items()
                }
                if isinstance(condition, dict)
                else to_object_id(condition)
            )
        if not _matches_condition(document.get(key), key in document, condition):
            return False
    return True


class InMemoryRepository(DocumentRepository):
    """
    In-memory repository implementation for testing.

    Enforces the registry's unique fields the way a sparse unique index does
    (documents without the field are not indexed) and raises pymongo's
    ``DuplicateKeyError`` on violations.
    """

    def __init__(self, registry: SchemaRegistry):
        super().__init__(registry)
        self._storage: dict[str, dict[Any, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _collection(self, kind: str) -> dict[Any, dict[str, Any]]:
        return self._storage.setdefault(self.registry.get(kind).collection, {})

    def _check_unique(self, kind: str, document: dict[str, Any]) -> None:
        schema = self.registry.get(kind)
        for field_name in schema.unique:
            value = document.get(field_name)
            if value is None:
                continue
            for other in self._collection(kind).values():
                if other[ID_FIELD] != document[ID_FIELD] and other.get(field_name) == value:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {schema.collection} "
                        f"index: {field_name}_1 dup key: {{ {field_name}: {value!r} }}",
                        code=11000,
                        details={
                            "keyPattern": {field_name: 1},
                            "keyValue": {field_name: value},
                        },
                    )

    async def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        now = utcnow()
        document = copy.deepcopy(fields)
        document.update(
            {
                ID_FIELD: ObjectId(),
                VERSION_FIELD: 1,
                CREATED_AT_FIELD: now,
                UPDATED_AT_FIELD: now,
            }
        )
        with self._lock:
            self._check_unique(kind, document)
            self._collection(kind)[document[ID_FIELD]] = document
        return copy.deepcopy(document)

    async def get(self, kind: str, id: str) -> dict[str, Any] | None:
        document = self._collection(kind).get(to_object_id(id))
        return copy.deepcopy(document) if document is not None else None

    async def find(
        self,
        kind: str,
        filter: dict[str, Any] | None = None,
        skip: int = 0,
        limit: int = 100,
        sort: list[tuple[str, int]] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            results = [
                copy.deepcopy(doc)
                for doc in self._collection(kind).values()
                if matches_filter(doc, filter or {})
            ]
        for field_name, direction in reversed(sort or []):
            results.sort(key=lambda d: (d.get(field_name) is None, d.get(field_name)), reverse=direction < 0)
        if limit > 0:
            return results[skip : skip + limit]
        return results[skip:]

    async def count(self, kind: str, filter: dict[str, Any] | None = None) -> int:
        return len(await self.find(kind, filter, limit=0))

    async def update(
        self,
        kind: str,
        id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        with self._lock:
            current = self._collection(kind).get(to_object_id(id))
            if current is None:
                return None
            if expected_version is not None and current[VERSION_FIELD] != expected_version:
                raise ConflictError(
                    "Entity was modified by another writer",
                    kind=kind,
                    entity_id=str(id),
                    expected_version=expected_version,
                    current_version=current[VERSION_FIELD],
                )
            updated = {**current, **copy.deepcopy(patch)}
            updated[VERSION_FIELD] = current[VERSION_FIELD] + 1
            updated[UPDATED_AT_FIELD] = utcnow()
            self._check_unique(kind, updated)
            self._collection(kind)[current[ID_FIELD]] = updated
        return copy.deepcopy(updated)

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Clear all documents (useful for test setup)."""
        with self._lock:
            self._storage.clear()
