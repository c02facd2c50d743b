"""
Mapped Repository

Layers pydantic model validation over another repository. This is the
mapped (ODM) access path: writes are validated and normalized through the
kind's model, and documents read back must still satisfy it.
"""

import logging
from typing import Any

from pydantic import ValidationError

from ..constants import RESERVED_FIELDS
from ..exceptions import SchemaMismatchError
from .base import DocumentRepository

logger = logging.getLogger(__name__)


class MappedRepository(DocumentRepository):
    """
    Schema-validating repository decorator.

    Validation failures raise ``SchemaMismatchError``, which the access path
    selector may retry on the raw path.
    """

    def __init__(self, inner: DocumentRepository):
        super().__init__(inner.registry)
        self._inner = inner

    def _normalize(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        model = self.registry.get(kind).model
        try:
            instance = model.model_validate(fields)
        except ValidationError as e:
            bad_fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise SchemaMismatchError(
                f"{kind} does not match its schema: {e.error_count()} error(s)",
                kind=kind,
                fields=bad_fields,
            ) from e
        return instance.model_dump(exclude_none=True)

    def _check_document(self, kind: str, document: dict[str, Any] | None) -> dict[str, Any] | None:
        if document is None:
            return None
        fields = {k: v for k, v in document.items() if k not in RESERVED_FIELDS}
        self._normalize(kind, fields)
        return document

    async def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._inner.insert(kind, self._normalize(kind, fields))

    async def get(self, kind: str, id: str) -> dict[str, Any] | None:
        return self._check_document(kind, await self._inner.get(kind, id))

    async def find(
        self,
        kind: str,
        filter: dict[str, Any] | None = None,
        skip: int = 0,
        limit: int = 100,
        sort: list[tuple[str, int]] | None = None,
    ) -> list[dict[str, Any]]:
        documents = await self._inner.find(kind, filter, skip=skip, limit=limit, sort=sort)
        return [self._check_document(kind, doc) for doc in documents]

    async def count(self, kind: str, filter: dict[str, Any] | None = None) -> int:
        return await self._inner.count(kind, filter)

    async def update(
        self,
        kind: str,
        id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        current = await self._inner.get(kind, id)
        if current is None:
            return None
        merged = {k: v for k, v in current.items() if k not in RESERVED_FIELDS}
        merged.update(patch)
        normalized = self._normalize(kind, merged)
        # Only the patched keys are written; the rest is already stored
        normalized_patch = {k: normalized[k] for k in patch if k in normalized}
        return await self._inner.update(kind, id, normalized_patch, expected_version)

    async def ping(self) -> bool:
        return await self._inner.ping()
