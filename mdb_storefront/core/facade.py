"""
Persistence Facade

The single entry point collaborators use for storefront persistence:
``create``, ``fetch``, ``list`` and ``update``. Every call returns an
``AccessResult`` or raises a ``PersistenceFailure`` subclass.

Reads degrade to placeholder data when no access path can serve them.
Writes never do: a create or update that cannot reach the store fails.
``assign_missing_slugs`` backfills slugs of entities stored without one.

This module is part of MDB_STOREFRONT.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

from bson.errors import InvalidDocument
from pymongo.errors import DuplicateKeyError, OperationFailure

from ..constants import (
    DEFAULT_LIST_LIMIT,
    DEFAULT_PLACEHOLDER_LIST_SIZE,
    ID_FIELD,
    RESERVED_FIELDS,
    SLUG_FIELD,
    SLUG_REALLOCATION_LIMIT,
    VERSION_FIELD,
)
from ..exceptions import (
    ConflictError,
    EntityValidationError,
    ExhaustedError,
    NotFoundError,
    PersistenceFailure,
)
from ..observability import (
    correlated,
    get_metrics_collector,
    log_operation,
    set_request_context,
    timed_operation,
)
from ..repositories import DocumentRepository
from ..schemas import KindSchema, SchemaRegistry
from .placeholders import PlaceholderSynthesizer
from .selector import AccessPathSelector
from .slugs import SlugAllocator
from .types import AccessResult, AttemptRecord, BackfillReport, Entity, Operation, Source

logger = logging.getLogger(__name__)

CreationListener = Callable[[Entity], Awaitable[None]]

_DUP_KEY_RE = re.compile(r"dup key: \{ *\"?([A-Za-z0-9_.]+)\"?\s*:")


def duplicate_key_field(error: DuplicateKeyError) -> str | None:
    """Name of the field whose unique index rejected a write, if known."""
    details = error.details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue")
    if key_pattern:
        return next(iter(key_pattern))
    match = _DUP_KEY_RE.search(str(error))
    return match.group(1) if match else None


class PersistenceFacade:
    """
    Persistence operations for every registered entity kind.

    Stateless apart from its creation listeners; share one instance across
    all concurrent requests.

    Args:
        selector: Access path selector doing the actual reads and writes
        registry: Schema registry of the known kinds
        slugs: Slug allocator for kinds with a slug source field
        synthesizer: Placeholder source for unservable reads
        placeholder_list_size: Placeholders returned by an unservable list
    """

    def __init__(
        self,
        selector: AccessPathSelector,
        registry: SchemaRegistry,
        slugs: SlugAllocator,
        synthesizer: PlaceholderSynthesizer,
        placeholder_list_size: int = DEFAULT_PLACEHOLDER_LIST_SIZE,
    ) -> None:
        self._selector = selector
        self._registry = registry
        self._slugs = slugs
        self._synthesizer = synthesizer
        self.placeholder_list_size = placeholder_list_size
        self._listeners: list[CreationListener] = []

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    def subscribe(self, listener: CreationListener) -> None:
        """Register a coroutine called with every newly created entity."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    @timed_operation("facade.create")
    @correlated
    async def create(self, kind: str, fields: dict[str, Any]) -> AccessResult:
        """
        Create an entity.

        Args:
            kind: Entity kind
            fields: Entity fields; must include the kind's required fields

        Returns:
            AccessResult with the stored entity (source primary or secondary)

        Raises:
            EntityValidationError: Unknown kind, missing or reserved fields
            ConflictError: A unique field other than the slug is taken
            ExhaustedError: Neither access path could store the entity
        """
        set_request_context(kind=kind, operation=Operation.CREATE.value)
        schema = self._registry.get(kind)
        self._validate_create(schema, fields)

        start_time = time.time()
        document_fields = dict(fields)
        try:
            result = await self._write_with_slug(
                schema,
                Operation.CREATE,
                document_fields,
                owner_id=None,
                reslug=schema.has_slug,
                call=lambda repo: repo.insert(kind, document_fields),
            )
        except PersistenceFailure as e:
            log_operation(
                logger,
                "create",
                level=logging.ERROR,
                success=False,
                duration_ms=(time.time() - start_time) * 1000,
                kind=kind,
                failure_kind=e.failure_kind.value,
            )
            raise

        entity = Entity.from_document(kind, result.payload, result.source)
        created = AccessResult(payload=entity, source=result.source, attempts=result.attempts)
        self._record(created, "create", start_time, entity_id=entity.id)
        await self._publish(entity)
        return created

    def _validate_create(self, schema: KindSchema, fields: dict[str, Any]) -> None:
        forbidden = [
            name
            for name in fields
            if name in RESERVED_FIELDS or name == SLUG_FIELD or name.startswith("$")
        ]
        if forbidden:
            raise EntityValidationError(
                f"Fields managed by the store cannot be supplied: {', '.join(forbidden)}",
                kind=schema.kind,
                fields=forbidden,
            )
        missing = schema.missing_fields(fields)
        if missing:
            raise EntityValidationError(
                f"Missing required fields for {schema.kind}: {', '.join(missing)}",
                kind=schema.kind,
                fields=missing,
            )

    async def _publish(self, entity: Entity) -> None:
        for listener in self._listeners:
            try:
                await listener(entity)
            except Exception:
                logger.exception(
                    f"Creation listener {getattr(listener, '__qualname__', listener)!r} "
                    f"failed for {entity.kind} id={entity.id}"
                )

    # ------------------------------------------------------------------
    # fetch / list
    # ------------------------------------------------------------------

    @timed_operation("facade.fetch")
    @correlated
    async def fetch(self, kind: str, id: str) -> AccessResult:
        """
        Fetch one entity by id.

        A missing entity, or one no access path can read, is served as a
        placeholder carrying the requested id. Check
        ``result.is_authoritative`` before treating it as real.

        Raises:
            EntityValidationError: Unknown kind
        """
        set_request_context(kind=kind, operation=Operation.READ.value, entity_id=id)
        self._registry.get(kind)
        start_time = time.time()

        async def read(repo: DocumentRepository) -> dict[str, Any]:
            document = await repo.get(kind, id)
            if document is None:
                raise NotFoundError(f"{kind} {id} does not exist", kind=kind, entity_id=id)
            return document

        try:
            result = await self._route(kind, Operation.READ, read)
        except (NotFoundError, ExhaustedError) as e:
            placeholder = self._synthesizer.synthesize(kind, requested_id=id)
            return self._synthesized(placeholder, e, "fetch", start_time)

        fetched = AccessResult(
            payload=Entity.from_document(kind, result.payload, result.source),
            source=result.source,
            attempts=result.attempts,
        )
        self._record(fetched, "fetch", start_time, entity_id=id)
        return fetched

    @timed_operation("facade.list")
    @correlated
    async def list(
        self,
        kind: str,
        filter: dict[str, Any] | None = None,
        skip: int = 0,
        limit: int = DEFAULT_LIST_LIMIT,
        sort: list[tuple[str, int]] | None = None,
    ) -> AccessResult:
        """
        List entities of ``kind`` matching a MongoDB-style filter.

        When no access path can serve the query, ``placeholder_list_size``
        placeholders are returned instead (source synthesized).
        """
        set_request_context(kind=kind, operation=Operation.LIST.value)
        self._registry.get(kind)
        start_time = time.time()

        try:
            result = await self._route(
                kind,
                Operation.LIST,
                lambda repo: repo.find(kind, filter, skip=skip, limit=limit, sort=sort),
            )
        except ExhaustedError as e:
            placeholders = self._synthesizer.synthesize_many(kind, self.placeholder_list_size)
            return self._synthesized(placeholders, e, "list", start_time)

        listed = AccessResult(
            payload=[Entity.from_document(kind, doc, result.source) for doc in result.payload],
            source=result.source,
            attempts=result.attempts,
        )
        self._record(listed, "list", start_time, count=len(listed.entities))
        return listed

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------

    @timed_operation("facade.update")
    @correlated
    async def update(
        self,
        kind: str,
        id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> AccessResult:
        """
        Apply ``patch`` to an entity and bump its version.

        Changing the slug source field (the display name) allocates a new
        slug; any other patch keeps the existing one.

        Args:
            kind: Entity kind
            id: Entity id
            patch: Fields to set
            expected_version: Fail with ConflictError unless the stored
                version equals this

        Raises:
            EntityValidationError: Empty patch, reserved keys, None required fields
            NotFoundError: No entity with this id
            ConflictError: Stale ``expected_version`` or a taken unique field
            ExhaustedError: Neither access path could apply the patch
        """
        set_request_context(kind=kind, operation=Operation.UPDATE.value, entity_id=id)
        schema = self._registry.get(kind)
        self._validate_patch(schema, patch)
        start_time = time.time()

        changes = dict(patch)
        reslug = False
        if schema.has_slug and schema.slug_source in changes:
            current = await self._read_current(kind, id)
            reslug = current.get(schema.slug_source) != changes[schema.slug_source]

        async def write(repo: DocumentRepository) -> dict[str, Any]:
            document = await repo.update(kind, id, changes, expected_version)
            if document is None:
                raise NotFoundError(f"{kind} {id} does not exist", kind=kind, entity_id=id)
            return document

        try:
            result = await self._write_with_slug(
                schema, Operation.UPDATE, changes, owner_id=id, reslug=reslug, call=write
            )
        except PersistenceFailure as e:
            log_operation(
                logger,
                "update",
                level=logging.WARNING if isinstance(e, ConflictError) else logging.ERROR,
                success=False,
                duration_ms=(time.time() - start_time) * 1000,
                kind=kind,
                entity_id=id,
                failure_kind=e.failure_kind.value,
            )
            raise

        updated = AccessResult(
            payload=Entity.from_document(kind, result.payload, result.source),
            source=result.source,
            attempts=result.attempts,
        )
        self._record(updated, "update", start_time, entity_id=id, version=updated.entity.version)
        return updated

    def _validate_patch(self, schema: KindSchema, patch: dict[str, Any]) -> None:
        if not patch:
            raise EntityValidationError(f"Empty patch for {schema.kind}", kind=schema.kind)
        immutable = [
            name
            for name in patch
            if name in RESERVED_FIELDS or name == SLUG_FIELD or name.startswith("$")
        ]
        if immutable:
            raise EntityValidationError(
                f"Fields cannot be patched: {', '.join(immutable)}",
                kind=schema.kind,
                fields=immutable,
            )
        cleared = [name for name in schema.required if name in patch and patch[name] is None]
        if cleared:
            raise EntityValidationError(
                f"Required fields of {schema.kind} cannot be cleared: {', '.join(cleared)}",
                kind=schema.kind,
                fields=cleared,
            )

    async def _read_current(self, kind: str, id: str) -> dict[str, Any]:
        async def read(repo: DocumentRepository) -> dict[str, Any]:
            document = await repo.get(kind, id)
            if document is None:
                raise NotFoundError(f"{kind} {id} does not exist", kind=kind, entity_id=id)
            return document

        result = await self._route(kind, Operation.READ, read)
        return result.payload

    # ------------------------------------------------------------------
    # backfill
    # ------------------------------------------------------------------

    @timed_operation("facade.assign_missing_slugs")
    @correlated
    async def assign_missing_slugs(
        self, kind: str, batch_size: int = DEFAULT_LIST_LIMIT
    ) -> BackfillReport:
        """
        Allocate a slug for every stored entity of ``kind`` that has none.

        Entities are visited in ``_id`` order, a page at a time. Each gets a
        slug from its display name through a version-guarded update, so an
        entity edited meanwhile is counted as failed rather than overwritten.

        Args:
            kind: Entity kind with a slug source field
            batch_size: Entities read per page

        Returns:
            BackfillReport of the run

        Raises:
            EntityValidationError: Unknown kind or a kind without slugs
            ExhaustedError: The entities could not be read or written
        """
        set_request_context(kind=kind, operation="assign_missing_slugs")
        schema = self._registry.get(kind)
        if not schema.has_slug:
            raise EntityValidationError(f"{kind} entities have no slug", kind=kind)
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        report = BackfillReport()
        last_id = None
        while True:
            query: dict[str, Any] = {SLUG_FIELD: {"$in": [None, ""]}}
            if last_id is not None:
                query[ID_FIELD] = {"$gt": last_id}
            page = await self._route(
                kind,
                Operation.LIST,
                lambda repo: repo.find(kind, query, limit=batch_size, sort=[(ID_FIELD, 1)]),
            )
            for document in page.payload:
                report.scanned += 1
                last_id = document[ID_FIELD]
                try:
                    slug = await self._assign_slug(schema, document)
                except (ConflictError, NotFoundError, EntityValidationError) as e:
                    report.failed += 1
                    logger.warning(f"Could not assign a slug to {kind} id={last_id}: {e}")
                    continue
                report.changed += 1
                logger.debug(f"Assigned slug '{slug}' to {kind} id={last_id}")
            if len(page.payload) < batch_size:
                break

        log_operation(logger, "assign_missing_slugs", kind=kind, **report.to_dict())
        return report

    async def _assign_slug(self, schema: KindSchema, document: dict[str, Any]) -> str:
        entity_id = str(document[ID_FIELD])
        fields = {schema.slug_source: document.get(schema.slug_source)}

        async def write(repo: DocumentRepository) -> dict[str, Any]:
            updated = await repo.update(
                schema.kind,
                entity_id,
                {SLUG_FIELD: fields[SLUG_FIELD]},
                document.get(VERSION_FIELD),
            )
            if updated is None:
                raise NotFoundError(
                    f"{schema.kind} {entity_id} does not exist", kind=schema.kind, entity_id=entity_id
                )
            return updated

        await self._write_with_slug(
            schema, Operation.UPDATE, fields, owner_id=entity_id, reslug=True, call=write
        )
        return fields[SLUG_FIELD]

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _route(
        self,
        kind: str,
        operation: Operation,
        call: Callable[[DocumentRepository], Awaitable[Any]],
    ) -> AccessResult:
        """
        ``selector.route`` with store rejections turned into typed failures.

        Duplicate keys pass through for the slug and conflict handling in
        ``_write_with_slug``. Any other server-side rejection (document
        validation, bad query) or an unencodable document is an
        EntityValidationError.
        """
        try:
            return await self._selector.route(kind, operation, call)
        except DuplicateKeyError:
            raise
        except (OperationFailure, InvalidDocument) as e:
            raise EntityValidationError(
                f"Store rejected {operation.value} of {kind}: {e}",
                kind=kind,
                context={"code": getattr(e, "code", None)},
            ) from e

    async def _write_with_slug(
        self,
        schema: KindSchema,
        operation: Operation,
        fields: dict[str, Any],
        owner_id: str | None,
        reslug: bool,
        call: Callable[[DocumentRepository], Awaitable[Any]],
    ) -> AccessResult:
        """
        Route a write, allocating a slug into ``fields`` first when ``reslug``.

        A duplicate-key rejection on the slug means another writer took the
        candidate after our probe; the slug is re-allocated a bounded number
        of times. Any other duplicate key is a ConflictError. The attempts of
        the uniqueness probes precede the write's own in the result.
        """
        probe_attempts: list[AttemptRecord] = []
        reallocations = 0
        while True:
            if reslug:
                fields[SLUG_FIELD] = await self._slugs.allocate(
                    fields.get(schema.slug_source),
                    schema.kind,
                    owner_id,
                    self._slug_exists_check(schema.kind, owner_id, probe_attempts),
                    attempts=probe_attempts,
                )
            try:
                result = await self._route(schema.kind, operation, call)
            except DuplicateKeyError as e:
                field_name = duplicate_key_field(e)
                if reslug and field_name == SLUG_FIELD and reallocations < SLUG_REALLOCATION_LIMIT:
                    reallocations += 1
                    logger.info(
                        f"Slug '{fields[SLUG_FIELD]}' for {schema.kind} was taken concurrently, "
                        f"re-allocating ({reallocations}/{SLUG_REALLOCATION_LIMIT})"
                    )
                    continue
                raise ConflictError(
                    f"{schema.kind} with this {field_name or 'unique key'} already exists",
                    kind=schema.kind,
                    entity_id=owner_id,
                    context={"field": field_name, "value": (fields.get(field_name) if field_name else None)},
                ) from e
            result.attempts = probe_attempts + result.attempts
            return result

    def _slug_exists_check(
        self, kind: str, owner_id: str | None, attempts: list[AttemptRecord]
    ) -> Callable[[str], Awaitable[bool]]:
        async def exists(candidate: str) -> bool:
            query: dict[str, Any] = {SLUG_FIELD: candidate}
            if owner_id is not None:
                query[ID_FIELD] = {"$ne": owner_id}
            result = await self._route(kind, Operation.READ, lambda repo: repo.count(kind, query))
            attempts.extend(result.attempts)
            return result.payload > 0

        return exists

    def _synthesized(
        self,
        payload: Entity | list[Entity],
        error: PersistenceFailure,
        operation: str,
        start_time: float,
    ) -> AccessResult:
        attempts: list[AttemptRecord] = list(error.attempts)
        result = AccessResult(payload=payload, source=Source.SYNTHESIZED, attempts=attempts)
        logger.warning(
            f"Serving synthesized {operation} result after {error.failure_kind.value}: {error.message}"
        )
        self._record(result, operation, start_time, failure_kind=error.failure_kind.value)
        return result

    @staticmethod
    def _record(result: AccessResult, operation: str, start_time: float, **context: Any) -> None:
        get_metrics_collector().record_source(result.source.value)
        log_operation(
            logger,
            operation,
            level=logging.INFO if result.is_authoritative else logging.WARNING,
            duration_ms=(time.time() - start_time) * 1000,
            source=result.source.value,
            attempts=len(result.attempts),
            **context,
        )
