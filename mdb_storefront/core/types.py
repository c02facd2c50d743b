"""
Type definitions for MDB_STOREFRONT core structures.

This module provides the value types that flow between the backoff
controller, the access path selector, the facade and its collaborators.

This module is part of MDB_STOREFRONT.
"""

import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..constants import (
    CREATED_AT_FIELD,
    ID_FIELD,
    RESERVED_FIELDS,
    UPDATED_AT_FIELD,
    VERSION_FIELD,
)


class Source(str, Enum):
    """Which access path produced a result."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    SYNTHESIZED = "synthesized"


class Operation(str, Enum):
    """Logical persistence operations."""

    CREATE = "create"
    READ = "read"
    LIST = "list"
    UPDATE = "update"


@dataclass(frozen=True)
class AttemptRecord:
    """One entry of an ``AccessResult`` attempt log."""

    path: str
    attempt: int
    outcome: str
    started_at: datetime
    duration_ms: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "attempt": self.attempt,
            "outcome": self.outcome,
            "started_at": self.started_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }


@dataclass
class RetryPolicy:
    """
    Retry policy for one access path.

    The delay after failed attempt ``n`` is
    ``base_delay * multiplier ** (n - 1)`` plus up to ``jitter`` seconds of
    random spread, capped at ``max_delay``. ``timeout`` is the deadline of a
    single attempt.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    multiplier: float = 2.0
    jitter: float = 0.0
    max_delay: float = 5.0
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if self.jitter < 0:
            raise ValueError(f"jitter must be >= 0, got {self.jitter}")
        if self.max_delay < 0:
            raise ValueError(f"max_delay must be >= 0, got {self.max_delay}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

    def compute_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """
        Delay to sleep after ``attempt`` (1-based) failed.

        Args:
            attempt: Number of the attempt that just failed
            rng: Random source for jitter (defaults to the module RNG)

        Returns:
            Delay in seconds, never above ``max_delay``
        """
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.jitter:
            delay += (rng or random).uniform(0, self.jitter)
        return min(delay, self.max_delay)


@dataclass
class Entity:
    """
    A schema-tagged record.

    ``fields`` never contains the store-managed ``_id``, ``_version``,
    ``createdAt`` or ``updatedAt`` keys; those are exposed as attributes.
    """

    id: str
    kind: str
    fields: dict[str, Any]
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    source: Source | None = None

    @classmethod
    def from_document(
        cls, kind: str, document: dict[str, Any], source: Source | None = None
    ) -> "Entity":
        """Create an entity from a stored document."""
        fields = {k: v for k, v in document.items() if k not in RESERVED_FIELDS}
        return cls(
            id=str(document[ID_FIELD]),
            kind=kind,
            fields=fields,
            version=int(document.get(VERSION_FIELD, 1)),
            created_at=document.get(CREATED_AT_FIELD),
            updated_at=document.get(UPDATED_AT_FIELD),
            source=source,
        )

    @property
    def is_synthesized(self) -> bool:
        return self.source == Source.SYNTHESIZED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "version": self.version,
            "fields": dict(self.fields),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "source": self.source.value if self.source else None,
        }


@dataclass
class AccessResult:
    """
    Result of a facade operation.

    ``source == Source.SYNTHESIZED`` means the payload is placeholder data: it
    was never persisted and must not be shown as real or written back.
    """

    payload: Entity | list[Entity]
    source: Source
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def is_authoritative(self) -> bool:
        return self.source != Source.SYNTHESIZED

    @property
    def entity(self) -> Entity:
        """The single entity payload (raises ``TypeError`` for list results)."""
        if isinstance(self.payload, list):
            raise TypeError("AccessResult holds a list; use .entities")
        return self.payload

    @property
    def entities(self) -> list[Entity]:
        if isinstance(self.payload, list):
            return self.payload
        return [self.payload]

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.payload, list):
            data: Any = [e.to_dict() for e in self.payload]
        else:
            data = self.payload.to_dict()
        return {
            "data": data,
            "source": self.source.value,
            "authoritative": self.is_authoritative,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class BackfillReport:
    """
    Outcome of a backfill over existing entities.

    Attributes:
        scanned: Entities examined
        changed: Entities fixed (slug assigned) or dependents created
        skipped: Entities that needed nothing
        failed: Entities whose fix failed (logged)
    """

    scanned: int = 0
    changed: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "changed": self.changed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class SlugRecord:
    """A slug allocated for an entity. Never recycled."""

    base_slug: str
    final_slug: str
    owner_id: str | None = None


@dataclass(frozen=True)
class DerivedRule:
    """
    Rule producing a dependent entity when a source entity is created.

    Attributes:
        name: Rule name used in logs
        source_kind: Kind whose creation triggers the rule
        target_kind: Kind of the dependent entity
        predicate: Whether the new entity qualifies
        build: Fields of the dependent entity
        key: Uniqueness key guarding against duplicate derivation
    """

    name: str
    source_kind: str
    target_kind: str
    predicate: Callable[[Entity], bool]
    build: Callable[[Entity], dict[str, Any]]
    key: Callable[[Entity], str]


Strategy = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class OpSpec:
    """A logical operation plus its primary and secondary strategies."""

    operation: Operation
    primary: Strategy
    secondary: Strategy
