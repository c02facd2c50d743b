"""
Slug Allocator

Turns display names into URL-safe slugs that are unique within a kind.

The uniqueness probe is best-effort: two writers can both see a candidate as
free. The store's unique index on ``slug`` has the final word, and the
facade re-runs allocation when it rejects a slug.

This module is part of MDB_STOREFRONT.
"""

import logging
import random
import re
import time
import unicodedata
from collections.abc import Awaitable, Callable

from ..constants import SLUG_PROBE_LIMIT, SLUG_STRIP_CHARACTERS
from ..exceptions import ExhaustedError
from .backoff import BackoffController
from .types import AttemptRecord, RetryPolicy, SlugRecord

logger = logging.getLogger(__name__)

ExistsCheck = Callable[[str], Awaitable[bool]]

_STRIP_RE = re.compile("[" + re.escape(SLUG_STRIP_CHARACTERS) + "]")
_SEPARATOR_RE = re.compile(r"[^a-z0-9]+")


def normalize_slug(text: str | None) -> str:
    """
    Convert a display name to a lowercase, hyphenated, ASCII-only string.

    Examples:
        "Oak Chair"        -> "oak-chair"
        "Café Table (New)" -> "cafe-table-new"
        "Mira's Haven"     -> "miras-haven"
        "椅子"              -> ""
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = _STRIP_RE.sub("", text.lower())
    return _SEPARATOR_RE.sub("-", text).strip("-")


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class SlugAllocator:
    """
    Allocates collision-free slugs.

    Args:
        backoff: Controller the uniqueness probes run under
        policy: Retry policy for each probe
        degraded_mode: When True, a probe that cannot reach the store counts as
            "slug is free" (logged). When False such a probe fails allocation.
        probe_limit: Highest numeric suffix tried before the timestamp fallback
    """

    def __init__(
        self,
        backoff: BackoffController,
        policy: RetryPolicy | None = None,
        degraded_mode: bool = False,
        probe_limit: int = SLUG_PROBE_LIMIT,
        rng: random.Random | None = None,
    ) -> None:
        self._backoff = backoff
        self._policy = policy or RetryPolicy(max_attempts=1)
        self.degraded_mode = degraded_mode
        self._probe_limit = probe_limit
        self._rng = rng or random.Random()

    def base_slug(self, display_name: str | None, kind: str) -> str:
        """Normalized slug for ``display_name``, or a random fallback if empty."""
        base = normalize_slug(display_name)
        if not base:
            base = f"{kind.lower()}-{_timestamp_ms()}-{self._rng.randint(0, 999)}"
            logger.info(f"Display name {display_name!r} has no slug-safe characters, using {base}")
        return base

    async def allocate(
        self,
        display_name: str | None,
        kind: str,
        owner_id: str | None,
        exists_check: ExistsCheck,
        attempts: list[AttemptRecord] | None = None,
    ) -> str:
        """
        Allocate a unique slug.

        Args:
            display_name: Human-readable name to derive the slug from
            kind: Entity kind (used in the fallback slug)
            owner_id: Id of the entity the slug is for, if it already exists
            exists_check: Coroutine returning True if a candidate is taken
            attempts: Log each probe attempt is appended to

        Returns:
            The final slug

        Raises:
            ExhaustedError: If the store cannot be probed and degraded mode is off
        """
        record = await self.allocate_record(display_name, kind, owner_id, exists_check, attempts)
        return record.final_slug

    async def allocate_record(
        self,
        display_name: str | None,
        kind: str,
        owner_id: str | None,
        exists_check: ExistsCheck,
        attempts: list[AttemptRecord] | None = None,
    ) -> SlugRecord:
        """Same as ``allocate`` but returns the full SlugRecord."""
        base = self.base_slug(display_name, kind)

        for counter in range(self._probe_limit + 1):
            candidate = base if counter == 0 else f"{base}-{counter}"
            if not await self._is_taken(candidate, kind, exists_check, attempts):
                return SlugRecord(base_slug=base, final_slug=candidate, owner_id=owner_id)

        fallback = f"{base}-{_timestamp_ms()}"
        logger.warning(
            f"Slug probe limit ({self._probe_limit}) reached for {kind} '{base}', using {fallback}"
        )
        return SlugRecord(base_slug=base, final_slug=fallback, owner_id=owner_id)

    async def _is_taken(
        self,
        candidate: str,
        kind: str,
        exists_check: ExistsCheck,
        attempts: list[AttemptRecord] | None,
    ) -> bool:
        try:
            return bool(
                await self._backoff.execute(
                    lambda: exists_check(candidate),
                    self._policy,
                    path="slug-probe",
                    attempts=attempts,
                )
            )
        except ExhaustedError:
            if not self.degraded_mode:
                logger.error(f"Cannot verify {kind} slug '{candidate}' is unique; store unreachable")
                raise
            logger.warning(
                f"Degraded mode: assuming {kind} slug '{candidate}' is free "
                f"(uniqueness probe failed, unique index will arbitrate)"
            )
            return False
