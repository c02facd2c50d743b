"""
Constants for MDB_STOREFRONT.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# DATABASE CONSTANTS
# ============================================================================

# Connection pool defaults
DEFAULT_MAX_POOL_SIZE: Final[int] = 50
"""Default maximum MongoDB connection pool size."""

DEFAULT_MIN_POOL_SIZE: Final[int] = 10
"""Default minimum MongoDB connection pool size."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Server selection timeout for the mapped (primary) client in milliseconds."""

DEFAULT_DIRECT_TIMEOUT_MS: Final[int] = 60000
"""Connect/server selection timeout for the direct (secondary) client in milliseconds."""

DEFAULT_DIRECT_SOCKET_TIMEOUT_MS: Final[int] = 300000
"""Socket timeout for the direct (secondary) client in milliseconds."""

DEFAULT_MAX_IDLE_TIME_MS: Final[int] = 45000
"""Default maximum idle time before closing connections (milliseconds)."""

# ============================================================================
# DOCUMENT LAYOUT
# ============================================================================

ID_FIELD: Final[str] = "_id"
VERSION_FIELD: Final[str] = "_version"
CREATED_AT_FIELD: Final[str] = "createdAt"
UPDATED_AT_FIELD: Final[str] = "updatedAt"
SLUG_FIELD: Final[str] = "slug"
DERIVED_KEY_FIELD: Final[str] = "derivedKey"

RESERVED_FIELDS: Final[tuple[str, ...]] = (
    ID_FIELD,
    VERSION_FIELD,
    CREATED_AT_FIELD,
    UPDATED_AT_FIELD,
)
"""Store-managed fields that never appear in ``Entity.fields``."""

# ============================================================================
# RETRY POLICY DEFAULTS
# ============================================================================

# Mapped path: fast and strict
PRIMARY_MAX_ATTEMPTS: Final[int] = 3
PRIMARY_BASE_DELAY: Final[float] = 0.1
PRIMARY_MULTIPLIER: Final[float] = 2.0
PRIMARY_JITTER: Final[float] = 0.05
PRIMARY_MAX_DELAY: Final[float] = 1.0
PRIMARY_TIMEOUT: Final[float] = 5.0

# Direct path: already a fallback, so fewer but longer attempts
SECONDARY_MAX_ATTEMPTS: Final[int] = 2
SECONDARY_BASE_DELAY: Final[float] = 0.5
SECONDARY_MULTIPLIER: Final[float] = 2.0
SECONDARY_JITTER: Final[float] = 0.1
SECONDARY_MAX_DELAY: Final[float] = 5.0
SECONDARY_TIMEOUT: Final[float] = 30.0

# ============================================================================
# SLUG CONSTANTS
# ============================================================================

SLUG_PROBE_LIMIT: Final[int] = 1000
"""Maximum number of ``-N`` suffixes probed before falling back to a timestamp."""

SLUG_REALLOCATION_LIMIT: Final[int] = 5
"""Times a create re-allocates a slug after a duplicate-key rejection on it."""

SLUG_STRIP_CHARACTERS: Final[str] = "*+~.()'\"!:@"
"""Characters removed (not hyphenated) during slug normalization."""

# ============================================================================
# FACADE CONSTANTS
# ============================================================================

DEFAULT_LIST_LIMIT: Final[int] = 100
"""Default maximum number of entities returned by ``list``."""

DEFAULT_PLACEHOLDER_LIST_SIZE: Final[int] = 3
"""Number of placeholder entities returned when a ``list`` cannot be served."""

# ============================================================================
# DERIVED ENTITY CONSTANTS
# ============================================================================

PAYMENT_REQUEST_METHODS: Final[tuple[str, ...]] = ("upi", "rupay")
"""Order payment methods that require a manual payment request."""
