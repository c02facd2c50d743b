"""
Core persistence components.

Backoff, slug allocation, access path selection, placeholder synthesis, the
persistence facade and derived-entity orchestration. The engine that wires
them together lives in ``mdb_storefront.core.engine``.
"""

from .backoff import TRANSIENT_ERRORS, BackoffController, is_transient
from .facade import PersistenceFacade, duplicate_key_field
from .orchestrator import DerivedEntityOrchestrator, payment_request_rule
from .placeholders import PLACEHOLDER_LABEL, PlaceholderSynthesizer
from .selector import AccessPathSelector
from .slugs import SlugAllocator, normalize_slug
from .types import (
    AccessResult,
    AttemptRecord,
    BackfillReport,
    DerivedRule,
    Entity,
    Operation,
    OpSpec,
    RetryPolicy,
    SlugRecord,
    Source,
)

__all__ = [
    # Backoff
    "BackoffController",
    "TRANSIENT_ERRORS",
    "is_transient",
    # Slugs
    "SlugAllocator",
    "normalize_slug",
    # Selection
    "AccessPathSelector",
    # Placeholders
    "PlaceholderSynthesizer",
    "PLACEHOLDER_LABEL",
    # Facade and orchestration
    "PersistenceFacade",
    "duplicate_key_field",
    "DerivedEntityOrchestrator",
    "payment_request_rule",
    # Types
    "AccessResult",
    "AttemptRecord",
    "BackfillReport",
    "DerivedRule",
    "Entity",
    "Operation",
    "OpSpec",
    "RetryPolicy",
    "SlugRecord",
    "Source",
]
