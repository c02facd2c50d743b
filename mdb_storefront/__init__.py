"""
MDB_STOREFRONT - Resilient MongoDB persistence for a storefront

Persistence facade with primary/secondary access paths, retry with backoff,
collision-free slugs, placeholder reads and derived payment requests.
"""

from .config import StoreConfig
# Core
from .core import (AccessPathSelector, AccessResult, BackoffController,
                   DerivedEntityOrchestrator, DerivedRule, Entity,
                   PersistenceFacade, PlaceholderSynthesizer, RetryPolicy,
                   SlugAllocator, Source, payment_request_rule)
from .core.engine import StorefrontEngine
# Errors
from .exceptions import (ConfigurationError, ConflictError,
                         EntityValidationError, ExhaustedError, FailureKind,
                         InitializationError, NotFoundError,
                         PersistenceFailure, SchemaMismatchError,
                         StorefrontError)
# Repositories
from .repositories import (DocumentRepository, InMemoryRepository,
                           MappedRepository, MongoRepository)
from .schemas import KindSchema, SchemaRegistry, default_registry

__version__ = "0.1.0"

__all__ = [
    # Engine
    "StorefrontEngine",
    "StoreConfig",
    # Core
    "PersistenceFacade",
    "AccessPathSelector",
    "BackoffController",
    "SlugAllocator",
    "PlaceholderSynthesizer",
    "DerivedEntityOrchestrator",
    "payment_request_rule",
    "AccessResult",
    "DerivedRule",
    "Entity",
    "RetryPolicy",
    "Source",
    # Schemas
    "KindSchema",
    "SchemaRegistry",
    "default_registry",
    # Repositories
    "DocumentRepository",
    "InMemoryRepository",
    "MappedRepository",
    "MongoRepository",
    # Errors
    "StorefrontError",
    "PersistenceFailure",
    "FailureKind",
    "EntityValidationError",
    "SchemaMismatchError",
    "NotFoundError",
    "ConflictError",
    "ExhaustedError",
    "ConfigurationError",
    "InitializationError",
]
