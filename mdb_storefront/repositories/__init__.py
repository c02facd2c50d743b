"""
MDB Storefront Repositories

The concrete access paths behind the persistence facade.

Usage:
    from mdb_storefront.repositories import MappedRepository, MongoRepository

    raw = MongoRepository(direct_db, registry)            # secondary path
    mapped = MappedRepository(MongoRepository(db, registry))  # primary path
"""

from .base import DocumentRepository, InMemoryRepository
from .mapped import MappedRepository
from .mongo import MongoRepository

__all__ = [
    "DocumentRepository",
    "InMemoryRepository",
    "MappedRepository",
    "MongoRepository",
]
