"""
Connection management for MDB_STOREFRONT.

Owns the two Motor clients behind the access paths:

- the mapped client, with short server selection timeouts, serving the
  validated (primary) path;
- the direct client, with long connect and socket timeouts, serving the raw
  (secondary) path when the mapped one struggles.

Both point at the same deployment. Startup succeeds when at least one of them
answers a ping.

This module is part of MDB_STOREFRONT.
"""

import logging
import time

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, OperationFailure, ServerSelectionTimeoutError

from ..constants import (
    DEFAULT_DIRECT_SOCKET_TIMEOUT_MS,
    DEFAULT_DIRECT_TIMEOUT_MS,
    DEFAULT_MAX_IDLE_TIME_MS,
    DEFAULT_MAX_POOL_SIZE,
    DEFAULT_MIN_POOL_SIZE,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
)
from ..exceptions import InitializationError
from ..observability import get_logger as get_contextual_logger
from ..observability import record_operation

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

_PING_ERRORS = (ConnectionFailure, ServerSelectionTimeoutError, OperationFailure)


class ConnectionManager:
    """
    Manages the lifecycle of the mapped and direct MongoDB clients.

    The Motor clients own the connection pools; repositories borrow a pooled
    connection per operation and never hold one between calls.
    """

    def __init__(
        self,
        mongo_uri: str,
        db_name: str,
        max_pool_size: int = DEFAULT_MAX_POOL_SIZE,
        min_pool_size: int = DEFAULT_MIN_POOL_SIZE,
        server_selection_timeout_ms: int = DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
        direct_timeout_ms: int = DEFAULT_DIRECT_TIMEOUT_MS,
    ) -> None:
        """
        Initialize the connection manager.

        Args:
            mongo_uri: MongoDB connection URI
            db_name: Database name
            max_pool_size: Maximum connection pool size of each client
            min_pool_size: Minimum connection pool size of each client
            server_selection_timeout_ms: Server selection timeout of the mapped client
            direct_timeout_ms: Connect/server selection timeout of the direct client
        """
        self.mongo_uri = mongo_uri
        self.db_name = db_name
        self.max_pool_size = max_pool_size
        self.min_pool_size = min_pool_size
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.direct_timeout_ms = direct_timeout_ms

        self._mapped_client: AsyncIOMotorClient | None = None
        self._direct_client: AsyncIOMotorClient | None = None
        self._mapped_up: bool = False
        self._direct_up: bool = False
        self._initialized: bool = False

    async def initialize(self) -> None:
        """
        Create both clients and ping them.

        Raises:
            InitializationError: If neither client can reach MongoDB
        """
        start_time = time.time()

        if self._initialized:
            logger.warning("ConnectionManager already initialized. Skipping re-initialization.")
            return

        contextual_logger.info(
            "Initializing MongoDB connections",
            extra={
                "db_name": self.db_name,
                "max_pool_size": self.max_pool_size,
                "min_pool_size": self.min_pool_size,
            },
        )

        try:
            self._mapped_client = AsyncIOMotorClient(
                self.mongo_uri,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                appname="MDB_STOREFRONT",
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=DEFAULT_MAX_IDLE_TIME_MS,
                retryWrites=True,
                retryReads=True,
            )
            self._direct_client = AsyncIOMotorClient(
                self.mongo_uri,
                serverSelectionTimeoutMS=self.direct_timeout_ms,
                connectTimeoutMS=self.direct_timeout_ms,
                socketTimeoutMS=DEFAULT_DIRECT_SOCKET_TIMEOUT_MS,
                appname="MDB_STOREFRONT_DIRECT",
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=DEFAULT_MAX_IDLE_TIME_MS,
                retryWrites=True,
                retryReads=True,
            )
        except (TypeError, ValueError) as e:
            record_operation(
                "connection.initialize", (time.time() - start_time) * 1000, success=False
            )
            raise InitializationError(
                f"Invalid MongoDB client configuration: {e}",
                mongo_uri=self.mongo_uri,
                db_name=self.db_name,
                context={"error_type": type(e).__name__},
            ) from e

        self._mapped_up = await self._ping(self._mapped_client, "mapped")
        self._direct_up = await self._ping(self._direct_client, "direct")
        duration_ms = (time.time() - start_time) * 1000

        if not (self._mapped_up or self._direct_up):
            record_operation("connection.initialize", duration_ms, success=False)
            self._close_clients()
            contextual_logger.critical(
                "MongoDB unreachable on both access paths",
                extra={"duration_ms": round(duration_ms, 2)},
            )
            raise InitializationError(
                "Failed to connect to MongoDB on either access path",
                mongo_uri=self.mongo_uri,
                db_name=self.db_name,
            )

        if not (self._mapped_up and self._direct_up):
            contextual_logger.warning(
                "Starting in degraded mode: only one access path is reachable",
                extra={"mapped_up": self._mapped_up, "direct_up": self._direct_up},
            )

        self._initialized = True
        record_operation("connection.initialize", duration_ms, success=True)
        contextual_logger.info(
            "MongoDB connections initialized",
            extra={
                "db_name": self.db_name,
                "pool_size": f"{self.min_pool_size}-{self.max_pool_size}",
                "duration_ms": round(duration_ms, 2),
            },
        )

    async def _ping(self, client: AsyncIOMotorClient, label: str) -> bool:
        try:
            await client.admin.command("ping")
            return True
        except _PING_ERRORS as e:
            contextual_logger.error(
                f"Ping on {label} client failed",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return False

    def _close_clients(self) -> None:
        for client in (self._mapped_client, self._direct_client):
            if client is not None:
                client.close()
        self._mapped_client = None
        self._direct_client = None

    async def shutdown(self) -> None:
        """
        Close both clients. Safe to call more than once.
        """
        if not self._initialized:
            return
        start_time = time.time()
        self._close_clients()
        self._initialized = False
        self._mapped_up = self._direct_up = False
        record_operation(
            "connection.shutdown", (time.time() - start_time) * 1000, success=True
        )
        contextual_logger.info("MongoDB connections closed")

    def _require(self, client: AsyncIOMotorClient | None) -> AsyncIOMotorClient:
        if not self._initialized or client is None:
            raise RuntimeError("ConnectionManager not initialized. Call initialize() first.")
        return client

    @property
    def mapped_client(self) -> AsyncIOMotorClient:
        return self._require(self._mapped_client)

    @property
    def direct_client(self) -> AsyncIOMotorClient:
        return self._require(self._direct_client)

    @property
    def primary_db(self) -> AsyncIOMotorDatabase:
        """Database handle of the mapped (primary) path."""
        return self.mapped_client[self.db_name]

    @property
    def direct_db(self) -> AsyncIOMotorDatabase:
        """Database handle of the direct (secondary) path."""
        return self.direct_client[self.db_name]

    @property
    def degraded(self) -> bool:
        """True if startup found only one access path reachable."""
        return self._initialized and not (self._mapped_up and self._direct_up)

    @property
    def initialized(self) -> bool:
        return self._initialized
