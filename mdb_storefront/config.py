"""
Configuration management for MDB_STOREFRONT.

Every setting can be passed to ``StoreConfig`` directly or read from the
environment; constructor arguments win over environment variables.
"""

import os

from .constants import (
    DEFAULT_DIRECT_TIMEOUT_MS,
    DEFAULT_MAX_POOL_SIZE,
    DEFAULT_MIN_POOL_SIZE,
    DEFAULT_PLACEHOLDER_LIST_SIZE,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    PRIMARY_BASE_DELAY,
    PRIMARY_JITTER,
    PRIMARY_MAX_ATTEMPTS,
    PRIMARY_MAX_DELAY,
    PRIMARY_MULTIPLIER,
    PRIMARY_TIMEOUT,
    SECONDARY_BASE_DELAY,
    SECONDARY_JITTER,
    SECONDARY_MAX_ATTEMPTS,
    SECONDARY_MAX_DELAY,
    SECONDARY_MULTIPLIER,
    SECONDARY_TIMEOUT,
)
from .core.types import RetryPolicy
from .exceptions import ConfigurationError


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer", config_key=name, config_value=value
        ) from e


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be a number", config_key=name, config_value=value
        ) from e


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _pick(value, fallback):
    return value if value is not None else fallback


class StoreConfig:
    """
    Storefront persistence configuration.

    Example:
        # Using environment variables
        config = StoreConfig()
        config.validate()
        engine = StorefrontEngine(config)

        # Or using direct parameters
        config = StoreConfig(
            mongo_uri="mongodb://localhost:27017/?replicaSet=rs0",
            db_name="storefront",
            slug_degraded_mode=True,
        )
    """

    def __init__(
        self,
        mongo_uri: str | None = None,
        db_name: str | None = None,
        max_pool_size: int | None = None,
        min_pool_size: int | None = None,
        server_selection_timeout_ms: int | None = None,
        direct_timeout_ms: int | None = None,
        primary_max_attempts: int | None = None,
        primary_base_delay: float | None = None,
        primary_multiplier: float | None = None,
        primary_jitter: float | None = None,
        primary_max_delay: float | None = None,
        primary_timeout: float | None = None,
        secondary_max_attempts: int | None = None,
        secondary_base_delay: float | None = None,
        secondary_multiplier: float | None = None,
        secondary_jitter: float | None = None,
        secondary_max_delay: float | None = None,
        secondary_timeout: float | None = None,
        slug_degraded_mode: bool | None = None,
        placeholder_list_size: int | None = None,
    ):
        """
        Initialize configuration.

        Args:
            mongo_uri: MongoDB connection URI (defaults to MONGO_URI env var)
            db_name: Database name (defaults to DB_NAME env var)
            max_pool_size: Maximum connection pool size per client
                (defaults to 50 or MONGO_MAX_POOL_SIZE)
            min_pool_size: Minimum connection pool size per client
                (defaults to 10 or MONGO_MIN_POOL_SIZE)
            server_selection_timeout_ms: Server selection timeout of the mapped
                client in ms (defaults to 5000)
            direct_timeout_ms: Connect/server selection timeout of the direct
                client in ms (defaults to 60000)
            primary_*: Retry policy of the mapped path
                (STOREFRONT_PRIMARY_MAX_ATTEMPTS, ..._BASE_DELAY, ...)
            secondary_*: Retry policy of the direct path
                (STOREFRONT_SECONDARY_MAX_ATTEMPTS, ...)
            slug_degraded_mode: Treat unreachable slug probes as "free"
                (defaults to False or STOREFRONT_SLUG_DEGRADED_MODE)
            placeholder_list_size: Placeholders returned by an unservable list
                (defaults to 3 or STOREFRONT_PLACEHOLDER_LIST_SIZE)
        """
        self.mongo_uri = mongo_uri or os.getenv("MONGO_URI", "")
        self.db_name = db_name or os.getenv("DB_NAME", "")
        self.max_pool_size = _pick(
            max_pool_size, _env_int("MONGO_MAX_POOL_SIZE", DEFAULT_MAX_POOL_SIZE)
        )
        self.min_pool_size = _pick(
            min_pool_size, _env_int("MONGO_MIN_POOL_SIZE", DEFAULT_MIN_POOL_SIZE)
        )
        self.server_selection_timeout_ms = _pick(
            server_selection_timeout_ms,
            _env_int("MONGO_SERVER_SELECTION_TIMEOUT_MS", DEFAULT_SERVER_SELECTION_TIMEOUT_MS),
        )
        self.direct_timeout_ms = _pick(
            direct_timeout_ms, _env_int("MONGO_DIRECT_TIMEOUT_MS", DEFAULT_DIRECT_TIMEOUT_MS)
        )

        self.primary_max_attempts = _pick(
            primary_max_attempts,
            _env_int("STOREFRONT_PRIMARY_MAX_ATTEMPTS", PRIMARY_MAX_ATTEMPTS),
        )
        self.primary_base_delay = _pick(
            primary_base_delay, _env_float("STOREFRONT_PRIMARY_BASE_DELAY", PRIMARY_BASE_DELAY)
        )
        self.primary_multiplier = _pick(
            primary_multiplier, _env_float("STOREFRONT_PRIMARY_MULTIPLIER", PRIMARY_MULTIPLIER)
        )
        self.primary_jitter = _pick(
            primary_jitter, _env_float("STOREFRONT_PRIMARY_JITTER", PRIMARY_JITTER)
        )
        self.primary_max_delay = _pick(
            primary_max_delay, _env_float("STOREFRONT_PRIMARY_MAX_DELAY", PRIMARY_MAX_DELAY)
        )
        self.primary_timeout = _pick(
            primary_timeout, _env_float("STOREFRONT_PRIMARY_TIMEOUT", PRIMARY_TIMEOUT)
        )

        self.secondary_max_attempts = _pick(
            secondary_max_attempts,
            _env_int("STOREFRONT_SECONDARY_MAX_ATTEMPTS", SECONDARY_MAX_ATTEMPTS),
        )
        self.secondary_base_delay = _pick(
            secondary_base_delay,
            _env_float("STOREFRONT_SECONDARY_BASE_DELAY", SECONDARY_BASE_DELAY),
        )
        self.secondary_multiplier = _pick(
            secondary_multiplier,
            _env_float("STOREFRONT_SECONDARY_MULTIPLIER", SECONDARY_MULTIPLIER),
        )
        self.secondary_jitter = _pick(
            secondary_jitter, _env_float("STOREFRONT_SECONDARY_JITTER", SECONDARY_JITTER)
        )
        self.secondary_max_delay = _pick(
            secondary_max_delay,
            _env_float("STOREFRONT_SECONDARY_MAX_DELAY", SECONDARY_MAX_DELAY),
        )
        self.secondary_timeout = _pick(
            secondary_timeout, _env_float("STOREFRONT_SECONDARY_TIMEOUT", SECONDARY_TIMEOUT)
        )

        self.slug_degraded_mode = _pick(
            slug_degraded_mode, _env_bool("STOREFRONT_SLUG_DEGRADED_MODE", False)
        )
        self.placeholder_list_size = _pick(
            placeholder_list_size,
            _env_int("STOREFRONT_PLACEHOLDER_LIST_SIZE", DEFAULT_PLACEHOLDER_LIST_SIZE),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If required configuration is missing or invalid
        """
        if not self.mongo_uri:
            raise ConfigurationError(
                "mongo_uri is required (set MONGO_URI environment variable or pass directly)",
                config_key="mongo_uri",
            )

        if not self.db_name:
            raise ConfigurationError(
                "db_name is required (set DB_NAME environment variable or pass directly)",
                config_key="db_name",
            )

        if self.max_pool_size < 1:
            raise ConfigurationError(
                f"max_pool_size must be >= 1, got {self.max_pool_size}",
                config_key="max_pool_size",
                config_value=self.max_pool_size,
            )

        if self.min_pool_size < 0:
            raise ConfigurationError(
                f"min_pool_size must be >= 0, got {self.min_pool_size}",
                config_key="min_pool_size",
                config_value=self.min_pool_size,
            )

        if self.min_pool_size > self.max_pool_size:
            raise ConfigurationError(
                f"min_pool_size ({self.min_pool_size}) cannot be greater than "
                f"max_pool_size ({self.max_pool_size})",
                config_key="min_pool_size",
                config_value=self.min_pool_size,
            )

        if self.server_selection_timeout_ms < 1000:
            raise ConfigurationError(
                f"server_selection_timeout_ms must be >= 1000, got "
                f"{self.server_selection_timeout_ms}",
                config_key="server_selection_timeout_ms",
                config_value=self.server_selection_timeout_ms,
            )

        if self.direct_timeout_ms < self.server_selection_timeout_ms:
            raise ConfigurationError(
                f"direct_timeout_ms ({self.direct_timeout_ms}) must not be shorter than "
                f"server_selection_timeout_ms ({self.server_selection_timeout_ms})",
                config_key="direct_timeout_ms",
                config_value=self.direct_timeout_ms,
            )

        if self.placeholder_list_size < 0:
            raise ConfigurationError(
                f"placeholder_list_size must be >= 0, got {self.placeholder_list_size}",
                config_key="placeholder_list_size",
                config_value=self.placeholder_list_size,
            )

        for name, build in (("primary", self.primary_policy), ("secondary", self.secondary_policy)):
            try:
                build()
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid {name} retry policy: {e}", config_key=f"{name}_policy"
                ) from e

    def primary_policy(self) -> RetryPolicy:
        """Retry policy of the mapped access path."""
        return RetryPolicy(
            max_attempts=self.primary_max_attempts,
            base_delay=self.primary_base_delay,
            multiplier=self.primary_multiplier,
            jitter=self.primary_jitter,
            max_delay=self.primary_max_delay,
            timeout=self.primary_timeout,
        )

    def secondary_policy(self) -> RetryPolicy:
        """Retry policy of the direct access path."""
        return RetryPolicy(
            max_attempts=self.secondary_max_attempts,
            base_delay=self.secondary_base_delay,
            multiplier=self.secondary_multiplier,
            jitter=self.secondary_jitter,
            max_delay=self.secondary_max_delay,
            timeout=self.secondary_timeout,
        )

    def probe_policy(self) -> RetryPolicy:
        """
        Policy of a single slug uniqueness probe.

        Probes already run through both access paths, each with its own
        retries, so the probe itself is not retried again.
        """
        return RetryPolicy(max_attempts=1)
