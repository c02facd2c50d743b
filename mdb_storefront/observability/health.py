"""
Health check utilities for MDB_STOREFRONT.

Reports whether each access path can reach the store.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class HealthChecker:
    """
    Runs registered health checks and folds them into one status.
    """

    def __init__(self):
        self._checks: list[Callable[[], Awaitable[HealthCheckResult]]] = []

    def register_check(self, check_func: Callable[[], Awaitable[HealthCheckResult]]) -> None:
        """
        Register a health check function.

        Args:
            check_func: Async function that returns HealthCheckResult
        """
        self._checks.append(check_func)

    async def check_all(self) -> dict[str, Any]:
        """
        Run all registered health checks.

        Returns:
            Dictionary with overall status and individual check results
        """
        results: list[HealthCheckResult] = []

        for check_func in self._checks:
            try:
                results.append(await check_func())
            except (RuntimeError, ValueError, TypeError, AttributeError, OSError) as e:
                logger.error(f"Health check {check_func.__name__} failed: {e}", exc_info=True)
                results.append(
                    HealthCheckResult(
                        name=check_func.__name__,
                        status=HealthStatus.UNKNOWN,
                        message=f"Check failed: {str(e)}",
                    )
                )

        statuses = [r.status for r in results]
        if HealthStatus.UNHEALTHY in statuses:
            overall_status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall_status = HealthStatus.DEGRADED
        elif all(s == HealthStatus.HEALTHY for s in statuses):
            overall_status = HealthStatus.HEALTHY
        else:
            overall_status = HealthStatus.UNKNOWN

        return {
            "status": overall_status.value,
            "timestamp": datetime.now().isoformat(),
            "checks": [r.to_dict() for r in results],
        }


async def _ping(repository: Any) -> tuple[bool, str | None]:
    try:
        return bool(await repository.ping()), None
    except (PyMongoError, OSError, TimeoutError) as e:
        logger.warning(f"Access path ping failed: {e}")
        return False, str(e)


async def check_access_paths(primary: Any, secondary: Any) -> HealthCheckResult:
    """
    Ping both access paths.

    Args:
        primary: Repository of the mapped path
        secondary: Repository of the raw driver path

    Returns:
        HEALTHY if both answer, DEGRADED if one does, UNHEALTHY if neither does
    """
    primary_ok, primary_error = await _ping(primary)
    secondary_ok, secondary_error = await _ping(secondary)

    details = {
        "primary": "up" if primary_ok else primary_error,
        "secondary": "up" if secondary_ok else secondary_error,
    }
    if primary_ok and secondary_ok:
        return HealthCheckResult("access_paths", HealthStatus.HEALTHY, "Both access paths up", details)
    if primary_ok or secondary_ok:
        down = "secondary" if primary_ok else "primary"
        return HealthCheckResult(
            "access_paths", HealthStatus.DEGRADED, f"The {down} access path is down", details
        )
    return HealthCheckResult(
        "access_paths",
        HealthStatus.UNHEALTHY,
        "No access path reaches the store; reads are served from placeholders",
        details,
    )
