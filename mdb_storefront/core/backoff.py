"""
Backoff Controller

Runs one access-path operation with per-attempt deadlines, retrying transient
failures with exponential backoff and surfacing terminal failures at once.

This module is part of MDB_STOREFRONT.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    ExecutionTimeout,
    WTimeoutError,
)
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from ..exceptions import ExhaustedError
from .types import AttemptRecord, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ConnectionFailure covers NetworkTimeout and ServerSelectionTimeoutError
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    AutoReconnect,
    ConnectionFailure,
    ExecutionTimeout,
    WTimeoutError,
    TimeoutError,
    asyncio.TimeoutError,
)


def is_transient(error: BaseException) -> bool:
    """Return True if ``error`` is worth retrying on the same path."""
    return isinstance(error, TRANSIENT_ERRORS)


class BackoffController:
    """
    Generic retry-with-backoff executor.

    Stateless apart from its sleep function and random source, so one
    instance can serve any number of concurrent operations.

    Example:
        controller = BackoffController()
        attempts = []
        doc = await controller.execute(
            lambda: collection.find_one({"_id": oid}),
            RetryPolicy(max_attempts=3, timeout=2.0),
            path="primary",
            attempts=attempts,
        )
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """
        Args:
            sleep: Coroutine used between attempts (inject a fake in tests)
            rng: Random source for jitter
        """
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        path: str = "primary",
        attempts: list[AttemptRecord] | None = None,
    ) -> T:
        """
        Run ``operation`` under ``policy``.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
            policy: Retry policy for this path
            path: Label recorded in the attempt log
            attempts: Log to append one AttemptRecord per attempt to

        Returns:
            The operation's result

        Raises:
            ExhaustedError: If every attempt failed transiently
            Exception: Any terminal error, unchanged and unretried
        """
        log = attempts if attempts is not None else []

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=lambda retry_state: policy.compute_delay(retry_state.attempt_number, self._rng),
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry(path, policy),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(
                        operation, policy, path, attempt.retry_state.attempt_number, log
                    )
        except TRANSIENT_ERRORS as e:
            raise ExhaustedError(
                f"{path} access path exhausted after {policy.max_attempts} attempt(s): {e}",
                last_error=e,
                attempts=log,
                context={"path": path},
            ) from e

        # AsyncRetrying always returns or raises inside the loop
        raise RuntimeError("retry loop ended without an outcome")

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        path: str,
        number: int,
        log: list[AttemptRecord],
    ) -> T:
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        try:
            if policy.timeout is not None:
                result = await asyncio.wait_for(operation(), timeout=policy.timeout)
            else:
                result = await operation()
        except Exception as e:
            outcome = "transient" if is_transient(e) else "terminal"
            log.append(
                AttemptRecord(
                    path=path,
                    attempt=number,
                    outcome=outcome,
                    started_at=started_at,
                    duration_ms=(time.monotonic() - start) * 1000,
                    error=f"{type(e).__name__}: {e}",
                )
            )
            raise
        log.append(
            AttemptRecord(
                path=path,
                attempt=number,
                outcome="success",
                started_at=started_at,
                duration_ms=(time.monotonic() - start) * 1000,
            )
        )
        return result

    @staticmethod
    def _log_retry(path: str, policy: RetryPolicy) -> Callable[[Any], None]:
        def before_sleep(retry_state: Any) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Transient failure on {path} path "
                f"(attempt {retry_state.attempt_number}/{policy.max_attempts}), "
                f"retrying in {retry_state.upcoming_sleep:.2f}s: {error}"
            )

        return before_sleep
