"""
Access Path Selector

Runs a logical operation on the mapped (primary) path and falls back to the
raw driver (secondary) path, recording which one served it. The selector
never fabricates data: when both paths fail it raises, and the facade decides
what to do.

This module is part of MDB_STOREFRONT.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..exceptions import ExhaustedError, PersistenceFailure
from ..observability import get_metrics_collector
from ..repositories import DocumentRepository
from .backoff import BackoffController
from .types import AccessResult, AttemptRecord, Operation, OpSpec, RetryPolicy, Source

logger = logging.getLogger(__name__)


def _falls_through(error: BaseException) -> bool:
    return isinstance(error, ExhaustedError) or getattr(error, "secondary_eligible", False)


class AccessPathSelector:
    """
    Primary-then-secondary executor over two repositories.

    The repositories (and the connection pools behind them) are shared by all
    in-flight operations; the selector keeps no per-request state.

    Args:
        primary: Repository of the mapped/validated path
        secondary: Repository of the raw driver path
        backoff: Controller each path runs under
        primary_policy: Short timeouts, a few attempts
        secondary_policy: Longer timeouts, fewer attempts
    """

    def __init__(
        self,
        primary: DocumentRepository,
        secondary: DocumentRepository,
        backoff: BackoffController,
        primary_policy: RetryPolicy,
        secondary_policy: RetryPolicy,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self._backoff = backoff
        self.primary_policy = primary_policy
        self.secondary_policy = secondary_policy

    def spec(
        self,
        operation: Operation,
        call: Callable[[DocumentRepository], Awaitable[Any]],
    ) -> OpSpec:
        """Bind ``call`` to both of this selector's repositories."""
        return OpSpec(
            operation=operation,
            primary=lambda: call(self.primary),
            secondary=lambda: call(self.secondary),
        )

    async def route(
        self,
        kind: str,
        operation: Operation,
        call: Callable[[DocumentRepository], Awaitable[Any]],
    ) -> AccessResult:
        """Shortcut for ``perform(kind, spec(operation, call))``."""
        return await self.perform(kind, self.spec(operation, call))

    async def perform(self, kind: str, op_spec: OpSpec) -> AccessResult:
        """
        Execute ``op_spec`` on the primary path, then the secondary path.

        Returns:
            AccessResult whose payload is the strategy's return value and whose
            source is PRIMARY or SECONDARY

        Raises:
            ExhaustedError: If both paths were tried and failed
            PersistenceFailure: Terminal failures (not found, conflict, ...)
            Exception: Terminal driver errors such as DuplicateKeyError
        """
        attempts: list[AttemptRecord] = []
        operation = op_spec.operation.value

        try:
            payload = await self._run(
                kind, operation, "primary", op_spec.primary, self.primary_policy, attempts
            )
            return AccessResult(payload=payload, source=Source.PRIMARY, attempts=attempts)
        except Exception as e:
            if not _falls_through(e):
                self._attach_attempts(e, attempts)
                raise
            logger.warning(
                f"Primary path failed for {operation} {kind} ({type(e).__name__}: {e}); "
                f"falling back to secondary path"
            )

        try:
            payload = await self._run(
                kind, operation, "secondary", op_spec.secondary, self.secondary_policy, attempts
            )
        except ExhaustedError as e:
            logger.error(f"Both access paths exhausted for {operation} {kind}")
            raise ExhaustedError(
                f"Both access paths failed for {operation} {kind}",
                last_error=e.last_error,
                attempts=attempts,
                context={"kind": kind, "operation": operation},
            ) from e
        except Exception as e:
            self._attach_attempts(e, attempts)
            raise
        return AccessResult(payload=payload, source=Source.SECONDARY, attempts=attempts)

    async def _run(
        self,
        kind: str,
        operation: str,
        path: str,
        strategy: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        attempts: list[AttemptRecord],
    ) -> Any:
        start_time = time.time()
        success = False
        try:
            result = await self._backoff.execute(strategy, policy, path=path, attempts=attempts)
            success = True
            return result
        finally:
            get_metrics_collector().record_operation(
                f"selector.{operation}",
                (time.time() - start_time) * 1000,
                success,
                path=path,
                kind=kind,
            )

    @staticmethod
    def _attach_attempts(error: BaseException, attempts: list[AttemptRecord]) -> None:
        if isinstance(error, PersistenceFailure) and not error.attempts:
            error.attempts = list(attempts)
