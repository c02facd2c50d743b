"""
Enhanced logging utilities for MDB_STOREFRONT.

Provides structured logging with correlation IDs and request context.
"""

import contextvars
import functools
import inspect
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

# Context variable for the persistence request being served
_request_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "request_context", default=None
)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Optional correlation ID (generates new one if None)

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def set_request_context(kind: str | None = None, operation: str | None = None, **kwargs: Any) -> None:
    """
    Set persistence request context for logging.

    Args:
        kind: Entity kind being accessed
        operation: Facade operation (create, read, list, update)
        **kwargs: Additional context (entity_id, etc.)
    """
    _request_context.set({"kind": kind, "operation": operation, **kwargs})


def correlated(func: Callable) -> Callable:
    """
    Run a coroutine inside a correlation scope.

    Reuses the caller's correlation ID when one is set (an incoming request,
    or an enclosing facade call such as the create that triggered a derived
    entity); otherwise generates one. The ID and request context in force
    before the call are restored when it returns.
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"correlated only wraps coroutines, got {func!r}")

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        id_token = None
        if _correlation_id.get() is None:
            id_token = _correlation_id.set(str(uuid.uuid4()))
        context_token = _request_context.set(_request_context.get())
        try:
            return await func(*args, **kwargs)
        finally:
            _request_context.reset(context_token)
            if id_token is not None:
                _correlation_id.reset(id_token)

    return wrapper


def get_logging_context() -> dict[str, Any]:
    """
    Get current logging context (correlation ID and request context).

    Returns:
        Dictionary with context information
    """
    context: dict[str, Any] = {
        "timestamp": datetime.now().isoformat(),
    }

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    request_context = _request_context.get()
    if request_context:
        context.update({k: v for k, v in request_context.items() if v is not None})

    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that automatically adds context to log records.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = get_logging_context()

        extra = kwargs.get("extra", {})
        if extra:
            context.update(extra)

        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger that automatically adds correlation ID and context.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLoggerAdapter instance
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log an operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name
        level: Log level
        success: Whether operation succeeded
        duration_ms: Operation duration in milliseconds
        **context: Additional context (source, attempts, ...)
    """
    log_context = get_logging_context()
    log_context.update({"operation": operation, "success": success})

    if duration_ms is not None:
        log_context["duration_ms"] = round(duration_ms, 2)

    if context:
        log_context.update(context)

    message = f"Operation: {operation}"
    if not success:
        message = f"Operation failed: {operation}"
    if "source" in context:
        message += f" [source={context['source']}]"
    if duration_ms is not None:
        message += f" (duration: {duration_ms:.2f}ms)"

    logger.log(level, message, extra=log_context)
