"""
Custom exceptions for MDB_STOREFRONT.

``PersistenceFailure`` and its subclasses are the typed failures collaborators
receive from the persistence facade. Each carries a ``failure_kind`` so callers
can branch on it instead of parsing messages.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class FailureKind(str, Enum):
    """Failure kinds surfaced to collaborators."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXHAUSTED = "exhausted"


class StorefrontError(RuntimeError):
    """
    Base exception for MDB_STOREFRONT errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (kind,
                 entity_id, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class PersistenceFailure(StorefrontError):
    """
    Base class for failures returned by persistence operations.

    Attributes:
        failure_kind: Which branch of the failure taxonomy this is
        attempts: Attempt log accumulated before the failure (may be empty)
    """

    failure_kind: FailureKind
    secondary_eligible: bool = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        attempts: Optional[List[Any]] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.attempts = list(attempts or [])


class EntityValidationError(PersistenceFailure):
    """
    Raised when an entity's fields are missing or malformed.

    Terminal: never retried, never masked by placeholder data.

    Attributes:
        kind: Entity kind being validated
        fields: Names of the offending fields
    """

    failure_kind = FailureKind.VALIDATION

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        fields: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if kind:
            context["kind"] = kind
        if fields:
            context["fields"] = fields
        super().__init__(message, context=context)
        self.kind = kind
        self.fields = list(fields or [])


class SchemaMismatchError(EntityValidationError):
    """
    Raised by the mapped access path when a document fails its model.

    The raw path validates less strictly, so the selector may retry the
    operation there instead of failing.
    """

    secondary_eligible = True


class NotFoundError(PersistenceFailure):
    """Raised when the requested entity does not exist."""

    failure_kind = FailureKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        entity_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if kind:
            context["kind"] = kind
        if entity_id:
            context["entity_id"] = entity_id
        super().__init__(message, context=context)
        self.kind = kind
        self.entity_id = entity_id


class ConflictError(PersistenceFailure):
    """
    Raised on a version mismatch or a unique-index rejection.

    Attributes:
        expected_version: Version the caller expected (if a version check)
        current_version: Version currently stored (if known)
    """

    failure_kind = FailureKind.CONFLICT

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        entity_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        current_version: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if kind:
            context["kind"] = kind
        if entity_id:
            context["entity_id"] = entity_id
        if expected_version is not None:
            context["expected_version"] = expected_version
        if current_version is not None:
            context["current_version"] = current_version
        super().__init__(message, context=context)
        self.kind = kind
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.current_version = current_version


class ExhaustedError(PersistenceFailure):
    """
    Raised when every permitted attempt failed with a transient error.

    Attributes:
        last_error: The final underlying exception
    """

    failure_kind = FailureKind.EXHAUSTED

    def __init__(
        self,
        message: str,
        last_error: Optional[BaseException] = None,
        attempts: Optional[List[Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if last_error is not None:
            context["last_error_type"] = type(last_error).__name__
        super().__init__(message, context=context, attempts=attempts)
        self.last_error = last_error


class ConfigurationError(StorefrontError):
    """
    Raised when configuration is invalid or missing.

    Attributes:
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class InitializationError(StorefrontError):
    """
    Raised when neither access path can be reached at startup.

    Attributes:
        mongo_uri: MongoDB connection URI (if available)
        db_name: Database name (if available)
    """

    def __init__(
        self,
        message: str,
        mongo_uri: Optional[str] = None,
        db_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if mongo_uri:
            context["mongo_uri"] = mongo_uri
        if db_name:
            context["db_name"] = db_name
        super().__init__(message, context=context)
        self.mongo_uri = mongo_uri
        self.db_name = db_name
