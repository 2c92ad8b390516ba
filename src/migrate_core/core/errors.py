"""
Structured error types for migrate-core.

Every failure the engine raises carries a category, a retry flag and an
optional chained cause, so callers (CLI, CI pipelines, adapters) can tell a
lock conflict from a broken script without parsing messages.

Manifesto:
    - **Typed Error Hierarchy:** Validation, execution, lock, transaction and
      rollback failures each have their own type
    - **Explicit Retry Semantics:** Only transient transaction errors are
      retryable; rollback errors are always terminal
    - **Rich Context:** Errors carry metadata for structured logging
    - **Error Chaining:** The original exception is preserved as ``cause``

Architecture:
    ::

        MigrationCoreError (category, retryable, context, cause)
        ├── ValidationError          (VALIDATION)
        │   ├── ScriptLoadError
        │   └── HybridMigrationError
        ├── ExecutionError           (EXECUTION)
        ├── LockError                (LOCK)
        │   ├── LockAcquisitionError
        │   └── LockOwnershipError
        ├── TransactionError         (TRANSACTION)
        │   └── RetriableTransactionError (retryable=True)
        ├── RollbackError            (ROLLBACK)
        ├── ConfigError              (CONFIG)
        └── DatabaseConnectionError  (DATABASE)

Examples:
    >>> err = LockAcquisitionError("lock held", holder="host-1-42-abcd")
    >>> err.category
    <ErrorCategory.LOCK: 'LOCK'>
    >>> err.retryable
    False

Tags:
    error-handling, exception-hierarchy, retry-logic, migrate-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from migrate_core.core.models import ValidationResult


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    EXECUTION = "EXECUTION"
    LOCK = "LOCK"
    TRANSACTION = "TRANSACTION"
    ROLLBACK = "ROLLBACK"
    CONFIG = "CONFIG"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        script: Migration script name the error relates to
        timestamp: Migration version the error relates to
        executor_id: Executor identity (``hostname-pid-uuid``)
        operation: Engine operation (``migrate``, ``rollback``, ``lock`` ...)
        metadata: Additional key-value pairs
    """

    script: str | None = None
    timestamp: int | None = None
    executor_id: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["script", "timestamp", "executor_id", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MigrationCoreError(Exception):
    """
    Base exception for all migrate-core errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MigrationCoreError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ExecutionError("up() failed").with_context(
                script="V202401010000_users.py",
                timestamp=202401010000,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(MigrationCoreError):
    """
    One or more migration scripts failed validation.

    Never retryable - the scripts (or the configuration) must be fixed.
    """

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        results: list[ValidationResult] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.results = list(results or [])

    @property
    def error_count(self) -> int:
        return sum(len(r.errors) for r in self.results)

    @property
    def warning_count(self) -> int:
        return sum(len(r.warnings) for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error_count"] = self.error_count
        result["warning_count"] = self.warning_count
        return result


class ScriptLoadError(ValidationError):
    """A migration file could not be turned into a runnable script.

    ``code`` is one of the ``ValidationCode`` values (``IMPORT_FAILED``,
    ``NO_EXPORT``, ``MULTIPLE_EXPORTS``, ``NOT_INSTANTIABLE``,
    ``FILE_NOT_FOUND``).
    """

    def __init__(self, message: str, *, code: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.code = code


class HybridMigrationError(ValidationError):
    """Pending batch mixes self-managed and engine-managed transaction scripts."""

    def __init__(
        self,
        message: str,
        *,
        self_managed: list[str] | None = None,
        engine_managed: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.self_managed = self_managed or []
        self.engine_managed = engine_managed or []


# =============================================================================
# EXECUTION / ROLLBACK ERRORS
# =============================================================================


class ExecutionError(MigrationCoreError):
    """A migration script's ``up()`` or ``down()`` failed."""

    default_category = ErrorCategory.EXECUTION


class RollbackError(MigrationCoreError):
    """
    Recovery failed or cannot proceed.

    Always terminal: the database may be inconsistent and need manual
    intervention, so these are never retried.
    """

    default_category = ErrorCategory.ROLLBACK


# =============================================================================
# LOCK ERRORS
# =============================================================================


class LockError(MigrationCoreError):
    """Distributed migration lock error."""

    default_category = ErrorCategory.LOCK


class LockAcquisitionError(LockError):
    """Lock could not be acquired after the configured attempts."""

    def __init__(self, message: str, *, holder: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.holder = holder


class LockOwnershipError(LockError):
    """Lock was acquired but verification shows another executor owns it."""


# =============================================================================
# TRANSACTION ERRORS
# =============================================================================


class TransactionError(MigrationCoreError):
    """Transaction begin/commit/rollback error."""

    default_category = ErrorCategory.TRANSACTION


class RetriableTransactionError(TransactionError):
    """Transient transaction error (deadlock, serialization failure ...)."""

    default_retryable = True


# =============================================================================
# CONFIGURATION / DATABASE ERRORS
# =============================================================================


class ConfigError(MigrationCoreError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG


class DatabaseConnectionError(MigrationCoreError):
    """Database connection check failed."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is flagged retryable."""
    if isinstance(error, MigrationCoreError):
        return error.retryable
    return False


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, MigrationCoreError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.DATABASE
    return ErrorCategory.EXECUTION


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MigrationCoreError",
    "ValidationError",
    "ScriptLoadError",
    "HybridMigrationError",
    "ExecutionError",
    "RollbackError",
    "LockError",
    "LockAcquisitionError",
    "LockOwnershipError",
    "TransactionError",
    "RetriableTransactionError",
    "ConfigError",
    "DatabaseConnectionError",
    "is_retryable",
    "categorize_error",
]
