"""
Core primitives: models, errors, capability protocols, settings, logging.

Nothing in ``migrate_core.core`` imports from the engine packages
(``execution``, ``locking``, ``rollback``, ``orchestration``); they all
depend on it.
"""

from .errors import (
    ConfigError,
    DatabaseConnectionError,
    ErrorCategory,
    ExecutionError,
    HybridMigrationError,
    LockAcquisitionError,
    LockError,
    LockOwnershipError,
    MigrationCoreError,
    RetriableTransactionError,
    RollbackError,
    ScriptLoadError,
    TransactionError,
    ValidationError,
    is_retryable,
)
from .models import (
    BackupMode,
    DownMethodPolicy,
    IsolationLevel,
    LockStatus,
    MigrationInfo,
    MigrationResult,
    MigrationScript,
    RollbackStrategy,
    ScriptSet,
    TransactionContext,
    TransactionMode,
    ValidationCode,
    ValidationIssue,
    ValidationIssueType,
    ValidationResult,
)

__all__ = [
    "ConfigError",
    "DatabaseConnectionError",
    "ErrorCategory",
    "ExecutionError",
    "HybridMigrationError",
    "LockAcquisitionError",
    "LockError",
    "LockOwnershipError",
    "MigrationCoreError",
    "RetriableTransactionError",
    "RollbackError",
    "ScriptLoadError",
    "TransactionError",
    "ValidationError",
    "is_retryable",
    "BackupMode",
    "DownMethodPolicy",
    "IsolationLevel",
    "LockStatus",
    "MigrationInfo",
    "MigrationResult",
    "MigrationScript",
    "RollbackStrategy",
    "ScriptSet",
    "TransactionContext",
    "TransactionMode",
    "ValidationCode",
    "ValidationIssue",
    "ValidationIssueType",
    "ValidationResult",
]
