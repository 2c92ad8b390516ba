"""
migrate-core - database-agnostic migration execution engine.

Quick start::

    import asyncio
    from migrate_core import MigrationExecutor, MigrationSettings, SqliteHandler

    executor = MigrationExecutor(SqliteHandler("app.db"), MigrationSettings(folder="migrations"))
    result = asyncio.run(executor.migrate())

Packages:
    - migrate_core.core: models, errors, protocols, settings, logging
    - migrate_core.execution: selection, transactions, retry, per-script runner
    - migrate_core.locking: distributed lock protocol
    - migrate_core.rollback: backup files and rollback strategies
    - migrate_core.orchestration: validation and the end-to-end workflow
    - migrate_core.migrations: filesystem scanner and script loaders
    - migrate_core.adapters: SQLite reference handler
"""

__version__ = "0.1.0"

from migrate_core.adapters.sqlite import SqliteHandler
from migrate_core.core.config import MigrationSettings, get_settings
from migrate_core.core.errors import (
    ExecutionError,
    HybridMigrationError,
    LockAcquisitionError,
    MigrationCoreError,
    RollbackError,
    ValidationError,
)
from migrate_core.core.models import MigrationResult, MigrationScript, RollbackStrategy, TransactionMode
from migrate_core.execution.hooks import CompositeHooks, MigrationHooks
from migrate_core.executor import MigrationExecutor

__all__ = [
    "__version__",
    "SqliteHandler",
    "MigrationSettings",
    "get_settings",
    "ExecutionError",
    "HybridMigrationError",
    "LockAcquisitionError",
    "MigrationCoreError",
    "RollbackError",
    "ValidationError",
    "MigrationResult",
    "MigrationScript",
    "RollbackStrategy",
    "TransactionMode",
    "CompositeHooks",
    "MigrationHooks",
    "MigrationExecutor",
]
