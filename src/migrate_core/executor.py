"""
MigrationExecutor: the public entry point.

Manifesto:
    Callers hand over a database handler and settings; the executor wires
    every service from what the handler can actually do. Transactions,
    locking and backups are switched on by capability detection, never by
    asking the caller which database they use.

Architecture:
    ::

        MigrationExecutor(handler, settings)
            ├── LoaderRegistry / FileSystemScanner
            ├── MigrationValidationService → ValidationOrchestrator
            ├── transaction_manager_for(handler)         (None when unsupported)
            ├── MigrationRunner
            ├── BackupService            (when handler.backup is set)
            ├── RollbackService / MigrationErrorHandler / RollbackManager
            ├── LockingOrchestrator      (when handler.locking_service is set)
            └── MigrationWorkflowOrchestrator

Examples:
    >>> from migrate_core import MigrationExecutor, SqliteHandler, MigrationSettings
    >>> executor = MigrationExecutor(SqliteHandler("app.db"), MigrationSettings(folder="migrations"))
    >>> result = await executor.migrate()
    >>> result.success
    True

Tags:
    executor, facade, capability-detection, migrate-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from migrate_core.core.config import MigrationSettings, get_settings
from migrate_core.core.errors import ConfigError, DatabaseConnectionError
from migrate_core.core.logging import LogContext, get_logger
from migrate_core.core.models import LockStatus, MigrationResult, ScriptSet, ValidationResult
from migrate_core.core.protocols import supports_backup, supports_locking
from migrate_core.execution.hooks import MigrationHooks, as_hooks
from migrate_core.execution.runner import MigrationRunner
from migrate_core.execution.selector import ScriptSelector
from migrate_core.execution.transactions import transaction_manager_for
from migrate_core.locking.hooks import LockingHooks
from migrate_core.locking.orchestrator import LockingOrchestrator, generate_executor_id
from migrate_core.migrations.loaders import LoaderRegistry
from migrate_core.migrations.scanner import FileSystemScanner
from migrate_core.orchestration.error_handler import MigrationErrorHandler
from migrate_core.orchestration.reporting import LoggingReporter, Reporter
from migrate_core.orchestration.validation import (
    MigrationValidationService,
    MigrationValidator,
    ValidationOrchestrator,
)
from migrate_core.orchestration.workflow import MigrationWorkflowOrchestrator
from migrate_core.rollback.backup import BackupService
from migrate_core.rollback.manager import RollbackManager
from migrate_core.rollback.service import RollbackService

logger = get_logger(__name__)


class MigrationExecutor:
    """Builds the service graph for one handler and exposes the operations."""

    def __init__(
        self,
        handler: Any,
        settings: MigrationSettings | None = None,
        *,
        hooks: MigrationHooks | list[MigrationHooks] | None = None,
        locking_hooks: LockingHooks | None = None,
        validators: list[MigrationValidator] | None = None,
        registry: LoaderRegistry | None = None,
        scanner: Any = None,
        reporter: Reporter | None = None,
    ) -> None:
        self.handler = handler
        self.settings = settings or get_settings()
        self.hooks = as_hooks(hooks)
        self.selector = ScriptSelector()
        self.registry = registry or LoaderRegistry.default()
        self.scanner = scanner or FileSystemScanner(
            self.settings, handler.schema_version, self.registry, self.selector
        )
        self.reporter = reporter or LoggingReporter()

        self.validation_service = MigrationValidationService(self.settings, self.registry, validators)
        self.validation = ValidationOrchestrator(self.validation_service, self.settings, handler, self.scanner)

        self.transaction_manager = transaction_manager_for(handler, self.settings.transaction)
        self.runner = MigrationRunner(handler, self.settings, self.hooks, self.transaction_manager)

        self.backup_service = (
            BackupService(handler, self.settings.backup, self.hooks) if supports_backup(handler) else None
        )
        self.rollback_service = RollbackService(handler, self.settings, self.backup_service, self.hooks)
        self.error_handler = MigrationErrorHandler(self.rollback_service, self.hooks)

        self.locking = (
            LockingOrchestrator(handler.locking_service, self.settings.locking, locking_hooks)
            if supports_locking(handler)
            else None
        )

        self.workflow = MigrationWorkflowOrchestrator(
            handler,
            self.settings,
            scanner=self.scanner,
            registry=self.registry,
            validation=self.validation,
            runner=self.runner,
            rollback_service=self.rollback_service,
            backup_service=self.backup_service,
            error_handler=self.error_handler,
            locking=self.locking,
            reporter=self.reporter,
            hooks=self.hooks,
            selector=self.selector,
        )
        self.rollback_manager = RollbackManager(
            handler,
            self.settings,
            scanner=self.scanner,
            registry=self.registry,
            validation=self.validation,
            error_handler=self.error_handler,
            hooks=self.hooks,
            selector=self.selector,
        )

        manager = self.transaction_manager
        logger.debug(
            "executor.configured",
            handler=handler.get_name(),
            transactions=getattr(manager, "style", type(manager).__name__) if manager is not None else None,
            backup=self.backup_service is not None,
            locking=self.locking is not None,
        )

    # === Migrate ===

    async def check_connection(self, operation: str) -> None:
        if not await self.handler.db.check_connection():
            raise DatabaseConnectionError("Database connection check failed").with_context(operation=operation)

    async def migrate(self, *, dry_run: bool | None = None) -> MigrationResult:
        """Apply every pending migration.

        Raises:
            DatabaseConnectionError: the handler cannot reach its database
        """
        await self.check_connection("migrate")
        return await self.workflow.migrate_all(dry_run=dry_run)

    async def migrate_to_version(self, target: int, *, dry_run: bool | None = None) -> MigrationResult:
        await self.check_connection("migrate_to_version")
        return await self.workflow.migrate_to_version(target, dry_run=dry_run)

    async def rollback_to_version(self, target: int) -> MigrationResult:
        executor_id = generate_executor_id()
        async with LogContext(executor_id=executor_id, operation="rollback_to_version"):
            await self.workflow.acquire_lock(executor_id)
            try:
                return await self.rollback_manager.rollback_to_version(target)
            finally:
                await self.workflow.release_lock(executor_id)

    # === Inspection ===

    async def validate(self) -> list[ValidationResult]:
        return await self.validation.validate()

    async def list_migrations(self) -> ScriptSet:
        await self.handler.schema_version.init()
        return await self.scanner.scan()

    # === Lock ===

    def _require_locking(self) -> LockingOrchestrator:
        if self.locking is None:
            raise ConfigError(f"Handler {self.handler.get_name()} does not support locking")
        return self.locking

    async def lock_status(self) -> LockStatus | None:
        locking = self._require_locking()
        await locking.init_lock_storage()
        return await locking.get_lock_status()

    async def force_release_lock(self) -> LockStatus | None:
        locking = self._require_locking()
        await locking.init_lock_storage()
        return await locking.force_release_lock()

    # === Backup ===

    def _require_backup(self) -> BackupService:
        if self.backup_service is None:
            raise ConfigError(f"Handler {self.handler.get_name()} does not support backups")
        return self.backup_service

    async def create_backup(self) -> str:
        return await self._require_backup().backup()

    async def restore_backup(self, path: str) -> None:
        service = self._require_backup()
        await self.hooks.on_before_restore(path)
        await service.restore(path)
        await self.hooks.on_after_restore(path)
