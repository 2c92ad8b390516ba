"""
End-to-end migration workflow.

Manifesto:
    One entry point owns the whole run so the order of effects is fixed:
    lock, setup script, tracking store, scan, validate, backup, execute,
    then either clean up or recover, and always release the lock. The
    individual services know nothing about each other; this module is the
    only place that sequences them.

Architecture:
    ::

        migrate_all() / migrate_to_version(target)
            ├── LockingOrchestrator.acquire_lock        (raise on failure)
            ├── before-migrate setup script             (never recorded)
            ├── schema_version.init + scanner.scan
            ├── ValidationOrchestrator                  (pending, migrated, tx config)
            ├── hybrid batch guard
            ├── BackupService.backup                    (when strategy needs it)
            ├── MigrationRunner.execute                 (sequential, per mode)
            ├── success → delete backup, on_complete
            ├── failure → MigrationErrorHandler (rollback), on_error
            └── finally → release lock

Contract:
    ``migrate_all`` returns a failure ``MigrationResult`` for migration
    failures; ``migrate_to_version`` rolls back and re-raises. Lock
    acquisition failures raise from both.

Tags:
    workflow, orchestration, migration, migrate-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from migrate_core.core.config import MigrationSettings
from migrate_core.core.errors import HybridMigrationError, LockAcquisitionError
from migrate_core.core.logging import LogContext, get_logger
from migrate_core.core.models import (
    MigrationResult,
    MigrationScript,
    ScriptSet,
    TransactionMode,
    ValidationCode,
    ValidationIssue,
    ValidationIssueType,
    ValidationResult,
)
from migrate_core.execution.hooks import MigrationHooks, as_hooks
from migrate_core.execution.runner import MigrationRunner
from migrate_core.execution.selector import ScriptSelector
from migrate_core.locking.orchestrator import LockingOrchestrator, generate_executor_id
from migrate_core.orchestration.error_handler import MigrationErrorHandler
from migrate_core.orchestration.reporting import LoggingReporter, Reporter
from migrate_core.orchestration.validation import ValidationOrchestrator
from migrate_core.rollback.backup import BackupService
from migrate_core.rollback.service import RollbackService

logger = get_logger(__name__)

_SELF_MANAGED_SUFFIXES = (".up.sql", ".sql")

PendingSelector = Callable[[ScriptSet], list[MigrationScript]]


def manages_own_transaction(script: MigrationScript) -> bool:
    """Whether the script controls its own BEGIN/COMMIT.

    The loaded script's ``manages_own_transaction`` attribute wins; unloaded
    or unflagged scripts fall back to the file extension.
    """
    flag = getattr(script.script, "manages_own_transaction", None)
    if flag is not None:
        return bool(flag)
    return Path(script.filepath).name.lower().endswith(_SELF_MANAGED_SUFFIXES)


def lock_failure_message(attempts: int, holder: str | None) -> str:
    held_by = holder or "unknown"
    return (
        f"Failed to acquire migration lock after {attempts} attempt(s). "
        f"Another migration is likely running (currently held by: {held_by}). "
        "If you believe this is a stale lock, use: migrate-core lock release --force"
    )


class MigrationWorkflowOrchestrator:
    """Sequences every service of one migration run."""

    def __init__(
        self,
        handler: Any,
        settings: MigrationSettings,
        *,
        scanner: Any,
        registry: Any,
        validation: ValidationOrchestrator,
        runner: MigrationRunner,
        rollback_service: RollbackService,
        backup_service: BackupService | None = None,
        error_handler: MigrationErrorHandler | None = None,
        locking: LockingOrchestrator | None = None,
        reporter: Reporter | None = None,
        hooks: MigrationHooks | None = None,
        selector: ScriptSelector | None = None,
    ) -> None:
        self.handler = handler
        self.settings = settings
        self.scanner = scanner
        self.registry = registry
        self.validation = validation
        self.runner = runner
        self.rollback_service = rollback_service
        self.backup_service = backup_service
        self.hooks = as_hooks(hooks)
        self.error_handler = error_handler or MigrationErrorHandler(rollback_service, self.hooks)
        self.locking = locking
        self.reporter = reporter or LoggingReporter()
        self.selector = selector or ScriptSelector()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def migrate_all(self, *, dry_run: bool | None = None) -> MigrationResult:
        """Apply every pending migration.

        Returns a failure result (``success=False``, ``errors`` populated)
        instead of raising when a migration or validation fails.
        """
        return await self._run(
            "migrate",
            lambda scripts: scripts.pending,
            dry_run=self.settings.dry_run if dry_run is None else dry_run,
            reraise=False,
        )

    async def migrate_to_version(self, target: int, *, dry_run: bool | None = None) -> MigrationResult:
        """Apply pending migrations with ``timestamp <= target``; raises on failure."""
        return await self._run(
            "migrate_to_version",
            lambda scripts: self.selector.get_pending_up_to(scripts.migrated, scripts.all, target),
            dry_run=self.settings.dry_run if dry_run is None else dry_run,
            reraise=True,
            target=target,
        )

    # =========================================================================
    # LOCK
    # =========================================================================

    @property
    def locking_enabled(self) -> bool:
        return self.locking is not None and self.settings.locking.enabled

    async def acquire_lock(self, executor_id: str) -> None:
        if not self.locking_enabled:
            logger.debug("lock.skipped", reason="locking disabled or unsupported by handler")
            return

        await self.locking.init_lock_storage()
        if await self.locking.acquire_lock(executor_id):
            return

        status = await self.locking.get_lock_status()
        holder = status.locked_by if status and status.is_locked else None
        raise LockAcquisitionError(
            lock_failure_message(self.locking.max_attempts, holder),
            holder=holder,
        ).with_context(executor_id=executor_id, operation="lock")

    async def release_lock(self, executor_id: str) -> None:
        if not self.locking_enabled:
            return
        try:
            await self.locking.release_lock(executor_id)
        except Exception as e:
            logger.warning(
                "lock.release_failed",
                executor_id=executor_id,
                error=str(e),
                hint="lock will expire after its timeout",
            )

    # =========================================================================
    # RUN
    # =========================================================================

    async def _run(
        self,
        operation: str,
        select_pending: PendingSelector,
        *,
        dry_run: bool,
        reraise: bool,
        **log_fields: Any,
    ) -> MigrationResult:
        executor_id = generate_executor_id()
        async with LogContext(executor_id=executor_id, operation=operation, dry_run=dry_run):
            logger.info("workflow.started", **log_fields)
            await self.acquire_lock(executor_id)
            try:
                return await self._execute_workflow(select_pending, dry_run=dry_run, reraise=reraise)
            finally:
                await self.release_lock(executor_id)

    async def _execute_workflow(
        self,
        select_pending: PendingSelector,
        *,
        dry_run: bool,
        reraise: bool,
    ) -> MigrationResult:
        scripts = ScriptSet()
        backup_path: str | None = None

        try:
            if not dry_run:
                await self.run_before_migrate()

            await self.handler.schema_version.init()
            scripts = await self.scanner.scan()
            scripts.pending = select_pending(scripts)

            await self.validate(scripts)

            if not dry_run and self.rollback_service.should_create_backup() and self.backup_service is not None:
                backup_path = await self.backup_service.backup()

            self.reporter.report_status(scripts)
            await self.hooks.on_start(scripts)

            if not scripts.pending:
                self.reporter.report_pending([])
                self._cleanup_backup(backup_path)
                result = MigrationResult.from_scripts(True, scripts)
                await self.hooks.on_complete(result)
                return result

            self.reporter.report_pending(scripts.pending)
            if dry_run:
                await self.execute_dry_run(scripts)
            else:
                await self.runner.execute(scripts.pending, scripts.executed)

            self._cleanup_backup(backup_path)
            self.reporter.report_executed(scripts.executed)
            result = MigrationResult.from_scripts(True, scripts)
            await self.hooks.on_complete(result)
            logger.info("workflow.completed", executed=len(scripts.executed))
            return result

        except Exception as e:
            if dry_run:
                error: Exception = e
            else:
                error = await self.error_handler.handle_migration_error(e, scripts.executed, backup_path)
            await self.hooks.on_error(error)
            if reraise:
                raise
            return MigrationResult.from_scripts(False, scripts, errors=[error])

    async def execute_dry_run(self, scripts: ScriptSet) -> None:
        transactional = self.runner.transaction_manager is not None
        self.reporter.report_dry_run(scripts.pending, transactional=transactional)
        if not transactional:
            return
        try:
            await self.runner.execute(scripts.pending, scripts.executed, dry_run=True)
        except Exception as e:
            await self.error_handler.handle_dry_run_error(e, scripts.executed)

    # =========================================================================
    # STEPS
    # =========================================================================

    async def run_before_migrate(self) -> None:
        """Run the setup script if one exists; it is never recorded."""
        script = await self.scanner.find_before_migrate_script()
        if script is None:
            return
        logger.info("before_migrate.started", script=script.filepath)
        await script.init(self.registry)
        await script.script.up(self.handler.db, script.to_info(), self.handler)
        logger.info("before_migrate.completed", script=script.filepath)

    async def validate(self, scripts: ScriptSet) -> None:
        if self.settings.validate_before_run:
            await self.validation.validate_migrations(scripts.pending)
        if self.settings.validate_migrated_files:
            await self.validation.validate_migrated_file_integrity(scripts.migrated)

        for script in scripts.pending:
            await script.init(self.registry)

        await self.validation.validate_transaction_configuration(scripts.pending)
        self.check_hybrid(scripts.pending)

    def check_hybrid(self, pending: list[MigrationScript]) -> None:
        """Reject batches that mix self-managed and engine-managed transactions."""
        if self.settings.transaction.mode == TransactionMode.NONE:
            return

        self_managed = [s.name for s in pending if manages_own_transaction(s)]
        engine_managed = [s.name for s in pending if not manages_own_transaction(s)]
        if self_managed and engine_managed:
            message = (
                "Pending migrations mix scripts that manage their own transactions "
                f"({', '.join(self_managed)}) with engine-managed scripts "
                f"({', '.join(engine_managed)}). Run them in separate batches or set "
                "transaction mode to NONE."
            )
            issue = ValidationIssue(
                ValidationIssueType.ERROR, ValidationCode.HYBRID_TRANSACTION_BOUNDARIES.value, message
            )
            raise HybridMigrationError(
                message,
                results=[ValidationResult(script=None, issues=[issue])],
                self_managed=self_managed,
                engine_managed=engine_managed,
            ).with_context(operation="validate")

    def _cleanup_backup(self, backup_path: str | None) -> None:
        if backup_path and self.backup_service is not None:
            self.backup_service.delete_backup(backup_path)
