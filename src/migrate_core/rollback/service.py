"""
Recovery after a failed migration run.

Manifesto:
    When a run fails half-way the database holds some, but not all, of the
    batch. The rollback strategy decides how to get back to a known state:

    - **BACKUP:** restore the snapshot taken before the batch
    - **DOWN:** call ``down()`` on every attempted script, newest first
    - **BOTH:** try DOWN, fall back to BACKUP if any ``down()`` raises
    - **NONE:** log a warning and leave the database as it is

    A script without ``down()`` under DOWN is a hard error: silently skipping
    it would report a clean rollback over a half-reverted schema.

Tags:
    rollback, recovery, backup, migrate-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from migrate_core.core.config import MigrationSettings
from migrate_core.core.errors import ConfigError, RollbackError
from migrate_core.core.logging import get_logger
from migrate_core.core.models import BackupMode, MigrationScript, RollbackStrategy
from migrate_core.core.protocols import supports_backup
from migrate_core.execution.hooks import MigrationHooks, as_hooks
from migrate_core.rollback.backup import BackupService

logger = get_logger(__name__)

_BACKUP_STRATEGIES = (RollbackStrategy.BACKUP, RollbackStrategy.BOTH)


class RollbackService:
    """Applies the configured rollback strategy to a failed batch."""

    def __init__(
        self,
        handler: Any,
        settings: MigrationSettings,
        backup_service: BackupService | None = None,
        hooks: MigrationHooks | None = None,
    ) -> None:
        self.handler = handler
        self.settings = settings
        self.backup_service = backup_service
        self.hooks = as_hooks(hooks)

    # === Policy ===

    def should_create_backup(self) -> bool:
        return (
            supports_backup(self.handler)
            and self.settings.rollback_strategy in _BACKUP_STRATEGIES
            and self.settings.backup_mode in (BackupMode.FULL, BackupMode.CREATE_ONLY)
        )

    def should_restore(self) -> bool:
        return (
            self.settings.rollback_strategy in _BACKUP_STRATEGIES
            and self.settings.backup_mode in (BackupMode.FULL, BackupMode.RESTORE_ONLY)
        )

    def discard_backup(self, backup_path: str | None) -> None:
        """Delete a backup that recovery no longer needs."""
        if backup_path and self.backup_service is not None:
            self.backup_service.delete_backup(backup_path)

    # === Entry point ===

    async def rollback(self, executed: list[MigrationScript], backup_path: str | None = None) -> None:
        strategy = self.settings.rollback_strategy
        logger.warning("rollback.started", strategy=strategy.value, scripts=len(executed))

        if strategy == RollbackStrategy.BACKUP:
            await self.rollback_with_backup(backup_path)
        elif strategy == RollbackStrategy.DOWN:
            await self.rollback_with_down(executed)
        elif strategy == RollbackStrategy.BOTH:
            await self.rollback_with_both(executed, backup_path)
        else:
            logger.warning(
                "rollback.skipped",
                reason="rollback strategy is NONE",
                hint="database may be in an inconsistent state",
            )

    # === Strategies ===

    async def rollback_with_backup(self, backup_path: str | None) -> None:
        if not self.should_restore():
            logger.warning("rollback.restore_skipped", backup_mode=self.settings.backup_mode.value)
            return

        if self.settings.backup_mode == BackupMode.RESTORE_ONLY:
            path = self.settings.backup.existing_backup_path
            if not path:
                raise ConfigError("BackupMode.RESTORE_ONLY requires backup.existing_backup_path to be set")
        else:
            path = backup_path

        if not path:
            logger.warning("rollback.no_backup", hint="no backup available for restore")
            return
        if self.backup_service is None:
            logger.warning("rollback.no_backup_service", path=path)
            return

        await self.hooks.on_before_restore(path)
        await self.backup_service.restore(path)
        await self.hooks.on_after_restore(path)

        if self.settings.backup_mode != BackupMode.RESTORE_ONLY:
            self.backup_service.delete_backup(path)
        logger.info("rollback.restored", path=path)

    async def rollback_with_down(self, executed: list[MigrationScript]) -> None:
        if not executed:
            logger.info("rollback.nothing_to_revert")
            return

        missing = [s.name for s in executed if not s.has_down]
        if missing:
            raise RollbackError(
                f"Cannot roll back: no down() method in {', '.join(missing)}"
            ).with_context(operation="rollback", scripts=missing)

        for script in reversed(executed):
            logger.info("rollback.down", script=script.name)
            await self.hooks.on_before_rollback(script)
            await script.script.down(self.handler.db, script.to_info(), self.handler)
            await self.handler.schema_version.remove(script.timestamp)
            await self.hooks.on_after_rollback(script)

        logger.info("rollback.completed", strategy="down", scripts=len(executed))

    async def rollback_with_both(self, executed: list[MigrationScript], backup_path: str | None) -> None:
        try:
            await self.rollback_with_down(executed)
        except Exception as e:
            logger.error("rollback.down_failed", error=str(e), fallback="backup")
            await self.rollback_with_backup(backup_path)
        else:
            self.discard_backup(backup_path)
