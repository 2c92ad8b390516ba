"""File-backed database snapshots.

The handler's ``BackupCapability`` serialises the database to a string;
``BackupService`` owns where that string lives on disk. The file name is
built from ``BackupConfig``::

    {folder}/{prefix}{custom}{-timestamp}{suffix}.{extension}
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from migrate_core.core.config import BackupConfig
from migrate_core.core.errors import ConfigError, RollbackError
from migrate_core.core.logging import get_logger
from migrate_core.execution.hooks import MigrationHooks, as_hooks

logger = get_logger(__name__)


class BackupService:
    """Create, restore and delete backup files through a backup capability."""

    def __init__(
        self,
        handler: Any,
        config: BackupConfig | None = None,
        hooks: MigrationHooks | None = None,
    ) -> None:
        self.handler = handler
        self.config = config or BackupConfig()
        self.hooks = as_hooks(hooks)
        self.last_backup_path: str | None = None

    @property
    def capability(self) -> Any:
        capability = getattr(self.handler, "backup", None)
        if capability is None:
            raise ConfigError(f"Handler {type(self.handler).__name__} does not support backups")
        return capability

    def prepare_file_path(self, now: datetime | None = None) -> Path:
        stamp = (now or datetime.now()).strftime(self.config.timestamp_format)
        return self.config.get_path(stamp)

    async def backup(self) -> str:
        """Snapshot the database to a new file and return its path."""
        await self.hooks.on_before_backup()

        data = await self.capability.backup()
        path = self.prepare_file_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(data, encoding="utf-8")

        self.last_backup_path = str(path)
        logger.info("backup.created", path=str(path), size_bytes=path.stat().st_size)
        await self.hooks.on_after_backup(str(path))
        return str(path)

    async def restore(self, path: str | None = None) -> None:
        """Restore the database from ``path`` (default: the last backup)."""
        target = path or self.last_backup_path
        if not target or not Path(target).exists():
            raise RollbackError(f"Cannot open backup file {target}").with_context(operation="restore")

        data = Path(target).read_text(encoding="utf-8")
        await self.capability.restore(data)
        logger.info("backup.restored", path=target)

    def delete_backup(self, path: str | None = None) -> bool:
        """Remove the backup file when ``delete_backup`` is configured."""
        target = path or self.last_backup_path
        if not self.config.delete_backup or not target:
            return False
        file = Path(target)
        if not file.exists():
            return False
        file.unlink()
        logger.debug("backup.deleted", path=target)
        if target == self.last_backup_path:
            self.last_backup_path = None
        return True
