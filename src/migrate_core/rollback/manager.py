"""Explicit rollback to a target version.

``RollbackManager.rollback_to_version(target)`` reverts every migrated
script newer than ``target``, newest first, through ``down()``. Every
candidate must provide ``down()`` before any of them runs; each tracking
record is removed as soon as its ``down()`` succeeds, so a failure part-way
leaves the store describing exactly what is still applied.
"""

from __future__ import annotations

from typing import Any

from migrate_core.core.config import MigrationSettings
from migrate_core.core.errors import DatabaseConnectionError, RollbackError
from migrate_core.core.logging import get_logger
from migrate_core.core.models import MigrationResult, MigrationScript, ScriptSet
from migrate_core.execution.hooks import MigrationHooks, as_hooks
from migrate_core.execution.selector import ScriptSelector

logger = get_logger(__name__)


class RollbackManager:
    def __init__(
        self,
        handler: Any,
        settings: MigrationSettings,
        *,
        scanner: Any,
        registry: Any,
        validation: Any,
        error_handler: Any,
        hooks: MigrationHooks | None = None,
        selector: ScriptSelector | None = None,
    ) -> None:
        self.handler = handler
        self.settings = settings
        self.scanner = scanner
        self.registry = registry
        self.validation = validation
        self.error_handler = error_handler
        self.hooks = as_hooks(hooks)
        self.selector = selector or ScriptSelector()

    async def rollback_to_version(self, target: int) -> MigrationResult:
        """Revert migrations with ``timestamp > target``.

        Raises:
            DatabaseConnectionError: connection check failed
            RollbackError: a candidate has no ``down()``
            ValidationError: a candidate cannot be loaded
        """
        if not await self.handler.db.check_connection():
            raise DatabaseConnectionError("Database connection check failed").with_context(
                operation="rollback_to_version"
            )

        await self.handler.schema_version.init()
        scripts = await self.scanner.scan()
        candidates = self.selector.get_migrated_down_to(scripts.migrated, target)

        if not candidates:
            logger.info("rollback.nothing_to_revert", target=target)
            return MigrationResult.from_scripts(True, scripts, executed=[])

        logger.info("rollback.version_started", target=target, scripts=[s.name for s in candidates])
        reverted: list[MigrationScript] = []
        try:
            await self.validation.validate_migrations(candidates)
            for script in candidates:
                await script.init(self.registry)
            self._require_down(candidates)

            for script in candidates:
                await self._revert(script)
                reverted.append(script)
        except Exception as e:
            logger.error("rollback.version_aborted", target=target, reverted=[s.name for s in reverted])
            await self.error_handler.handle_rollback_error(e)

        remaining = [s for s in scripts.migrated if s.timestamp <= target]
        logger.info("rollback.version_completed", target=target, reverted=len(reverted))
        return MigrationResult.from_scripts(
            True,
            ScriptSet(all=scripts.all, migrated=remaining, ignored=scripts.ignored),
            executed=reverted,
        )

    @staticmethod
    def _require_down(candidates: list[MigrationScript]) -> None:
        missing = [s.name for s in candidates if not s.has_down]
        if missing:
            raise RollbackError(
                f"Cannot roll back: no down() method in {', '.join(missing)}"
            ).with_context(operation="rollback_to_version", scripts=missing)

    async def _revert(self, script: MigrationScript) -> None:
        logger.info("rollback.down", script=script.name, timestamp=script.timestamp)
        await self.hooks.on_before_rollback(script)
        await script.script.down(self.handler.db, script.to_info(), self.handler)
        await self.handler.schema_version.remove(script.timestamp)
        await self.hooks.on_after_rollback(script)
