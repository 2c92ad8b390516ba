"""Failure paths of the migration workflow.

Three terminal paths, one per kind of run:

``handle_migration_error``
    a real run failed: log it, apply the rollback strategy to the scripts
    that were attempted, and hand the error back to the caller.
``handle_dry_run_error``
    a dry run failed: nothing was committed, so only log the failing script
    and re-raise.
``handle_rollback_error``
    an explicit rollback (``rollback_to_version``) failed: log, fire
    ``on_error`` and re-raise.
"""

from __future__ import annotations

from typing import NoReturn

from migrate_core.core.errors import MigrationCoreError
from migrate_core.core.logging import get_logger
from migrate_core.core.models import MigrationScript
from migrate_core.execution.hooks import MigrationHooks, as_hooks
from migrate_core.rollback.service import RollbackService

logger = get_logger(__name__)


def _error_fields(error: Exception) -> dict:
    if isinstance(error, MigrationCoreError):
        return error.to_dict()
    return {"error_type": type(error).__name__, "message": str(error)}


class MigrationErrorHandler:
    def __init__(self, rollback_service: RollbackService, hooks: MigrationHooks | None = None) -> None:
        self.rollback_service = rollback_service
        self.hooks = as_hooks(hooks)

    async def handle_migration_error(
        self,
        error: Exception,
        executed: list[MigrationScript],
        backup_path: str | None = None,
    ) -> Exception:
        """Roll back the attempted scripts and return ``error`` for the caller.

        A failure inside the rollback itself propagates: the database state
        is unknown at that point.
        """
        failed = executed[-1].name if executed else None
        logger.error(
            "migration.run_failed",
            failed_script=failed,
            attempted=[s.name for s in executed],
            **_error_fields(error),
        )

        if not executed:
            logger.info("rollback.not_needed", reason="no migration was attempted")
            self.rollback_service.discard_backup(backup_path)
            return error

        try:
            await self.rollback_service.rollback(executed, backup_path)
        except Exception as rollback_error:
            logger.critical(
                "rollback.failed",
                original_error=str(error),
                rollback_error=str(rollback_error),
                hint="manual intervention required",
            )
            raise
        return error

    async def handle_dry_run_error(self, error: Exception, executed: list[MigrationScript]) -> NoReturn:
        failed = executed[-1].name if executed else None
        logger.error("dry_run.failed", failed_script=failed, **_error_fields(error))
        raise error

    async def handle_rollback_error(self, error: Exception) -> NoReturn:
        logger.error("rollback.version_failed", **_error_fields(error))
        await self.hooks.on_error(error)
        raise error
