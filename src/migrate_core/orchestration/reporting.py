"""Run reporting.

The workflow tells a ``Reporter`` what it found and what it did; the default
``LoggingReporter`` turns that into structlog events. The CLI renders its own
rich tables from the returned ``MigrationResult`` instead.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from migrate_core.core.logging import get_logger
from migrate_core.core.models import MigrationScript, ScriptSet

logger = get_logger(__name__)


@runtime_checkable
class Reporter(Protocol):
    def report_status(self, scripts: ScriptSet) -> None: ...

    def report_pending(self, pending: list[MigrationScript]) -> None: ...

    def report_executed(self, executed: list[MigrationScript]) -> None: ...

    def report_dry_run(self, pending: list[MigrationScript], *, transactional: bool) -> None: ...


class LoggingReporter:
    """Default reporter: structured log events only."""

    def report_status(self, scripts: ScriptSet) -> None:
        logger.info(
            "migration.status",
            total=len(scripts.all),
            migrated=len(scripts.migrated),
            pending=len(scripts.pending),
            ignored=len(scripts.ignored),
        )
        if scripts.ignored:
            logger.warning(
                "migration.ignored",
                scripts=[s.name for s in scripts.ignored],
                hint="older than the last applied migration; they will not run",
            )

    def report_pending(self, pending: list[MigrationScript]) -> None:
        if not pending:
            logger.info("migration.nothing_pending")
            return
        logger.info("migration.pending", scripts=[s.name for s in pending])

    def report_executed(self, executed: list[MigrationScript]) -> None:
        logger.info(
            "migration.executed",
            count=len(executed),
            scripts=[s.name for s in executed],
            total_seconds=round(sum(s.duration_seconds or 0.0 for s in executed), 3),
        )

    def report_dry_run(self, pending: list[MigrationScript], *, transactional: bool) -> None:
        if transactional:
            logger.info("dry_run.started", scripts=len(pending), mode="transaction rolled back at end")
        else:
            logger.warning(
                "dry_run.report_only",
                scripts=[s.name for s in pending],
                hint="database handle has no transaction support; scripts are not executed",
            )
