"""
Per-script execution and transaction wrapping.

``MigrationRunner`` runs the pending list strictly in order. For every
script it appends to ``executed`` first (so a script that fails half-way is
still known to recovery), fires ``on_before_migrate``, runs ``up()`` inside
the transaction scope, saves the tracking record and fires
``on_after_migrate``.

``TransactionScope`` maps ``TransactionMode`` onto the transaction manager:

    PER_MIGRATION   begin/commit around each script
    PER_BATCH       one begin before the first script, one commit after the last
    NONE            no wrapping

In dry-run mode the whole batch runs in one transaction that is always
rolled back, and nothing is written to the tracking store.

Tags:
    execution, transactions, dry-run, migrate-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import getpass
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from migrate_core.core.config import MigrationSettings
from migrate_core.core.errors import ExecutionError, MigrationCoreError
from migrate_core.core.hashing import compute_file_checksum
from migrate_core.core.logging import get_logger
from migrate_core.core.models import (
    MigrationScript,
    TransactionContext,
    TransactionMode,
    now_ms,
)
from migrate_core.execution.hooks import MigrationHooks, as_hooks

logger = get_logger(__name__)


def current_username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


# =============================================================================
# TRANSACTION SCOPE
# =============================================================================


class TransactionScope:
    """Wraps script execution in transactions according to the mode."""

    def __init__(
        self,
        manager: Any | None,
        mode: TransactionMode,
        hooks: MigrationHooks,
        *,
        isolation=None,
        dry_run: bool = False,
    ):
        self.manager = manager
        self.mode = mode
        self.hooks = hooks
        self.isolation = isolation
        self.dry_run = dry_run

    @property
    def wraps_batch(self) -> bool:
        if self.manager is None:
            return False
        return self.dry_run or self.mode == TransactionMode.PER_BATCH

    @property
    def wraps_each(self) -> bool:
        if self.manager is None or self.dry_run:
            return False
        return self.mode == TransactionMode.PER_MIGRATION

    def _context(self, scripts: list[MigrationScript]) -> TransactionContext:
        return TransactionContext(
            transaction_id=uuid.uuid4().hex,
            mode=self.mode,
            isolation=self.isolation,
            migrations=list(scripts),
            metadata={"dry_run": self.dry_run},
        )

    async def _roll_back(self, ctx: TransactionContext, error: Exception | None) -> None:
        await self.hooks.before_rollback(ctx, error)
        await self.manager.rollback()
        await self.hooks.after_rollback(ctx, error)

    @asynccontextmanager
    async def transaction(self, scripts: list[MigrationScript]) -> AsyncIterator[TransactionContext]:
        """Begin, yield, then commit (or roll back on error / in dry run).

        A commit that still fails after its retries is rolled back too, so
        the connection never stays inside an open transaction.
        """
        ctx = self._context(scripts)

        await self.hooks.before_transaction_begin(ctx)
        await self.manager.begin()
        await self.hooks.after_transaction_begin(ctx)

        try:
            yield ctx
        except BaseException as e:
            await self._roll_back(ctx, e if isinstance(e, Exception) else None)
            raise

        if self.dry_run:
            await self._roll_back(ctx, None)
            logger.info("dry_run.rolled_back", transaction_id=ctx.transaction_id, scripts=len(scripts))
            return

        async def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            ctx.attempt = attempt + 1
            await self.hooks.on_commit_retry(ctx, attempt, error)

        try:
            await self.hooks.before_commit(ctx)
            await self.manager.commit(on_retry=_on_retry)
        except Exception as e:
            logger.warning("transaction.rollback_after_commit_failure", transaction_id=ctx.transaction_id)
            await self._roll_back(ctx, e)
            raise
        await self.hooks.after_commit(ctx)

    @asynccontextmanager
    async def per_batch(self, scripts: list[MigrationScript]) -> AsyncIterator[None]:
        if self.wraps_batch and scripts:
            async with self.transaction(scripts):
                yield
        else:
            yield

    @asynccontextmanager
    async def per_script(self, script: MigrationScript) -> AsyncIterator[None]:
        if self.wraps_each:
            async with self.transaction([script]):
                yield
        else:
            yield


# =============================================================================
# RUNNER
# =============================================================================


class MigrationRunner:
    """Runs migration scripts and records them in the tracking store."""

    def __init__(
        self,
        handler: Any,
        settings: MigrationSettings,
        hooks: MigrationHooks | None = None,
        transaction_manager: Any | None = None,
    ):
        self.handler = handler
        self.settings = settings
        self.hooks = as_hooks(hooks)
        self.transaction_manager = transaction_manager

    def scope(self, *, dry_run: bool = False) -> TransactionScope:
        return TransactionScope(
            self.transaction_manager,
            self.settings.transaction.mode,
            self.hooks,
            isolation=self.settings.transaction.isolation,
            dry_run=dry_run,
        )

    def _checksum(self, script: MigrationScript) -> str | None:
        try:
            return compute_file_checksum(script.filepath, self.settings.checksum_algorithm)
        except OSError as e:
            logger.warning("migration.checksum_failed", script=script.name, error=str(e))
            return None

    async def execute_one(self, script: MigrationScript, *, dry_run: bool = False) -> str | None:
        """Run ``up()`` for one script and save its record (unless dry run)."""
        if script.script is None:
            raise ExecutionError(f"Migration {script.name} has not been loaded").with_context(
                script=script.name, timestamp=script.timestamp
            )

        script.username = current_username()
        script.started_at = now_ms()
        script.dry_run = dry_run

        result = await script.script.up(self.handler.db, script.to_info(), self.handler)

        script.finished_at = now_ms()
        script.result = result if result is None else str(result)
        script.checksum = self._checksum(script)

        if dry_run:
            logger.info("dry_run.executed", script=script.name, duration_seconds=script.duration_seconds)
        else:
            await self.handler.schema_version.save(script.to_info())
            logger.info(
                "migration.applied",
                script=script.name,
                timestamp=script.timestamp,
                duration_seconds=script.duration_seconds,
            )
        return script.result

    async def execute(
        self,
        scripts: list[MigrationScript],
        executed: list[MigrationScript],
        *,
        dry_run: bool = False,
    ) -> None:
        """Run ``scripts`` in order, appending each to ``executed`` before it runs."""
        scope = self.scope(dry_run=dry_run)
        async with scope.per_batch(scripts):
            for script in scripts:
                executed.append(script)
                await self._execute_with_hooks(script, scope, dry_run=dry_run)

    async def _execute_with_hooks(self, script: MigrationScript, scope: TransactionScope, *, dry_run: bool) -> None:
        logger.info("migration.started", script=script.name, timestamp=script.timestamp, dry_run=dry_run)
        try:
            await self.hooks.on_before_migrate(script)
            async with scope.per_script(script):
                result = await self.execute_one(script, dry_run=dry_run)
            await self.hooks.on_after_migrate(script, result)
        except Exception as e:
            logger.error("migration.failed", script=script.name, timestamp=script.timestamp, error=str(e))
            await self.hooks.on_migration_error(script, e)
            if isinstance(e, MigrationCoreError):
                raise
            raise ExecutionError(
                f"Migration {script.name} failed: {e}",
                cause=e,
            ).with_context(script=script.name, timestamp=script.timestamp) from e
