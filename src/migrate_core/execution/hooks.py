"""Lifecycle hooks for migration runs.

Subclass ``MigrationHooks`` and override the events you care about; every
method is an async no-op by default. Several hook objects can be combined
with ``CompositeHooks``, which awaits each in registration order and logs
(then skips) a hook that raises.

Events, in run order::

    on_start(scripts)
    on_before_backup()               on_after_backup(path)
    on_before_migrate(script)
        before_transaction_begin(ctx)    after_transaction_begin(ctx)
        before_commit(ctx)               after_commit(ctx)
        on_commit_retry(ctx, attempt, error)
        before_rollback(ctx, error)      after_rollback(ctx, error)
    on_after_migrate(script, result)
    on_migration_error(script, error)
    on_before_restore(path)          on_after_restore(path)
    on_before_rollback(script)       on_after_rollback(script)
    on_complete(result)
    on_error(error)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from migrate_core.core.logging import get_logger

if TYPE_CHECKING:
    from migrate_core.core.models import (
        MigrationResult,
        MigrationScript,
        ScriptSet,
        TransactionContext,
    )

logger = get_logger(__name__)


class MigrationHooks:
    """No-op base class for migration lifecycle hooks."""

    # ── Process ──────────────────────────────────────────────────
    async def on_start(self, scripts: ScriptSet) -> None:
        pass

    async def on_complete(self, result: MigrationResult) -> None:
        pass

    async def on_error(self, error: Exception) -> None:
        pass

    # ── Per script ───────────────────────────────────────────────
    async def on_before_migrate(self, script: MigrationScript) -> None:
        pass

    async def on_after_migrate(self, script: MigrationScript, result: str | None) -> None:
        pass

    async def on_migration_error(self, script: MigrationScript, error: Exception) -> None:
        pass

    async def on_before_rollback(self, script: MigrationScript) -> None:
        pass

    async def on_after_rollback(self, script: MigrationScript) -> None:
        pass

    # ── Backup ───────────────────────────────────────────────────
    async def on_before_backup(self) -> None:
        pass

    async def on_after_backup(self, path: str) -> None:
        pass

    async def on_before_restore(self, path: str) -> None:
        pass

    async def on_after_restore(self, path: str) -> None:
        pass

    # ── Transactions ─────────────────────────────────────────────
    async def before_transaction_begin(self, ctx: TransactionContext) -> None:
        pass

    async def after_transaction_begin(self, ctx: TransactionContext) -> None:
        pass

    async def before_commit(self, ctx: TransactionContext) -> None:
        pass

    async def after_commit(self, ctx: TransactionContext) -> None:
        pass

    async def on_commit_retry(self, ctx: TransactionContext, attempt: int, error: Exception) -> None:
        pass

    async def before_rollback(self, ctx: TransactionContext, error: Exception | None) -> None:
        pass

    async def after_rollback(self, ctx: TransactionContext, error: Exception | None) -> None:
        pass


class CompositeHooks(MigrationHooks):
    """Fan a hook call out to several hook objects, best effort."""

    def __init__(self, hooks: list[MigrationHooks] | None = None):
        self._hooks: list[MigrationHooks] = list(hooks or [])

    def add(self, hook: MigrationHooks) -> None:
        self._hooks.append(hook)

    def __len__(self) -> int:
        return len(self._hooks)

    async def _fan_out(self, event: str, *args: Any) -> None:
        for hook in self._hooks:
            method = getattr(hook, event, None)
            if method is None:
                continue
            try:
                await method(*args)
            except Exception as e:
                logger.warning(
                    "hook.failed",
                    hook_event=event,
                    hook=type(hook).__name__,
                    error=str(e),
                )

    async def on_start(self, scripts):
        await self._fan_out("on_start", scripts)

    async def on_complete(self, result):
        await self._fan_out("on_complete", result)

    async def on_error(self, error):
        await self._fan_out("on_error", error)

    async def on_before_migrate(self, script):
        await self._fan_out("on_before_migrate", script)

    async def on_after_migrate(self, script, result):
        await self._fan_out("on_after_migrate", script, result)

    async def on_migration_error(self, script, error):
        await self._fan_out("on_migration_error", script, error)

    async def on_before_rollback(self, script):
        await self._fan_out("on_before_rollback", script)

    async def on_after_rollback(self, script):
        await self._fan_out("on_after_rollback", script)

    async def on_before_backup(self):
        await self._fan_out("on_before_backup")

    async def on_after_backup(self, path):
        await self._fan_out("on_after_backup", path)

    async def on_before_restore(self, path):
        await self._fan_out("on_before_restore", path)

    async def on_after_restore(self, path):
        await self._fan_out("on_after_restore", path)

    async def before_transaction_begin(self, ctx):
        await self._fan_out("before_transaction_begin", ctx)

    async def after_transaction_begin(self, ctx):
        await self._fan_out("after_transaction_begin", ctx)

    async def before_commit(self, ctx):
        await self._fan_out("before_commit", ctx)

    async def after_commit(self, ctx):
        await self._fan_out("after_commit", ctx)

    async def on_commit_retry(self, ctx, attempt, error):
        await self._fan_out("on_commit_retry", ctx, attempt, error)

    async def before_rollback(self, ctx, error):
        await self._fan_out("before_rollback", ctx, error)

    async def after_rollback(self, ctx, error):
        await self._fan_out("after_rollback", ctx, error)


def as_hooks(hooks: MigrationHooks | list[MigrationHooks] | None) -> CompositeHooks:
    """Normalise ``None`` / a single object / a list into a ``CompositeHooks``.

    Every caller-supplied hook ends up behind the best-effort fan-out, so a
    hook that raises is logged and never aborts the run.
    """
    if isinstance(hooks, CompositeHooks):
        return hooks
    if hooks is None:
        return CompositeHooks()
    if isinstance(hooks, list):
        return CompositeHooks(hooks)
    return CompositeHooks([hooks])
