"""Tests for migrate_core.execution.runner."""

from __future__ import annotations

import pytest

from migrate_core.core.errors import ExecutionError
from migrate_core.core.models import TransactionMode
from migrate_core.execution.hooks import MigrationHooks
from migrate_core.execution.runner import MigrationRunner, TransactionScope
from migrate_core.execution.transactions import create_transaction_manager
from tests._support.fakes import FakeHandler, ImperativeDB, PlainDB, RecordingScript, make_script


class EventHooks(MigrationHooks):
    def __init__(self, log):
        self.log = log

    async def on_before_migrate(self, script):
        self.log.append(f"before:{script.timestamp}")

    async def on_after_migrate(self, script, result):
        self.log.append(f"after:{script.timestamp}:{result}")

    async def on_migration_error(self, script, error):
        self.log.append(f"error:{script.timestamp}")

    async def before_commit(self, ctx):
        self.log.append("before_commit")

    async def on_commit_retry(self, ctx, attempt, error):
        self.log.append(f"commit_retry:{attempt}")


def _runner(make_settings, handler, mode=TransactionMode.PER_MIGRATION, hooks=None):
    settings = make_settings(transaction={"mode": mode, "retry_delay": 0.0})
    manager = create_transaction_manager(handler.db, settings.transaction)
    return MigrationRunner(handler, settings, hooks=hooks, transaction_manager=manager)


class TestTransactionScope:
    def test_flags(self):
        hooks = MigrationHooks()
        manager = object()
        assert TransactionScope(manager, TransactionMode.PER_MIGRATION, hooks).wraps_each is True
        assert TransactionScope(manager, TransactionMode.PER_MIGRATION, hooks).wraps_batch is False
        assert TransactionScope(manager, TransactionMode.PER_BATCH, hooks).wraps_batch is True
        assert TransactionScope(manager, TransactionMode.NONE, hooks).wraps_batch is False
        assert TransactionScope(manager, TransactionMode.NONE, hooks).wraps_each is False

    def test_dry_run_always_wraps_batch(self):
        scope = TransactionScope(object(), TransactionMode.NONE, MigrationHooks(), dry_run=True)
        assert scope.wraps_batch is True
        assert scope.wraps_each is False

    def test_no_manager_never_wraps(self):
        scope = TransactionScope(None, TransactionMode.PER_BATCH, MigrationHooks(), dry_run=True)
        assert scope.wraps_batch is False
        assert scope.wraps_each is False


class TestExecute:
    @pytest.mark.asyncio
    async def test_per_migration_wraps_each_script(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        log = []
        scripts = [make_script(1, RecordingScript("a", log)), make_script(2, RecordingScript("b", log))]
        executed = []

        await _runner(make_settings, handler).execute(scripts, executed)

        assert handler.db.calls == ["begin", "save:1", "commit", "begin", "save:2", "commit"]
        assert log == ["up:a", "up:b"]
        assert executed == scripts

    @pytest.mark.asyncio
    async def test_per_batch_single_transaction(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        log = []
        scripts = [make_script(1, RecordingScript("a", log)), make_script(2, RecordingScript("b", log))]

        await _runner(make_settings, handler, TransactionMode.PER_BATCH).execute(scripts, [])

        assert handler.db.calls == ["begin", "save:1", "save:2", "commit"]

    @pytest.mark.asyncio
    async def test_mode_none_no_transactions(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        scripts = [make_script(1, RecordingScript("a", []))]

        await _runner(make_settings, handler, TransactionMode.NONE).execute(scripts, [])

        assert handler.db.calls == ["save:1"]

    @pytest.mark.asyncio
    async def test_without_transaction_support(self, make_settings):
        handler = FakeHandler(PlainDB())
        runner = _runner(make_settings, handler)
        assert runner.transaction_manager is None

        await runner.execute([make_script(1, RecordingScript("a", []))], [])

        assert handler.db.calls == ["save:1"]

    @pytest.mark.asyncio
    async def test_record_fields(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        script = make_script(202401010000, RecordingScript("a", []))

        await _runner(make_settings, handler).execute([script], [])

        info = handler.schema_version.records[202401010000]
        assert info.name == "V202401010000_step.py"
        assert info.result == "a applied"
        assert info.username
        assert info.started_at <= info.finished_at
        assert info.checksum is None
        assert script.dry_run is False

    @pytest.mark.asyncio
    async def test_checksum_recorded_for_real_file(self, make_settings, tmp_path):
        path = tmp_path / "V1_a.py"
        path.write_text("x = 1\n")
        handler = FakeHandler(ImperativeDB())
        script = make_script(1, RecordingScript("a", []), filepath=str(path))

        await _runner(make_settings, handler).execute([script], [])

        assert handler.schema_version.records[1].checksum is not None
        assert len(handler.schema_version.records[1].checksum) == 64

    @pytest.mark.asyncio
    async def test_failure_stops_batch_and_keeps_failed_script_in_executed(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        log = []
        hook_log = []
        scripts = [
            make_script(1, RecordingScript("a", log)),
            make_script(2, RecordingScript("b", log, fail_up=True)),
            make_script(3, RecordingScript("c", log)),
        ]
        executed = []

        with pytest.raises(ExecutionError) as exc_info:
            await _runner(make_settings, handler, hooks=EventHooks(hook_log)).execute(scripts, executed)

        assert log == ["up:a", "up:b"]
        assert executed == scripts[:2]
        assert handler.db.calls == ["begin", "save:1", "commit", "begin", "rollback"]
        assert 2 not in handler.schema_version.records
        assert "error:2" in hook_log
        assert exc_info.value.context.timestamp == 2
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_hooks_order(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        hook_log = []
        script = make_script(1, RecordingScript("a", []))

        await _runner(make_settings, handler, hooks=EventHooks(hook_log)).execute([script], [])

        assert hook_log == ["before:1", "before_commit", "after:1:a applied"]

    @pytest.mark.asyncio
    async def test_commit_retry_fires_hook(self, make_settings):
        handler = FakeHandler(ImperativeDB(commit_failures=[RuntimeError("deadlock")]))
        hook_log = []

        await _runner(make_settings, handler, hooks=EventHooks(hook_log)).execute(
            [make_script(1, RecordingScript("a", []))], []
        )

        assert "commit_retry:1" in hook_log
        assert handler.db.calls[-2:] == ["commit_failed", "commit"]

    @pytest.mark.asyncio
    async def test_failed_commit_is_rolled_back(self, make_settings):
        handler = FakeHandler(ImperativeDB(commit_failures=[RuntimeError("UNIQUE constraint failed")]))
        hook_log = []

        with pytest.raises(ExecutionError, match="UNIQUE constraint failed"):
            await _runner(make_settings, handler, hooks=EventHooks(hook_log)).execute(
                [make_script(1, RecordingScript("a", []))], []
            )

        assert handler.db.calls == ["begin", "save:1", "commit_failed", "rollback"]
        assert "error:1" in hook_log

    @pytest.mark.asyncio
    async def test_failed_batch_commit_is_rolled_back(self, make_settings):
        handler = FakeHandler(ImperativeDB(commit_failures=[RuntimeError("UNIQUE constraint failed")]))
        scripts = [make_script(1, RecordingScript("a", [])), make_script(2, RecordingScript("b", []))]

        with pytest.raises(RuntimeError, match="UNIQUE constraint failed"):
            await _runner(make_settings, handler, TransactionMode.PER_BATCH).execute(scripts, [])

        assert handler.db.calls == ["begin", "save:1", "save:2", "commit_failed", "rollback"]

    @pytest.mark.asyncio
    async def test_unloaded_script_is_execution_error(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        with pytest.raises(ExecutionError, match="has not been loaded"):
            await _runner(make_settings, handler).execute([make_script(1)], [])


class TestDryRun:
    @pytest.mark.asyncio
    async def test_single_rolled_back_transaction_and_nothing_saved(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        log = []
        scripts = [make_script(1, RecordingScript("a", log)), make_script(2, RecordingScript("b", log))]
        executed = []

        await _runner(make_settings, handler).execute(scripts, executed, dry_run=True)

        assert log == ["up:a", "up:b"]
        assert handler.db.calls == ["begin", "rollback"]
        assert handler.schema_version.records == {}
        assert all(s.dry_run for s in executed)

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, make_settings):
        handler = FakeHandler(ImperativeDB())
        scripts = [make_script(1, RecordingScript("a", [], fail_up=True))]

        with pytest.raises(ExecutionError):
            await _runner(make_settings, handler).execute(scripts, [], dry_run=True)

        assert handler.db.calls == ["begin", "rollback"]
