"""Tests for migrate_core.rollback.manager."""

from __future__ import annotations

import pytest

from migrate_core.core.errors import DatabaseConnectionError, RollbackError, ValidationError
from migrate_core.execution.hooks import MigrationHooks
from migrate_core.migrations import LoaderRegistry
from migrate_core.orchestration.error_handler import MigrationErrorHandler
from migrate_core.rollback import RollbackManager, RollbackService
from tests._support.fakes import FakeHandler, RecordingScript, StaticScanner, UpOnlyScript, make_script, record


class StubValidation:
    def __init__(self, error=None):
        self.seen = []
        self.error = error

    async def validate_migrations(self, scripts):
        self.seen.append([s.timestamp for s in scripts])
        if self.error:
            raise self.error
        return []


class ErrorHooks(MigrationHooks):
    def __init__(self):
        self.events = []

    async def on_before_rollback(self, script):
        self.events.append(f"before:{script.timestamp}")

    async def on_after_rollback(self, script):
        self.events.append(f"after:{script.timestamp}")

    async def on_error(self, error):
        self.events.append(f"error:{type(error).__name__}")


def _manager(make_settings, scripts, records, validation=None, hooks=None):
    settings = make_settings()
    handler = FakeHandler(records=records)
    hooks = hooks or MigrationHooks()
    manager = RollbackManager(
        handler,
        settings,
        scanner=StaticScanner(scripts, handler.schema_version),
        registry=LoaderRegistry.default(),
        validation=validation or StubValidation(),
        error_handler=MigrationErrorHandler(RollbackService(handler, settings), hooks),
        hooks=hooks,
    )
    return manager, handler


@pytest.mark.asyncio
async def test_reverts_newer_than_target_newest_first(make_settings):
    log = []
    hooks = ErrorHooks()
    scripts = [make_script(ts, RecordingScript(str(ts), log)) for ts in (1, 2, 3)]
    validation = StubValidation()
    manager, handler = _manager(make_settings, scripts, [record(1), record(2), record(3)], validation, hooks)

    result = await manager.rollback_to_version(1)

    assert result.success is True
    assert log == ["down:3", "down:2"]
    assert [s.timestamp for s in result.executed] == [3, 2]
    assert [s.timestamp for s in result.migrated] == [1]
    assert sorted(handler.schema_version.records) == [1]
    assert validation.seen == [[3, 2]]
    assert hooks.events == ["before:3", "after:3", "before:2", "after:2"]
    assert handler.db.calls == ["remove:3", "remove:2"]


@pytest.mark.asyncio
async def test_nothing_to_revert(make_settings):
    log = []
    scripts = [make_script(1, RecordingScript("1", log))]
    manager, _ = _manager(make_settings, scripts, [record(1)])

    result = await manager.rollback_to_version(5)

    assert result.success is True
    assert result.executed == ()
    assert log == []


@pytest.mark.asyncio
async def test_missing_down_aborts_before_any_down(make_settings):
    log = []
    hooks = ErrorHooks()
    scripts = [make_script(1, UpOnlyScript()), make_script(2, RecordingScript("2", log))]
    manager, handler = _manager(make_settings, scripts, [record(1), record(2)], hooks=hooks)

    with pytest.raises(RollbackError, match="V1_step.py"):
        await manager.rollback_to_version(0)

    assert log == []
    assert sorted(handler.schema_version.records) == [1, 2]
    assert hooks.events == ["error:RollbackError"]


@pytest.mark.asyncio
async def test_down_failure_keeps_remaining_records(make_settings):
    log = []
    scripts = [
        make_script(1, RecordingScript("1", log)),
        make_script(2, RecordingScript("2", log, fail_down=True)),
        make_script(3, RecordingScript("3", log)),
    ]
    manager, handler = _manager(make_settings, scripts, [record(1), record(2), record(3)])

    with pytest.raises(RuntimeError, match="down failed"):
        await manager.rollback_to_version(0)

    assert log == ["down:3", "down:2"]
    assert sorted(handler.schema_version.records) == [1, 2]


@pytest.mark.asyncio
async def test_validation_failure_propagates(make_settings):
    scripts = [make_script(1, RecordingScript("1", []))]
    validation = StubValidation(error=ValidationError("bad script"))
    manager, _ = _manager(make_settings, scripts, [record(1)], validation)

    with pytest.raises(ValidationError):
        await manager.rollback_to_version(0)


@pytest.mark.asyncio
async def test_connection_failure(make_settings):
    manager, handler = _manager(make_settings, [], [])
    handler.db.connected = False
    with pytest.raises(DatabaseConnectionError):
        await manager.rollback_to_version(0)
