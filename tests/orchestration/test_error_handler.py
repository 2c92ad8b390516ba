"""Tests for migrate_core.orchestration.error_handler."""

from pathlib import Path

import pytest

from migrate_core.core.errors import ExecutionError, RollbackError
from migrate_core.core.models import RollbackStrategy
from migrate_core.execution.hooks import MigrationHooks
from migrate_core.orchestration.error_handler import MigrationErrorHandler
from migrate_core.rollback import BackupService, RollbackService
from tests._support.fakes import FakeHandler, MemoryBackup, RecordingScript, UpOnlyScript, make_script


class SpyRollbackService:
    def __init__(self, error=None):
        self.calls = []
        self.error = error
        self.discarded = []

    async def rollback(self, executed, backup_path=None):
        self.calls.append((list(executed), backup_path))
        if self.error:
            raise self.error

    def discard_backup(self, backup_path):
        self.discarded.append(backup_path)


class ErrorHooks(MigrationHooks):
    def __init__(self):
        self.errors = []

    async def on_error(self, error):
        self.errors.append(error)


class TestHandleMigrationError:
    @pytest.mark.asyncio
    async def test_rolls_back_and_returns_error(self):
        spy = SpyRollbackService()
        scripts = [make_script(1), make_script(2)]
        error = ExecutionError("boom")

        returned = await MigrationErrorHandler(spy).handle_migration_error(error, scripts, "backup.bkp")

        assert returned is error
        assert spy.calls == [(scripts, "backup.bkp")]

    @pytest.mark.asyncio
    async def test_nothing_attempted_skips_rollback(self):
        spy = SpyRollbackService()
        error = RuntimeError("validation")
        assert await MigrationErrorHandler(spy).handle_migration_error(error, []) is error
        assert spy.calls == []

    @pytest.mark.asyncio
    async def test_nothing_attempted_discards_backup(self):
        spy = SpyRollbackService()
        error = RuntimeError("hook wiring failed")

        assert await MigrationErrorHandler(spy).handle_migration_error(error, [], "backup.bkp") is error

        assert spy.calls == []
        assert spy.discarded == ["backup.bkp"]

    @pytest.mark.asyncio
    async def test_nothing_attempted_deletes_backup_file(self, make_settings):
        settings = make_settings()
        handler = FakeHandler(backup=MemoryBackup())
        backup_service = BackupService(handler, settings.backup)
        path = await backup_service.backup()

        await MigrationErrorHandler(RollbackService(handler, settings, backup_service)).handle_migration_error(
            RuntimeError("before first script"), [], path
        )

        assert not Path(path).exists()

    @pytest.mark.asyncio
    async def test_rollback_failure_propagates(self):
        spy = SpyRollbackService(error=RollbackError("restore failed"))
        with pytest.raises(RollbackError, match="restore failed"):
            await MigrationErrorHandler(spy).handle_migration_error(ExecutionError("x"), [make_script(1)])

    @pytest.mark.asyncio
    async def test_with_real_down_rollback(self, make_settings):
        log = []
        handler = FakeHandler()
        service = RollbackService(handler, make_settings(rollback_strategy=RollbackStrategy.DOWN))
        scripts = [make_script(1, RecordingScript("a", log)), make_script(2, RecordingScript("b", log))]

        await MigrationErrorHandler(service).handle_migration_error(ExecutionError("x"), scripts)

        assert log == ["down:b", "down:a"]

    @pytest.mark.asyncio
    async def test_down_strategy_missing_down_raises(self, make_settings):
        service = RollbackService(FakeHandler(), make_settings(rollback_strategy=RollbackStrategy.DOWN))
        with pytest.raises(RollbackError):
            await MigrationErrorHandler(service).handle_migration_error(
                ExecutionError("x"), [make_script(1, UpOnlyScript())]
            )


@pytest.mark.asyncio
async def test_dry_run_error_reraises_without_rollback():
    spy = SpyRollbackService()
    error = ExecutionError("dry boom")
    with pytest.raises(ExecutionError, match="dry boom"):
        await MigrationErrorHandler(spy).handle_dry_run_error(error, [make_script(1)])
    assert spy.calls == []


@pytest.mark.asyncio
async def test_rollback_error_fires_on_error_and_reraises():
    hooks = ErrorHooks()
    error = RollbackError("no down")
    with pytest.raises(RollbackError):
        await MigrationErrorHandler(SpyRollbackService(), hooks).handle_rollback_error(error)
    assert hooks.errors == [error]
