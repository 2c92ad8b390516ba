"""Tests for migrate_core.execution.transactions."""

import pytest

from migrate_core.core.config import TransactionConfig
from migrate_core.core.models import IsolationLevel
from migrate_core.execution.transactions import (
    CallbackTransactionManager,
    ImperativeTransactionManager,
    TransactionManager,
    create_transaction_manager,
    transaction_manager_for,
)
from tests._support.fakes import CallbackDB, FakeHandler, ImperativeDB, PlainDB


def _config(**overrides):
    values = {"retries": 3, "retry_delay": 0.0}
    values.update(overrides)
    return TransactionConfig(**values)


class TestFactory:
    def test_imperative(self):
        manager = create_transaction_manager(ImperativeDB(), _config())
        assert isinstance(manager, ImperativeTransactionManager)
        assert isinstance(manager, TransactionManager)

    def test_callback(self):
        assert isinstance(create_transaction_manager(CallbackDB(), _config()), CallbackTransactionManager)

    def test_unsupported(self):
        assert create_transaction_manager(PlainDB(), _config()) is None

    def test_handler_supplied_manager_takes_precedence(self):
        handler = FakeHandler(ImperativeDB())
        supplied = CallbackTransactionManager(CallbackDB(), _config())
        handler.transaction_manager = supplied
        assert transaction_manager_for(handler, _config()) is supplied

    def test_handler_without_manager_is_detected(self):
        assert isinstance(transaction_manager_for(FakeHandler(ImperativeDB()), _config()), ImperativeTransactionManager)
        assert transaction_manager_for(FakeHandler(PlainDB()), _config()) is None


class TestImperative:
    @pytest.mark.asyncio
    async def test_begin_sets_isolation_first(self):
        db = ImperativeDB()
        manager = ImperativeTransactionManager(db, _config(isolation=IsolationLevel.SERIALIZABLE))
        await manager.begin()
        assert db.isolation == ["SERIALIZABLE"]
        assert db.calls == ["begin"]

    @pytest.mark.asyncio
    async def test_no_isolation_configured(self):
        db = ImperativeDB()
        await ImperativeTransactionManager(db, _config(isolation=None)).begin()
        assert db.isolation == []

    @pytest.mark.asyncio
    async def test_commit_retries_transient_failures(self):
        db = ImperativeDB(commit_failures=[RuntimeError("deadlock detected")])
        retries = []
        manager = ImperativeTransactionManager(db, _config())

        await manager.commit(on_retry=lambda attempt, error, delay: retries.append(attempt))

        assert db.calls == ["commit_failed", "commit"]
        assert retries == [1]

    @pytest.mark.asyncio
    async def test_commit_gives_up_after_configured_attempts(self):
        db = ImperativeDB(commit_failures=[RuntimeError("deadlock")] * 5)
        manager = ImperativeTransactionManager(db, _config(retries=2))
        with pytest.raises(RuntimeError, match="deadlock"):
            await manager.commit()
        assert db.calls == ["commit_failed", "commit_failed"]

    @pytest.mark.asyncio
    async def test_non_transient_commit_error_not_retried(self):
        db = ImperativeDB(commit_failures=[RuntimeError("constraint violated")])
        with pytest.raises(RuntimeError):
            await ImperativeTransactionManager(db, _config()).commit()
        assert db.calls == ["commit_failed"]

    @pytest.mark.asyncio
    async def test_rollback_failure_propagates(self):
        class BadRollbackDB(ImperativeDB):
            async def rollback(self):
                raise RuntimeError("connection lost")

        with pytest.raises(RuntimeError, match="connection lost"):
            await ImperativeTransactionManager(BadRollbackDB(), _config()).rollback()

    @pytest.mark.asyncio
    async def test_set_isolation_without_support_is_warning(self):
        class NoIsolationDB(PlainDB):
            async def begin_transaction(self):
                pass

            async def commit(self):
                pass

            async def rollback(self):
                pass

        manager = ImperativeTransactionManager(NoIsolationDB(), _config())
        await manager.set_isolation_level(IsolationLevel.SERIALIZABLE)


class TestCallback:
    @pytest.mark.asyncio
    async def test_commit_runs_buffered_operations_in_one_transaction(self):
        db = CallbackDB()
        manager = CallbackTransactionManager(db, _config())
        seen = []

        async def op(tx):
            seen.append("op")

        await manager.begin()
        manager.add_operation(op)
        manager.add_operation(op)
        assert manager.pending_operations == 2

        await manager.commit()

        assert seen == ["op", "op"]
        assert db.transactions == 1
        assert manager.pending_operations == 0

    @pytest.mark.asyncio
    async def test_empty_commit_skips_provider(self):
        db = CallbackDB()
        await CallbackTransactionManager(db, _config()).commit()
        assert db.transactions == 0

    @pytest.mark.asyncio
    async def test_contention_replays_whole_buffer(self):
        db = CallbackDB(failures=[RuntimeError("contention on document")])
        manager = CallbackTransactionManager(db, _config())
        seen = []

        async def op(tx):
            seen.append("op")

        manager.add_operation(op)
        await manager.commit()

        assert db.transactions == 2
        assert seen == ["op"]

    @pytest.mark.asyncio
    async def test_failed_commit_clears_buffer(self):
        db = CallbackDB(failures=[RuntimeError("permission denied")])
        manager = CallbackTransactionManager(db, _config())

        async def op(tx):
            pass

        manager.add_operation(op)
        with pytest.raises(RuntimeError):
            await manager.commit()
        assert manager.pending_operations == 0
        assert db.transactions == 1

    @pytest.mark.asyncio
    async def test_rollback_discards_buffer(self):
        manager = CallbackTransactionManager(CallbackDB(), _config())

        async def op(tx):
            pass

        manager.add_operation(op)
        await manager.rollback()
        assert manager.pending_operations == 0

    @pytest.mark.asyncio
    async def test_isolation_is_ignored(self):
        await CallbackTransactionManager(CallbackDB(), _config()).set_isolation_level(IsolationLevel.SERIALIZABLE)
