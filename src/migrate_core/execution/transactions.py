"""
Transaction managers: imperative and callback styles.

Manifesto:
    Databases expose transactions in two incompatible shapes. SQL drivers
    hand out explicit BEGIN / COMMIT / ROLLBACK; document stores such as
    Firestore or Spanner run a callback inside a provider transaction and
    may re-run it on contention. The engine supports both behind one
    small contract (``begin``, ``commit``, ``rollback``,
    ``set_isolation_level``) and picks the variant by looking at what the
    database handle can do. The two variants share no base class.

    Commit is the only retried step. Rollback is never retried: when it
    fails the database state is unknown and a human has to look.

Architecture:
    ::

        transaction_manager_for(handler, config)
            ├── handler.transaction_manager set → used as is
            └── otherwise                       → create_transaction_manager(handler.db, config)

        create_transaction_manager(db, config)
            ├── db has begin_transaction/commit/rollback → ImperativeTransactionManager
            ├── db has run_transaction(callback)          → CallbackTransactionManager
            └── neither                                   → None

        commit():
            RetryContext(ExponentialBackoff | ConstantBackoff | NoRetry,
                         retry_if=is_sql_retriable | is_callback_retriable)

Tags:
    transactions, retry, backoff, migrate-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from migrate_core.core.config import TransactionConfig
from migrate_core.core.logging import get_logger
from migrate_core.core.models import IsolationLevel
from migrate_core.core.protocols import (
    supports_callback_transactions,
    supports_imperative_transactions,
    supports_isolation_level,
)
from migrate_core.execution.retry import (
    RetryCallback,
    RetryContext,
    build_strategy,
    is_callback_retriable,
    is_sql_retriable,
)

logger = get_logger(__name__)

Operation = Callable[[Any], Awaitable[None]]


@runtime_checkable
class TransactionManager(Protocol):
    """Contract shared by both transaction styles."""

    async def begin(self) -> None: ...

    async def commit(self, on_retry: RetryCallback | None = None) -> None: ...

    async def rollback(self) -> None: ...

    async def set_isolation_level(self, level: IsolationLevel) -> None: ...


def _logging_retry(style: str, on_retry: RetryCallback | None) -> RetryCallback:
    async def _on_retry(attempt: int, error: Exception, delay: float) -> None:
        logger.warning(
            "transaction.commit_retry",
            style=style,
            attempt=attempt,
            delay_seconds=round(delay, 3),
            error=str(error),
        )
        if on_retry is not None:
            outcome = on_retry(attempt, error, delay)
            if inspect.isawaitable(outcome):
                await outcome

    return _on_retry


# =============================================================================
# IMPERATIVE (SQL)
# =============================================================================


class ImperativeTransactionManager:
    """BEGIN / COMMIT / ROLLBACK on a handle that exposes them directly."""

    style = "imperative"

    def __init__(self, db: Any, config: TransactionConfig):
        self.db = db
        self.config = config

    async def begin(self) -> None:
        if self.config.isolation is not None and supports_isolation_level(self.db):
            await self.set_isolation_level(self.config.isolation)
        await self.db.begin_transaction()
        logger.debug("transaction.begin", style=self.style)

    async def commit(self, on_retry: RetryCallback | None = None) -> None:
        strategy = build_strategy(
            self.config.retries,
            self.config.retry_delay,
            self.config.retry_backoff,
            retry_if=is_sql_retriable,
        )
        ctx = RetryContext(strategy, on_retry=_logging_retry(self.style, on_retry))
        try:
            await ctx.run_async(self.db.commit)
        except Exception as e:
            logger.error(
                "transaction.commit_failed",
                style=self.style,
                attempts=ctx.attempts,
                retriable=is_sql_retriable(e),
                error=str(e),
            )
            raise
        if ctx.attempts > 1:
            logger.info("transaction.commit_succeeded_after_retry", attempts=ctx.attempts)
        else:
            logger.debug("transaction.commit", style=self.style)

    async def rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.critical(
                "transaction.rollback_failed",
                style=self.style,
                error=str(e),
                hint="database state is unknown; manual intervention may be required",
            )
            raise
        logger.debug("transaction.rollback", style=self.style)

    async def set_isolation_level(self, level: IsolationLevel) -> None:
        if not supports_isolation_level(self.db):
            logger.warning("transaction.isolation_unsupported", level=level.value)
            return
        await self.db.set_isolation_level(level)


# =============================================================================
# CALLBACK (provider-managed)
# =============================================================================


class CallbackTransactionManager:
    """Buffers operations and runs them in one provider transaction on commit.

    Every operation is an ``async (tx) -> None`` callable. On a retriable
    error the provider callback is re-run with the whole buffer, so
    operations must be safe to repeat.
    """

    style = "callback"

    def __init__(self, db: Any, config: TransactionConfig):
        self.db = db
        self.config = config
        self._operations: list[Operation] = []

    @property
    def pending_operations(self) -> int:
        return len(self._operations)

    def add_operation(self, operation: Operation) -> None:
        self._operations.append(operation)

    async def begin(self) -> None:
        self._operations = []
        logger.debug("transaction.begin", style=self.style)

    async def commit(self, on_retry: RetryCallback | None = None) -> None:
        if not self._operations:
            logger.debug("transaction.commit_empty", style=self.style)
            return

        operations = list(self._operations)

        async def _callback(tx: Any) -> None:
            for operation in operations:
                await operation(tx)

        async def _run_batch() -> None:
            await self.db.run_transaction(_callback)

        strategy = build_strategy(
            self.config.retries,
            self.config.retry_delay,
            self.config.retry_backoff,
            retry_if=is_callback_retriable,
        )
        ctx = RetryContext(strategy, on_retry=_logging_retry(self.style, on_retry))
        try:
            await ctx.run_async(_run_batch)
        except Exception as e:
            logger.error(
                "transaction.commit_failed",
                style=self.style,
                attempts=ctx.attempts,
                operations=len(operations),
                error=str(e),
            )
            raise
        finally:
            self._operations = []

        logger.debug("transaction.commit", style=self.style, operations=len(operations), attempts=ctx.attempts)

    async def rollback(self) -> None:
        discarded = len(self._operations)
        self._operations = []
        logger.debug("transaction.rollback", style=self.style, discarded=discarded)

    async def set_isolation_level(self, level: IsolationLevel) -> None:
        logger.warning(
            "transaction.isolation_ignored",
            style=self.style,
            level=level.value,
            reason="provider controls isolation for callback transactions",
        )


# =============================================================================
# FACTORY
# =============================================================================


def create_transaction_manager(
    db: Any, config: TransactionConfig
) -> ImperativeTransactionManager | CallbackTransactionManager | None:
    """Pick the transaction manager matching the handle's capabilities."""
    if supports_imperative_transactions(db):
        return ImperativeTransactionManager(db, config)
    if supports_callback_transactions(db):
        return CallbackTransactionManager(db, config)
    logger.debug("transaction.unsupported", db=type(db).__name__)
    return None


def transaction_manager_for(handler: Any, config: TransactionConfig) -> Any | None:
    """The handler's own ``transaction_manager`` if it ships one, else detect."""
    manager = getattr(handler, "transaction_manager", None)
    if manager is not None:
        logger.debug("transaction.handler_supplied", manager=type(manager).__name__)
        return manager
    return create_transaction_manager(handler.db, config)
