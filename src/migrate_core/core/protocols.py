"""
Capability protocols for migrate-core.

The engine never depends on a concrete database. Adapters hand it a
``DatabaseHandler`` whose pieces are discovered by shape: a connection that
can check itself, optional transaction control (imperative *or* callback
style), an optional distributed lock, an optional backup facility and the
schema-version tracking store.

Manifesto:
    Protocols define contracts without inheritance. They enable:
    - **Decoupling:** Engine code depends on shape, not implementation
    - **Testability:** Any object matching the protocol works
    - **Portability:** Same engine on SQLite, PostgreSQL or a document store

    Capability detection is explicit: helper predicates below answer
    "can this handle do X?" and the engine picks a strategy from the answer.

Architecture:
    ::

        protocols.py
        ├── RunnableScript              up(db, info, handler) / down(...)
        ├── DatabaseHandle              check_connection()
        ├── ImperativeTransactionalDB   begin_transaction / commit / rollback
        ├── CallbackTransactionalDB     run_transaction(callback)
        ├── SqlExecutor                 execute_sql(sql)
        ├── SchemaVersionStore          init / get_all_executed / save / remove
        ├── BackupCapability            backup() -> str / restore(str)
        ├── LockingService              acquire / verify / release / status
        ├── DatabaseHandler             bundles the above
        ├── LoaderRegistry              load(script) -> RunnableScript
        └── MigrationScanner            scan() -> ScriptSet

Guardrails:
    ❌ DON'T: ``isinstance(db, sqlite3.Connection)`` in engine code
    ✅ DO: ``supports_imperative_transactions(db)``

    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep protocols pure contracts; implementations go in adapters

Tags:
    protocol, capability-detection, database, migrate-core, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from migrate_core.core.models import LockStatus, MigrationInfo, MigrationScript, ScriptSet


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------


@runtime_checkable
class RunnableScript(Protocol):
    """The executable unit of a migration.

    ``down`` is optional and therefore not part of the structural check.
    A script may also expose ``manages_own_transaction = True`` when it
    issues its own BEGIN/COMMIT.
    """

    async def up(self, db: Any, info: MigrationInfo, handler: DatabaseHandler) -> str | None: ...


# ---------------------------------------------------------------------------
# Database capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class DatabaseHandle(Protocol):
    """Minimal connection contract every adapter must provide."""

    async def check_connection(self) -> bool: ...


@runtime_checkable
class ImperativeTransactionalDB(Protocol):
    """Explicit BEGIN / COMMIT / ROLLBACK control (SQL style).

    ``set_isolation_level(level)`` is optional and detected with ``hasattr``.
    """

    async def begin_transaction(self) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


TransactionCallback = Callable[[Any], Awaitable[None]]


@runtime_checkable
class CallbackTransactionalDB(Protocol):
    """Provider-managed transactions (Firestore/Spanner style).

    The provider may invoke ``callback`` more than once on contention.
    """

    async def run_transaction(self, callback: TransactionCallback) -> Any: ...


@runtime_checkable
class SqlExecutor(Protocol):
    """Raw SQL execution, used by plain ``.sql`` migrations."""

    async def execute_sql(self, sql: str) -> None: ...


@runtime_checkable
class SchemaVersionStore(Protocol):
    """Tracking store recording which migrations have been applied."""

    async def init(self) -> None: ...

    async def get_all_executed(self) -> list[MigrationInfo]: ...

    async def save(self, info: MigrationInfo) -> None: ...

    async def remove(self, timestamp: int) -> None: ...


@runtime_checkable
class BackupCapability(Protocol):
    """Produce and restore a serialized snapshot of the database."""

    async def backup(self) -> str: ...

    async def restore(self, data: str) -> None: ...


@runtime_checkable
class LockingService(Protocol):
    """Database-side primitives of the distributed lock.

    ``acquire_lock`` must be atomic: at most one executor may succeed while a
    non-expired lock exists. ``release_lock`` deletes only when the caller
    still owns the lock.
    """

    async def init_lock_storage(self) -> None: ...

    async def ensure_lock_storage_accessible(self) -> bool: ...

    async def acquire_lock(self, executor_id: str) -> bool: ...

    async def verify_lock_ownership(self, executor_id: str) -> bool: ...

    async def release_lock(self, executor_id: str) -> None: ...

    async def get_lock_status(self) -> LockStatus | None: ...

    async def force_release_lock(self) -> None: ...

    async def check_and_release_expired_lock(self) -> int: ...


@runtime_checkable
class DatabaseHandler(Protocol):
    """Adapter bundle handed to the engine.

    Attributes:
        db: the connection handle passed to every ``up()`` / ``down()``
        schema_version: the tracking store
        backup: optional ``BackupCapability`` (``None`` when unsupported)
        locking_service: optional ``LockingService`` (``None`` when unsupported)
        transaction_manager: optional; when present it replaces capability
            detection on ``db``
    """

    db: Any
    schema_version: SchemaVersionStore
    backup: BackupCapability | None
    locking_service: LockingService | None

    def get_name(self) -> str: ...

    def get_version(self) -> str: ...


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@runtime_checkable
class LoaderRegistry(Protocol):
    async def load(self, script: MigrationScript) -> RunnableScript: ...


@runtime_checkable
class MigrationScanner(Protocol):
    async def scan(self) -> ScriptSet: ...

    async def find_before_migrate_script(self) -> MigrationScript | None: ...


# ---------------------------------------------------------------------------
# Capability detection
# ---------------------------------------------------------------------------


def supports_imperative_transactions(db: Any) -> bool:
    return isinstance(db, ImperativeTransactionalDB)


def supports_callback_transactions(db: Any) -> bool:
    return isinstance(db, CallbackTransactionalDB)


def supports_isolation_level(db: Any) -> bool:
    return callable(getattr(db, "set_isolation_level", None))


def supports_backup(handler: Any) -> bool:
    return getattr(handler, "backup", None) is not None


def supports_locking(handler: Any) -> bool:
    return getattr(handler, "locking_service", None) is not None


def supports_sql(db: Any) -> bool:
    return isinstance(db, SqlExecutor)


__all__ = [
    "RunnableScript",
    "DatabaseHandle",
    "ImperativeTransactionalDB",
    "CallbackTransactionalDB",
    "TransactionCallback",
    "SqlExecutor",
    "SchemaVersionStore",
    "BackupCapability",
    "LockingService",
    "DatabaseHandler",
    "LoaderRegistry",
    "MigrationScanner",
    "supports_imperative_transactions",
    "supports_callback_transactions",
    "supports_isolation_level",
    "supports_backup",
    "supports_locking",
    "supports_sql",
]
