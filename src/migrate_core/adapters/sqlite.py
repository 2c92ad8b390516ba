"""SQLite reference handler.

Wraps a ``sqlite3.Connection`` opened in autocommit mode
(``isolation_level=None``) so transaction boundaries are explicit
``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` statements driven by the engine.

Usage::

    from migrate_core.adapters.sqlite import SqliteHandler

    handler = SqliteHandler("app.db")
    await handler.db.execute_sql("CREATE TABLE t (id INTEGER)")
    handler.close()

Pieces:
    SqliteDatabase              imperative transactions, check_connection, execute_sql
    SqliteSchemaVersionStore    tracking table, one row per applied script
    SqliteBackup                ``iterdump()`` snapshot, drop-and-replay restore
    SqliteLockingService        single-row lock table with TTL
    SqliteHandler               bundles them for the engine
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta

from migrate_core.core.config import MigrationSettings
from migrate_core.core.logging import get_logger
from migrate_core.core.models import IsolationLevel, LockStatus, MigrationInfo

logger = get_logger(__name__)


def split_statements(sql: str) -> list[str]:
    """Split a script into complete statements using SQLite's own parser."""
    statements: list[str] = []
    buffer = ""
    *chunks, tail = sql.split(";")
    for chunk in chunks:
        buffer += chunk + ";"
        # A ';' inside a literal or comment leaves the buffer incomplete.
        if sqlite3.complete_statement(buffer):
            if buffer.strip() != ";":
                statements.append(buffer.strip())
            buffer = ""
    buffer += tail
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


# =============================================================================
# CONNECTION
# =============================================================================


class SqliteDatabase:
    """Connection handle passed to every ``up()`` / ``down()``."""

    def __init__(self, path: str = ":memory:", *, timeout: float = 5.0) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, timeout=timeout, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

    @property
    def raw(self) -> sqlite3.Connection:
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    async def check_connection(self) -> bool:
        try:
            self._conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as e:
            logger.warning("sqlite.connection_check_failed", path=self.path, error=str(e))
            return False
        return True

    async def begin_transaction(self) -> None:
        self._conn.execute("BEGIN")

    async def commit(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("COMMIT")

    async def rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    async def set_isolation_level(self, level: IsolationLevel) -> None:
        # SQLite transactions are serializable; only dirty reads can be toggled.
        uncommitted = 1 if level == IsolationLevel.READ_UNCOMMITTED else 0
        self._conn.execute(f"PRAGMA read_uncommitted = {uncommitted}")

    async def execute_sql(self, sql: str) -> None:
        for statement in split_statements(sql):
            self._conn.execute(statement)

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self._conn.execute(sql, params).fetchall()

    def close(self) -> None:
        self._conn.close()

    def __repr__(self) -> str:
        return f"SqliteDatabase({self.path!r})"


# =============================================================================
# TRACKING STORE
# =============================================================================


class SqliteSchemaVersionStore:
    def __init__(self, db: SqliteDatabase, table_name: str = "schema_version") -> None:
        self.db = db
        self.table_name = table_name

    async def init(self) -> None:
        self.db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                timestamp   INTEGER PRIMARY KEY,
                name        TEXT NOT NULL,
                started_at  INTEGER,
                finished_at INTEGER,
                username    TEXT,
                result      TEXT,
                checksum    TEXT
            )
            """
        )

    async def get_all_executed(self) -> list[MigrationInfo]:
        rows = self.db.fetchall(
            f"SELECT name, timestamp, started_at, finished_at, username, result, checksum "
            f"FROM {self.table_name} ORDER BY timestamp"
        )
        return [MigrationInfo(**dict(row)) for row in rows]

    async def save(self, info: MigrationInfo) -> None:
        self.db.execute(
            f"""
            INSERT OR REPLACE INTO {self.table_name}
                (timestamp, name, started_at, finished_at, username, result, checksum)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                info.timestamp,
                info.name,
                info.started_at,
                info.finished_at,
                info.username,
                info.result,
                info.checksum,
            ),
        )

    async def remove(self, timestamp: int) -> None:
        self.db.execute(f"DELETE FROM {self.table_name} WHERE timestamp = ?", (timestamp,))


# =============================================================================
# BACKUP
# =============================================================================


class SqliteBackup:
    """SQL-text snapshot of the whole database."""

    def __init__(self, db: SqliteDatabase) -> None:
        self.db = db

    async def backup(self) -> str:
        return "\n".join(self.db.raw.iterdump())

    async def restore(self, data: str) -> None:
        conn = self.db.raw
        objects = conn.execute(
            "SELECT type, name FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'"
        ).fetchall()

        foreign_keys = conn.execute("PRAGMA foreign_keys").fetchone()[0]
        conn.execute("PRAGMA foreign_keys = OFF")
        try:
            for row in objects:
                kind = "VIEW" if row["type"] == "view" else "TABLE"
                conn.execute(f'DROP {kind} IF EXISTS "{row["name"]}"')
            conn.executescript(data)
        finally:
            conn.execute(f"PRAGMA foreign_keys = {foreign_keys}")
        logger.info("sqlite.restored", objects_dropped=len(objects))


# =============================================================================
# LOCKING
# =============================================================================


class SqliteLockingService:
    """Single-row lock table; INSERT OR IGNORE gives insert-or-fail semantics.

    Example:
        >>> service = SqliteLockingService(db, ttl_seconds=600)
        >>> await service.init_lock_storage()
        >>> await service.acquire_lock("host-1-42-abcd")
        True
    """

    def __init__(self, db: SqliteDatabase, table_name: str = "migration_locks", ttl_seconds: float = 600.0) -> None:
        self.db = db
        self.table_name = table_name
        self.ttl_seconds = ttl_seconds

    async def init_lock_storage(self) -> None:
        self.db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id          INTEGER PRIMARY KEY CHECK (id = 1),
                locked_by   TEXT NOT NULL,
                locked_at   TEXT NOT NULL,
                expires_at  TEXT NOT NULL,
                process_id  TEXT
            )
            """
        )

    async def ensure_lock_storage_accessible(self) -> bool:
        try:
            self.db.execute(f"SELECT COUNT(*) FROM {self.table_name}").fetchone()
        except sqlite3.Error as e:
            logger.warning("lock.storage_inaccessible", table=self.table_name, error=str(e))
            return False
        return True

    async def acquire_lock(self, executor_id: str) -> bool:
        now = datetime.now(UTC)
        expires = now + timedelta(seconds=self.ttl_seconds)
        parts = executor_id.rsplit("-", 6)
        process_id = parts[1] if len(parts) == 7 else None
        cursor = self.db.execute(
            f"""
            INSERT OR IGNORE INTO {self.table_name} (id, locked_by, locked_at, expires_at, process_id)
            VALUES (1, ?, ?, ?, ?)
            """,
            (
                executor_id,
                now.isoformat(timespec="microseconds"),
                expires.isoformat(timespec="microseconds"),
                process_id,
            ),
        )
        return cursor.rowcount > 0

    async def verify_lock_ownership(self, executor_id: str) -> bool:
        row = self.db.execute(f"SELECT locked_by FROM {self.table_name} WHERE id = 1").fetchone()
        return row is not None and row["locked_by"] == executor_id

    async def release_lock(self, executor_id: str) -> None:
        self.db.execute(f"DELETE FROM {self.table_name} WHERE id = 1 AND locked_by = ?", (executor_id,))

    async def get_lock_status(self) -> LockStatus | None:
        row = self.db.execute(
            f"SELECT locked_by, locked_at, expires_at, process_id FROM {self.table_name} WHERE id = 1"
        ).fetchone()
        if row is None:
            return LockStatus(is_locked=False)
        return LockStatus(
            is_locked=True,
            locked_by=row["locked_by"],
            locked_at=datetime.fromisoformat(row["locked_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            process_id=row["process_id"],
        )

    async def force_release_lock(self) -> None:
        self.db.execute(f"DELETE FROM {self.table_name}")

    async def check_and_release_expired_lock(self) -> int:
        cursor = self.db.execute(
            f"DELETE FROM {self.table_name} WHERE expires_at < ?",
            (datetime.now(UTC).isoformat(timespec="microseconds"),),
        )
        return cursor.rowcount


# =============================================================================
# HANDLER
# =============================================================================


class SqliteHandler:
    """``DatabaseHandler`` for a single SQLite file (or ``:memory:``)."""

    def __init__(
        self,
        path: str = ":memory:",
        *,
        table_name: str = "schema_version",
        lock_table: str = "migration_locks",
        lock_ttl_seconds: float = 600.0,
    ) -> None:
        self.db = SqliteDatabase(path)
        self.schema_version = SqliteSchemaVersionStore(self.db, table_name)
        self.backup = SqliteBackup(self.db)
        self.locking_service = SqliteLockingService(self.db, lock_table, lock_ttl_seconds)

    @classmethod
    def from_settings(cls, path: str, settings: MigrationSettings) -> SqliteHandler:
        return cls(
            path,
            table_name=settings.table_name,
            lock_table=settings.locking.table_name,
            lock_ttl_seconds=settings.locking.timeout,
        )

    def get_name(self) -> str:
        return "sqlite"

    def get_version(self) -> str:
        return sqlite3.sqlite_version

    def close(self) -> None:
        self.db.close()
