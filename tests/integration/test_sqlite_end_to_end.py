"""End-to-end runs of MigrationExecutor against a real SQLite file."""

from __future__ import annotations

from pathlib import Path

import pytest

from migrate_core.adapters.sqlite import SqliteHandler
from migrate_core.core.errors import ExecutionError, HybridMigrationError, ValidationError
from migrate_core.core.models import RollbackStrategy
from migrate_core.executor import MigrationExecutor
from tests._support.fakes import write_py_migration, write_sql_migration

USERS = "V202401010000_create_users.py"
POSTS = "V202401010100_create_posts.py"
BROKEN = "V202401010200_broken.py"


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "app.db")


@pytest.fixture
def open_executor(make_settings, db_path):
    handlers: list[SqliteHandler] = []

    def _open(**overrides) -> tuple[MigrationExecutor, SqliteHandler]:
        settings = make_settings(**overrides)
        handler = SqliteHandler.from_settings(db_path, settings)
        handlers.append(handler)
        return MigrationExecutor(handler, settings), handler

    yield _open
    for handler in handlers:
        handler.close()


def tables(handler: SqliteHandler) -> set[str]:
    rows = handler.db.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row["name"] for row in rows}


def write_users_and_posts(folder: Path) -> None:
    write_py_migration(
        folder,
        USERS,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
        "DROP TABLE users",
        cls="CreateUsers",
    )
    write_py_migration(
        folder,
        POSTS,
        "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id))",
        "DROP TABLE posts",
        cls="CreatePosts",
    )


@pytest.mark.asyncio
async def test_apply_then_nothing_to_do(open_executor, migrations_dir, tmp_path):
    write_users_and_posts(migrations_dir)
    executor, handler = open_executor()

    result = await executor.migrate()

    assert result.success is True
    assert [s.name for s in result.executed] == [USERS, POSTS]
    assert {"users", "posts", "schema_version", "migration_locks"} <= tables(handler)

    records = await handler.schema_version.get_all_executed()
    assert [r.timestamp for r in records] == [202401010000, 202401010100]
    assert all(r.checksum for r in records)
    assert all(r.finished_at >= r.started_at for r in records)
    assert records[0].result == "CreateUsers applied"

    # The backup taken before the run is removed on success.
    backups = tmp_path / "backups"
    assert not backups.exists() or list(backups.iterdir()) == []

    status = await executor.lock_status()
    assert status.is_locked is False

    again = await executor.migrate()
    assert again.success is True
    assert again.executed == ()
    assert len(again.migrated) == 2


@pytest.mark.asyncio
async def test_failure_restores_backup(open_executor, migrations_dir):
    write_users_and_posts(migrations_dir)
    executor, handler = open_executor()
    await executor.migrate()

    write_py_migration(migrations_dir, "V202401010150_create_tags.py", "CREATE TABLE tags (id INTEGER)", cls="CreateTags")
    write_py_migration(migrations_dir, BROKEN, "INSERT INTO missing_table VALUES (1)", cls="Broken")

    result = await executor.migrate()

    assert result.success is False
    assert isinstance(result.errors[0], ExecutionError)
    assert "tags" not in tables(handler)
    records = await handler.schema_version.get_all_executed()
    assert [r.timestamp for r in records] == [202401010000, 202401010100]
    assert (await executor.lock_status()).is_locked is False


@pytest.mark.asyncio
async def test_migrate_to_version_then_roll_back(open_executor, migrations_dir):
    write_users_and_posts(migrations_dir)
    executor, handler = open_executor()

    await executor.migrate_to_version(202401010000)
    assert "users" in tables(handler)
    assert "posts" not in tables(handler)

    await executor.migrate()
    result = await executor.rollback_to_version(202401010000)

    assert [s.name for s in result.executed] == [POSTS]
    assert "posts" not in tables(handler)
    assert "users" in tables(handler)
    records = await handler.schema_version.get_all_executed()
    assert [r.timestamp for r in records] == [202401010000]


@pytest.mark.asyncio
async def test_sql_migrations(open_executor, migrations_dir):
    write_sql_migration(
        migrations_dir,
        "V202402010000_items",
        "CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT);\nINSERT INTO items (label) VALUES ('a; b');\n",
        "DROP TABLE items;",
    )
    executor, handler = open_executor()

    result = await executor.migrate()

    assert result.success is True
    assert [s.name for s in result.executed] == ["V202402010000_items.up.sql"]
    assert handler.db.fetchall("SELECT label FROM items")[0]["label"] == "a; b"

    await executor.rollback_to_version(0)
    assert "items" not in tables(handler)


@pytest.mark.asyncio
async def test_mixed_batch_is_rejected(open_executor, migrations_dir):
    write_users_and_posts(migrations_dir)
    write_sql_migration(migrations_dir, "V202402010000_items", "CREATE TABLE items (id INTEGER);")
    executor, handler = open_executor()

    result = await executor.migrate()

    assert result.success is False
    assert isinstance(result.errors[0], HybridMigrationError)
    assert not {"users", "posts", "items"} & tables(handler)


@pytest.mark.asyncio
async def test_mixed_batch_allowed_without_transactions(open_executor, migrations_dir):
    write_users_and_posts(migrations_dir)
    write_sql_migration(migrations_dir, "V202402010000_items", "CREATE TABLE items (id INTEGER);")
    executor, handler = open_executor(transaction={"mode": "NONE", "retry_delay": 0.0})

    result = await executor.migrate()

    assert result.success is True
    assert {"users", "posts", "items"} <= tables(handler)


@pytest.mark.asyncio
async def test_dry_run_leaves_database_untouched(open_executor, migrations_dir):
    write_users_and_posts(migrations_dir)
    executor, handler = open_executor()

    result = await executor.migrate(dry_run=True)

    assert result.success is True
    assert [s.name for s in result.executed] == [USERS, POSTS]
    assert all(s.dry_run for s in result.executed)
    assert not {"users", "posts"} & tables(handler)
    assert await handler.schema_version.get_all_executed() == []


@pytest.mark.asyncio
async def test_before_migrate_script_runs_unrecorded(open_executor, migrations_dir):
    write_users_and_posts(migrations_dir)
    write_py_migration(
        migrations_dir,
        "beforeMigrate.py",
        "CREATE TABLE IF NOT EXISTS setup_marker (id INTEGER)",
        cls="Setup",
    )
    executor, handler = open_executor()

    await executor.migrate()

    assert "setup_marker" in tables(handler)
    records = await handler.schema_version.get_all_executed()
    assert [r.name for r in records] == [USERS, POSTS]


@pytest.mark.asyncio
async def test_invalid_pending_script(open_executor, migrations_dir):
    (migrations_dir / "V202401010000_empty.py").write_text("VALUE = 1\n", encoding="utf-8")
    executor, _ = open_executor()

    result = await executor.migrate()

    assert result.success is False
    assert isinstance(result.errors[0], ValidationError)
    with pytest.raises(ValidationError):
        await executor.validate()


@pytest.mark.asyncio
async def test_failed_commit_leaves_no_open_transaction(open_executor, migrations_dir, db_path):
    write_py_migration(
        migrations_dir,
        "V202403010000_parent_child.py",
        "CREATE TABLE parent (id INTEGER PRIMARY KEY); "
        "CREATE TABLE child (id INTEGER PRIMARY KEY, "
        "parent_id INTEGER REFERENCES parent(id) DEFERRABLE INITIALLY DEFERRED)",
        cls="ParentChild",
    )
    write_py_migration(
        migrations_dir,
        "V202403010100_orphan.py",
        "INSERT INTO child (id, parent_id) VALUES (1, 999)",
        cls="Orphan",
    )
    executor, handler = open_executor(rollback_strategy=RollbackStrategy.NONE)
    # Deferred foreign keys are only checked at COMMIT.
    handler.db.execute("PRAGMA foreign_keys = ON")

    result = await executor.migrate()

    assert result.success is False
    assert "FOREIGN KEY constraint failed" in str(result.errors[0])
    assert handler.db.in_transaction is False
    assert handler.db.fetchall("SELECT COUNT(*) AS n FROM child")[0]["n"] == 0
    records = await handler.schema_version.get_all_executed()
    assert [r.timestamp for r in records] == [202403010000]

    other = SqliteHandler(db_path)
    try:
        assert (await other.locking_service.get_lock_status()).is_locked is False
    finally:
        other.close()
