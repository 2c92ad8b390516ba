"""Tests for the migrate-core Typer CLI."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest
import structlog
from typer.testing import CliRunner

from migrate_core.adapters.sqlite import SqliteHandler
from migrate_core.cli.app import app
from migrate_core.cli.utils import EXIT_LOCK_FAILED, EXIT_MIGRATION_FAILED, EXIT_VALIDATION_FAILED, exit_code_for
from migrate_core.core.errors import ExecutionError, HybridMigrationError, LockAcquisitionError
from tests._support.fakes import write_py_migration

runner = CliRunner()

USERS = "V202401010000_create_users.py"


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Run from ``tmp_path`` with logging silenced."""

    def _quiet(**kwargs):
        structlog.configure(
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL),
        )

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("migrate_core.cli.utils.configure_logging", _quiet)
    yield
    structlog.reset_defaults()


@pytest.fixture
def project(tmp_path):
    folder = tmp_path / "migrations"
    write_py_migration(folder, USERS, "CREATE TABLE users (id INTEGER PRIMARY KEY)", "DROP TABLE users", cls="CreateUsers")
    write_py_migration(
        folder,
        "V202401010100_create_posts.py",
        "CREATE TABLE posts (id INTEGER PRIMARY KEY)",
        "DROP TABLE posts",
        cls="CreatePosts",
    )
    return ["--database", str(tmp_path / "app.db"), "--folder", str(folder)]


def invoke(*args: str):
    return runner.invoke(app, list(args))


def as_json(result):
    return json.loads(result.stdout)


def test_version():
    result = invoke("--version")
    assert result.exit_code == 0
    assert result.stdout.startswith("migrate-core ")


def test_no_args_shows_help():
    result = invoke()
    assert "migrate" in result.output


def test_migrate_json(project):
    result = invoke("migrate", *project, "--json")

    assert result.exit_code == 0, result.output
    payload = as_json(result)
    assert payload["success"] is True
    assert [s["name"] for s in payload["executed"]] == [USERS, "V202401010100_create_posts.py"]


def test_migrate_table_output(project):
    result = invoke("migrate", *project)
    assert result.exit_code == 0, result.output
    assert "Applied migrations" in result.stdout

    again = invoke("migrate", *project)
    assert again.exit_code == 0
    assert "Nothing to do" in again.stdout


def test_migrate_to_version(project):
    result = invoke("migrate", *project, "--to", "202401010000", "--json")

    assert result.exit_code == 0, result.output
    assert [s["name"] for s in as_json(result)["executed"]] == [USERS]


def test_dry_run(project, tmp_path):
    result = invoke("migrate", *project, "--dry-run", "--json")

    assert result.exit_code == 0, result.output
    assert all(s["dry_run"] for s in as_json(result)["executed"])

    listing = invoke("list", *project, "--json")
    assert {row["status"] for row in as_json(listing)} == {"pending"}


def test_list_after_migrate(project):
    invoke("migrate", *project, "--to", "202401010000")

    result = invoke("list", *project, "--json")

    assert result.exit_code == 0, result.output
    rows = {row["name"]: row["status"] for row in as_json(result)}
    assert rows == {USERS: "migrated", "V202401010100_create_posts.py": "pending"}


def test_down(project):
    invoke("migrate", *project)

    result = invoke("down", "202401010000", *project, "--json")

    assert result.exit_code == 0, result.output
    assert [s["name"] for s in as_json(result)["executed"]] == ["V202401010100_create_posts.py"]


def test_failed_migration_exit_code(project, tmp_path):
    write_py_migration(tmp_path / "migrations", "V202401010200_broken.py", "INSERT INTO nowhere VALUES (1)", cls="Broken")

    result = invoke("migrate", *project, "--json")

    assert result.exit_code == EXIT_MIGRATION_FAILED
    payload = as_json(result)
    assert payload["success"] is False
    assert "nowhere" in payload["errors"][0]


def test_validation_exit_code(project, tmp_path):
    (tmp_path / "migrations" / "V202401010200_empty.py").write_text("VALUE = 1\n", encoding="utf-8")

    result = invoke("validate", *project, "--json")

    assert result.exit_code == EXIT_VALIDATION_FAILED
    payload = as_json(result)
    assert payload["success"] is False
    assert payload["error"]["error_type"] == "ValidationError"


def test_validate_ok(project):
    result = invoke("validate", *project, "--json")

    assert result.exit_code == 0, result.output
    assert as_json(result) == {"success": True, "validated": 2, "warnings": 0}


def test_lock_held_exit_code(project, tmp_path):
    handler = SqliteHandler(str(tmp_path / "app.db"))
    try:
        asyncio.run(handler.locking_service.init_lock_storage())
        asyncio.run(handler.locking_service.acquire_lock("other-host-1"))
    finally:
        handler.close()

    result = invoke("migrate", *project, "--json")

    assert result.exit_code == EXIT_LOCK_FAILED
    assert "other-host-1" in as_json(result)["error"]["message"]


def test_lock_status_and_release(project, tmp_path):
    database = ["--database", str(tmp_path / "app.db")]
    status = invoke("lock", "status", *database, "--json")
    assert status.exit_code == 0, status.output
    assert as_json(status)["is_locked"] is False

    refused = invoke("lock", "release", *database)
    assert refused.exit_code == EXIT_MIGRATION_FAILED

    released = invoke("lock", "release", "--force", *database, "--json")
    assert released.exit_code == 0, released.output
    assert as_json(released)["success"] is True


def test_backup_create_and_restore(project, tmp_path):
    invoke("migrate", *project)
    database = ["--database", str(tmp_path / "app.db")]

    created = invoke("backup", "create", *database, "--json")
    assert created.exit_code == 0, created.output
    path = as_json(created)["path"]

    restored = invoke("backup", "restore", path, *database, "--json")
    assert restored.exit_code == 0, restored.output
    assert as_json(restored) == {"success": True, "path": path}


def test_restore_missing_file(tmp_path):
    result = invoke("backup", "restore", str(tmp_path / "nope.bkp"), "--database", str(tmp_path / "app.db"))
    assert result.exit_code == EXIT_MIGRATION_FAILED


@pytest.mark.parametrize(
    "error, code",
    [
        (LockAcquisitionError("held", holder="x"), EXIT_LOCK_FAILED),
        (HybridMigrationError("mixed", self_managed=["a"], engine_managed=["b"]), EXIT_VALIDATION_FAILED),
        (ExecutionError("boom"), EXIT_MIGRATION_FAILED),
        (RuntimeError("other"), EXIT_MIGRATION_FAILED),
    ],
)
def test_exit_code_for(error, code):
    assert exit_code_for(error) == code
