"""
CLI utility helpers: executor construction, exit codes and output.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Coroutine, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from migrate_core.adapters.sqlite import SqliteHandler
from migrate_core.core.config import MigrationSettings, get_settings
from migrate_core.core.errors import LockError, MigrationCoreError, ValidationError
from migrate_core.core.logging import configure_logging
from migrate_core.core.models import MigrationResult, ScriptSet
from migrate_core.executor import MigrationExecutor

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

EXIT_OK = 0
EXIT_MIGRATION_FAILED = 1
EXIT_VALIDATION_FAILED = 2
EXIT_LOCK_FAILED = 3

DEFAULT_DATABASE = "migrate.db"


# ── Executor helpers ─────────────────────────────────────────────────────


def load_settings(folder: str | None = None, env_file: str | None = None) -> MigrationSettings:
    settings = get_settings(env_file=env_file)
    if folder:
        settings = settings.model_copy(update={"folder": folder})
    return settings


@contextmanager
def open_executor(
    database: str | None,
    folder: str | None = None,
    env_file: str | None = None,
) -> Iterator[MigrationExecutor]:
    """Build a ``MigrationExecutor`` on the SQLite reference handler."""
    settings = load_settings(folder, env_file)
    configure_logging(level=settings.log_level, json_format=settings.json_logs, stream=sys.stderr)

    handler = SqliteHandler.from_settings(database or DEFAULT_DATABASE, settings)
    try:
        yield MigrationExecutor(handler, settings)
    finally:
        handler.close()


def run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def exit_code_for(error: BaseException) -> int:
    if isinstance(error, LockError):
        return EXIT_LOCK_FAILED
    if isinstance(error, ValidationError):
        return EXIT_VALIDATION_FAILED
    return EXIT_MIGRATION_FAILED


def fail(error: BaseException, *, as_json: bool = False) -> typer.Exit:
    """Report ``error`` and return the ``typer.Exit`` to raise."""
    if as_json:
        payload = error.to_dict() if isinstance(error, MigrationCoreError) else {"message": str(error)}
        console.print_json(json.dumps({"success": False, "error": payload}, default=str))
    else:
        name = type(error).__name__
        err_console.print(f"[bold red]Error[/bold red] ({name}): {error}")
        if isinstance(error, ValidationError):
            for result in error.results:
                script = result.script.name if result.script else "-"
                for issue in result.issues:
                    err_console.print(f"  [yellow]{script}[/yellow] {issue.code}: {issue.message}")
    return typer.Exit(code=exit_code_for(error))


# ── Output helpers ───────────────────────────────────────────────────────


def _ms_to_text(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


def output_result(result: MigrationResult, *, as_json: bool = False, title: str = "") -> None:
    """Render a ``MigrationResult``; exits non-zero when it failed."""
    if as_json:
        console.print_json(json.dumps(result.to_dict(), default=str))
    elif result.success:
        if not result.executed:
            console.print("[dim]Nothing to do.[/dim]")
        else:
            table = Table(title=title or None)
            table.add_column("Migration", style="cyan")
            table.add_column("Timestamp")
            table.add_column("Duration (s)", justify="right")
            table.add_column("Dry run")
            for script in result.executed:
                duration = script.duration_seconds
                table.add_row(
                    script.name,
                    str(script.timestamp),
                    "-" if duration is None else f"{duration:.3f}",
                    "yes" if script.dry_run else "",
                )
            console.print(table)

    if not result.success:
        error = result.errors[0] if result.errors else RuntimeError("migration failed")
        if as_json:
            raise typer.Exit(code=exit_code_for(error))
        raise fail(error)


def output_scripts(scripts: ScriptSet, *, as_json: bool = False) -> None:
    rows: list[tuple[str, Any]] = [("migrated", s) for s in scripts.migrated]
    rows += [("pending", s) for s in scripts.pending]
    rows += [("ignored", s) for s in scripts.ignored]
    rows.sort(key=lambda r: r[1].timestamp)

    if as_json:
        payload = [dict(s.to_dict(), status=status) for status, s in rows]
        console.print_json(json.dumps(payload, default=str))
        return

    if not rows:
        console.print("[dim]No migrations found.[/dim]")
        return

    styles = {"migrated": "green", "pending": "yellow", "ignored": "red"}
    table = Table(title="Migrations")
    table.add_column("Timestamp")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Applied at")
    table.add_column("By")
    for status, script in rows:
        table.add_row(
            str(script.timestamp),
            script.name,
            f"[{styles[status]}]{status}[/{styles[status]}]",
            _ms_to_text(script.finished_at),
            script.username or "-",
        )
    console.print(table)


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    table = Table(title=title or None, show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(str(key), "-" if value is None else str(value))
    console.print(table)
