"""
Root Typer application for the migrate-core CLI.

Exit codes:
    0  success
    1  migration (or rollback) failure
    2  validation failure
    3  lock could not be acquired
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from migrate_core.cli.utils import (
    console,
    fail,
    open_executor,
    output_result,
    output_scripts,
    run,
)
from migrate_core.core.errors import MigrationCoreError

app = Typer(
    name="migrate-core",
    help="migrate-core: ordered, transactional, lock-protected schema migrations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("migrate-core")
        except PackageNotFoundError:
            from migrate_core import __version__ as v
        typer.echo(f"migrate-core {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """migrate-core CLI: apply, roll back and inspect migrations."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def migrate(
    to: int | None = typer.Option(None, "--to", help="Apply pending migrations up to this version"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Run inside a transaction that is rolled back"),
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE", help="SQLite path"),
    folder: str | None = typer.Option(None, "--folder", "-f", help="Migrations folder"),
    env_file: str | None = typer.Option(None, "--env-file", help="Settings .env file"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Apply pending migrations."""
    with open_executor(database, folder, env_file) as executor:
        try:
            if to is None:
                result = run(executor.migrate(dry_run=dry_run or None))
            else:
                result = run(executor.migrate_to_version(to, dry_run=dry_run or None))
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e
        output_result(result, as_json=json_out, title="Applied migrations")


@app.command()
def down(
    target: int = typer.Argument(..., help="Roll back every migration newer than this version"),
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    folder: str | None = typer.Option(None, "--folder", "-f"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Roll back to TARGET by running down() newest first."""
    with open_executor(database, folder, env_file) as executor:
        try:
            result = run(executor.rollback_to_version(target))
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e
        output_result(result, as_json=json_out, title="Reverted migrations")


@app.command("list")
def list_migrations(
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    folder: str | None = typer.Option(None, "--folder", "-f"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show migrated, pending and ignored migrations."""
    with open_executor(database, folder, env_file) as executor:
        try:
            scripts = run(executor.list_migrations())
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e
        output_scripts(scripts, as_json=json_out)


@app.command()
def validate(
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    folder: str | None = typer.Option(None, "--folder", "-f"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate pending scripts and the integrity of applied ones."""
    with open_executor(database, folder, env_file) as executor:
        try:
            results = run(executor.validate())
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e

    warnings = sum(len(r.warnings) for r in results)
    if json_out:
        console.print_json(data={"success": True, "validated": len(results), "warnings": warnings})
    else:
        console.print(f"[green]✓[/green] {len(results)} pending migration(s) valid, {warnings} warning(s)")


# ── Sub-command registration ─────────────────────────────────────────────

from migrate_core.cli.backup import app as backup_app  # noqa: E402
from migrate_core.cli.lock import app as lock_app  # noqa: E402

app.add_typer(backup_app, name="backup", help="Create and restore database backups.")
app.add_typer(lock_app, name="lock", help="Inspect and release the migration lock.")
