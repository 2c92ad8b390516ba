"""
CLI: ``migrate-core lock``: inspect or clear the migration lock.
"""

from __future__ import annotations

import typer

from migrate_core.cli.utils import EXIT_MIGRATION_FAILED, console, err_console, fail, open_executor, output_dict, run
from migrate_core.core.errors import MigrationCoreError
from migrate_core.core.models import LockStatus

app = typer.Typer(no_args_is_help=True)


def _status_dict(status: LockStatus | None) -> dict:
    return status.to_dict() if status is not None else {"is_locked": False}


@app.command()
def status(
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show who holds the migration lock."""
    with open_executor(database, env_file=env_file) as executor:
        try:
            current = run(executor.lock_status())
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e
    output_dict(_status_dict(current), as_json=json_out, title="Migration lock")


@app.command()
def release(
    force: bool = typer.Option(False, "--force", help="Delete the lock regardless of owner"),
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Force-release a stale lock (requires --force)."""
    if not force:
        err_console.print(
            "[bold red]Refusing[/bold red] to release a lock held by another executor without --force"
        )
        raise typer.Exit(code=EXIT_MIGRATION_FAILED)

    with open_executor(database, env_file=env_file) as executor:
        try:
            previous = run(executor.force_release_lock())
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e

    if json_out:
        console.print_json(data={"success": True, "previous": _status_dict(previous)})
    elif previous is not None and previous.is_locked:
        console.print(f"[green]✓[/green] Released lock held by {previous.locked_by}")
    else:
        console.print("[dim]No lock was held.[/dim]")
