"""
CLI: ``migrate-core backup``: manual snapshots.
"""

from __future__ import annotations

import typer

from migrate_core.cli.utils import console, fail, open_executor, run
from migrate_core.core.errors import MigrationCoreError

app = typer.Typer(no_args_is_help=True)


@app.command()
def create(
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Write a backup file and print its path."""
    with open_executor(database, env_file=env_file) as executor:
        try:
            path = run(executor.create_backup())
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e

    if json_out:
        console.print_json(data={"success": True, "path": path})
    else:
        console.print(f"[green]✓[/green] Backup written to {path}")


@app.command()
def restore(
    path: str = typer.Argument(..., help="Backup file to restore"),
    database: str | None = typer.Option(None, "--database", "-d", envvar="MIGRATE_DATABASE"),
    env_file: str | None = typer.Option(None, "--env-file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Replace the database contents with PATH."""
    with open_executor(database, env_file=env_file) as executor:
        try:
            run(executor.restore_backup(path))
        except MigrationCoreError as e:
            raise fail(e, as_json=json_out) from e

    if json_out:
        console.print_json(data={"success": True, "path": path})
    else:
        console.print(f"[green]✓[/green] Restored from {path}")
