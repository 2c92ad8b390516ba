"""Database handlers shipped with migrate-core."""

from .sqlite import (
    SqliteBackup,
    SqliteDatabase,
    SqliteHandler,
    SqliteLockingService,
    SqliteSchemaVersionStore,
)

__all__ = [
    "SqliteBackup",
    "SqliteDatabase",
    "SqliteHandler",
    "SqliteLockingService",
    "SqliteSchemaVersionStore",
]
