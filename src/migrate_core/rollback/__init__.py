"""Recovery: backup files, rollback strategies and rollback-to-version."""

from .backup import BackupService
from .manager import RollbackManager
from .service import RollbackService

__all__ = [
    "BackupService",
    "RollbackManager",
    "RollbackService",
]
