"""Validated, cached configuration for migrate-core.

Quick start::

    from migrate_core.core.config import get_settings

    settings = get_settings()
    print(settings.transaction.mode)   # TransactionMode.PER_MIGRATION
    print(settings.locking.timeout)    # 600.0

Guardrails:
    ❌ Parsing env vars ad-hoc in each module
    ✅ ``get_settings().locking`` from the cached singleton

Tags:
    migrate-core, configuration, settings, pydantic

Doc-Types:
    package-overview
"""

from .settings import (
    BackupConfig,
    LockingConfig,
    MigrationSettings,
    TransactionConfig,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "BackupConfig",
    "LockingConfig",
    "MigrationSettings",
    "TransactionConfig",
    "clear_settings_cache",
    "get_settings",
]
