"""
Centralized settings for migrate-core.

Manifesto:
    One validated, cached settings object decides how a run behaves:
    which folder is scanned, how transactions wrap scripts, how the
    distributed lock is taken and what happens when something fails.
    Every knob can be set through ``MIGRATE_*`` environment variables,
    an ``.env`` file or constructor keyword arguments.

Nested sections use ``__`` as delimiter, e.g.
``MIGRATE_TRANSACTION__MODE=PER_BATCH`` or ``MIGRATE_LOCKING__TIMEOUT=120``.

Tags:
    migrate-core, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from migrate_core.core.models import (
    BackupMode,
    DownMethodPolicy,
    IsolationLevel,
    RollbackStrategy,
    TransactionMode,
)

_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

MAX_LOCK_TIMEOUT = 3600.0
MAX_LOCK_RETRY_ATTEMPTS = 100
MAX_LOCK_RETRY_DELAY = 60.0


# ── Sections ─────────────────────────────────────────────────────────────


class TransactionConfig(BaseModel):
    """Automatic transaction wrapping and commit retry policy.

    Durations are seconds.
    """

    mode: TransactionMode = Field(default=TransactionMode.PER_MIGRATION)
    isolation: IsolationLevel | None = Field(default=IsolationLevel.READ_COMMITTED)
    timeout: float = Field(default=30.0, gt=0)
    retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.1, ge=0)
    retry_backoff: bool = Field(default=True)


class LockingConfig(BaseModel):
    """Distributed migration lock settings.

    ``retry_attempts=0`` fails fast after one attempt; the total number of
    attempts is always ``retry_attempts + 1``.
    """

    enabled: bool = Field(default=True)
    timeout: float = Field(default=600.0)
    table_name: str = Field(default="migration_locks")
    retry_attempts: int = Field(default=0)
    retry_delay: float = Field(default=1.0)

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Lock timeout must be positive")
        if value > MAX_LOCK_TIMEOUT:
            raise ValueError(f"Lock timeout must not exceed {MAX_LOCK_TIMEOUT:g} seconds")
        return value

    @field_validator("retry_attempts")
    @classmethod
    def _check_retry_attempts(cls, value: int) -> int:
        if value < 0 or value > MAX_LOCK_RETRY_ATTEMPTS:
            raise ValueError(f"Lock retry_attempts must be between 0 and {MAX_LOCK_RETRY_ATTEMPTS}")
        return value

    @field_validator("retry_delay")
    @classmethod
    def _check_retry_delay(cls, value: float) -> float:
        if value < 0 or value > MAX_LOCK_RETRY_DELAY:
            raise ValueError(f"Lock retry_delay must be between 0 and {MAX_LOCK_RETRY_DELAY:g} seconds")
        return value

    @field_validator("table_name")
    @classmethod
    def _check_table_name(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError(f"Invalid lock table name: {value!r}")
        return value


class BackupConfig(BaseModel):
    """Backup file naming and lifecycle.

    File name: ``{folder}/{prefix}{custom}{-timestamp}{suffix}.{extension}``.
    """

    folder: str = Field(default="backups")
    prefix: str = Field(default="backup")
    custom: str = Field(default="")
    suffix: str = Field(default="")
    extension: str = Field(default="bkp")
    timestamp: bool = Field(default=True)
    timestamp_format: str = Field(default="%Y-%m-%d-%H-%M-%S")
    delete_backup: bool = Field(default=True)
    existing_backup_path: str | None = Field(default=None)

    def get_path(self, stamp: str | None = None) -> Path:
        """Build the backup file path; ``stamp`` is the formatted time."""
        name = f"{self.prefix}{self.custom}"
        if self.timestamp and stamp:
            name += f"-{stamp}"
        name += f"{self.suffix}.{self.extension.lstrip('.')}"
        return Path(self.folder) / name


# ── Root settings ────────────────────────────────────────────────────────


class MigrationSettings(BaseSettings):
    """migrate-core configuration.

    All fields can be set via ``MIGRATE_*`` environment variables (e.g.
    ``MIGRATE_FOLDER=./migrations``) or through an ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="MIGRATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Discovery ────────────────────────────────────────────────
    folder: str = Field(default="migrations")
    file_pattern: str = Field(default=r"^V(\d{12})_")
    recursive: bool = Field(default=False)
    before_migrate_name: str | None = Field(default="beforeMigrate")

    # ── Tracking ─────────────────────────────────────────────────
    table_name: str = Field(default="schema_version")
    checksum_algorithm: str = Field(default="sha256")

    # ── Run behaviour ────────────────────────────────────────────
    dry_run: bool = Field(default=False)
    rollback_strategy: RollbackStrategy = Field(default=RollbackStrategy.BACKUP)
    backup_mode: BackupMode = Field(default=BackupMode.FULL)
    down_method_policy: DownMethodPolicy = Field(default=DownMethodPolicy.AUTO)

    # ── Validation ───────────────────────────────────────────────
    validate_before_run: bool = Field(default=True)
    validate_migrated_files: bool = Field(default=True)
    validate_migrated_files_location: bool = Field(default=False)
    strict_validation: bool = Field(default=False)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    # ── Sections ─────────────────────────────────────────────────
    transaction: TransactionConfig = Field(default_factory=TransactionConfig)
    locking: LockingConfig = Field(default_factory=LockingConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)

    @field_validator("file_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            compiled = re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid file_pattern: {exc}") from exc
        if compiled.groups < 1:
            raise ValueError("file_pattern must capture the timestamp in group 1")
        return value

    @field_validator("table_name")
    @classmethod
    def _check_table_name(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError(f"Invalid table name: {value!r}")
        return value

    @field_validator("checksum_algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        value = value.lower()
        if value not in ("sha256", "md5"):
            raise ValueError("checksum_algorithm must be 'sha256' or 'md5'")
        return value

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, MigrationSettings] = {}


def get_settings(*, env_file: str | Path | None = None, _force_reload: bool = False) -> MigrationSettings:
    """Load, validate, and cache a :class:`MigrationSettings` instance."""
    cache_key = str(env_file or "")

    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file is not None:
        settings = MigrationSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = MigrationSettings()

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (for tests)."""
    _settings_cache.clear()
