"""
Core data model for migrate-core.

Manifesto:
    A migration run is described by a handful of plain records: the scripts
    found on disk and in the tracking store (``MigrationScript``), the
    snapshot that classifies them for one invocation (``ScriptSet``) and the
    terminal outcome (``MigrationResult``). They are dataclasses so they can be
    built cheaply in tests and logged with ``to_dict()``.

    Every ``MigrationScript.timestamp`` is unique within ``ScriptSet.all``;
    selection and ordering rest entirely on that invariant.

Tags:
    migrate-core, models, dataclasses, enums

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from migrate_core.core.protocols import LoaderRegistry, RunnableScript


# =============================================================================
# ENUMS
# =============================================================================


class TransactionMode(str, Enum):
    """Granularity of automatic transaction wrapping."""

    PER_MIGRATION = "PER_MIGRATION"
    PER_BATCH = "PER_BATCH"
    NONE = "NONE"


class IsolationLevel(str, Enum):
    """SQL transaction isolation levels."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class RollbackStrategy(str, Enum):
    """Recovery policy after a failed run."""

    BACKUP = "backup"
    DOWN = "down"
    BOTH = "both"
    NONE = "none"


class BackupMode(str, Enum):
    """Whether backups are created and/or restored automatically."""

    FULL = "full"
    CREATE_ONLY = "create_only"
    RESTORE_ONLY = "restore_only"
    MANUAL = "manual"


class DownMethodPolicy(str, Enum):
    """How strictly ``down()`` presence is validated."""

    AUTO = "AUTO"
    REQUIRED = "REQUIRED"
    RECOMMENDED = "RECOMMENDED"
    OPTIONAL = "OPTIONAL"


class ValidationIssueType(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"


class ValidationCode(str, Enum):
    """Machine-readable validation issue codes."""

    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    IMPORT_FAILED = "IMPORT_FAILED"
    NO_EXPORT = "NO_EXPORT"
    MULTIPLE_EXPORTS = "MULTIPLE_EXPORTS"
    NOT_INSTANTIABLE = "NOT_INSTANTIABLE"
    MISSING_UP_METHOD = "MISSING_UP_METHOD"
    INVALID_UP_SIGNATURE = "INVALID_UP_SIGNATURE"
    INVALID_DOWN_SIGNATURE = "INVALID_DOWN_SIGNATURE"
    UP_NOT_COROUTINE = "UP_NOT_COROUTINE"
    DOWN_NOT_COROUTINE = "DOWN_NOT_COROUTINE"
    MISSING_DOWN_WITH_DOWN_STRATEGY = "MISSING_DOWN_WITH_DOWN_STRATEGY"
    MISSING_DOWN_WITH_BOTH_STRATEGY = "MISSING_DOWN_WITH_BOTH_STRATEGY"
    CUSTOM_VALIDATION_FAILED = "CUSTOM_VALIDATION_FAILED"
    MIGRATED_FILE_MISSING = "MIGRATED_FILE_MISSING"
    MIGRATED_FILE_CHECKSUM_MISMATCH = "MIGRATED_FILE_CHECKSUM_MISMATCH"
    HYBRID_TRANSACTION_BOUNDARIES = "HYBRID_TRANSACTION_BOUNDARIES"
    TRANSACTIONS_UNSUPPORTED = "TRANSACTIONS_UNSUPPORTED"
    ISOLATION_UNSUPPORTED = "ISOLATION_UNSUPPORTED"


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Current time as epoch milliseconds (tracking-store format)."""
    return int(time.time() * 1000)


# =============================================================================
# MIGRATION SCRIPT
# =============================================================================


@dataclass
class MigrationInfo:
    """Execution record persisted to the schema-version tracking store."""

    name: str
    timestamp: int
    started_at: int | None = None
    finished_at: int | None = None
    username: str | None = None
    result: str | None = None
    checksum: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "timestamp": self.timestamp,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "username": self.username,
            "result": self.result,
            "checksum": self.checksum,
        }


@dataclass(eq=False)
class MigrationScript:
    """A uniquely timestamped, ordered unit of change.

    Created by the scanner (filesystem truth) or rebuilt from the tracking
    store (database truth). The executable unit is loaded lazily through a
    loader registry, once.

    Owned by the run that created it; never shared across concurrent runs.
    """

    name: str
    filepath: str
    timestamp: int
    script: RunnableScript | None = None
    started_at: int | None = None
    finished_at: int | None = None
    username: str | None = None
    result: str | None = None
    checksum: str | None = None
    dry_run: bool = False

    async def init(self, registry: LoaderRegistry) -> None:
        """Load the executable unit if it has not been loaded yet."""
        if self.script is None:
            self.script = await registry.load(self)

    @property
    def has_down(self) -> bool:
        return self.script is not None and callable(getattr(self.script, "down", None))

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is not None and self.finished_at is not None:
            return (self.finished_at - self.started_at) / 1000
        return None

    def to_info(self) -> MigrationInfo:
        return MigrationInfo(
            name=self.name,
            timestamp=self.timestamp,
            started_at=self.started_at,
            finished_at=self.finished_at,
            username=self.username,
            result=self.result,
            checksum=self.checksum,
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.to_info().to_dict()
        data["filepath"] = self.filepath
        data["dry_run"] = self.dry_run
        data["duration_seconds"] = self.duration_seconds
        return data

    def __repr__(self) -> str:
        return f"MigrationScript({self.name!r}, timestamp={self.timestamp})"


@dataclass
class ScriptSet:
    """Snapshot of migration state for one workflow invocation.

    ``all`` is filesystem truth, ``migrated`` is database truth, ``pending``
    and ``ignored`` are derived by the selector, and ``executed`` accumulates
    during the current run (including a script that failed mid-way).
    """

    all: list[MigrationScript] = field(default_factory=list)
    migrated: list[MigrationScript] = field(default_factory=list)
    pending: list[MigrationScript] = field(default_factory=list)
    ignored: list[MigrationScript] = field(default_factory=list)
    executed: list[MigrationScript] = field(default_factory=list)


@dataclass(frozen=True)
class MigrationResult:
    """Terminal output of one workflow invocation."""

    success: bool
    executed: tuple[MigrationScript, ...] = ()
    migrated: tuple[MigrationScript, ...] = ()
    ignored: tuple[MigrationScript, ...] = ()
    errors: tuple[Exception, ...] = ()

    @classmethod
    def from_scripts(
        cls,
        success: bool,
        scripts: ScriptSet,
        *,
        executed: list[MigrationScript] | None = None,
        errors: list[Exception] | None = None,
    ) -> MigrationResult:
        return cls(
            success=success,
            executed=tuple(scripts.executed if executed is None else executed),
            migrated=tuple(scripts.migrated),
            ignored=tuple(scripts.ignored),
            errors=tuple(errors or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "executed": [s.to_dict() for s in self.executed],
            "migrated": [s.name for s in self.migrated],
            "ignored": [s.name for s in self.ignored],
            "errors": [str(e) for e in self.errors],
        }


# =============================================================================
# LOCKING / TRANSACTIONS
# =============================================================================


@dataclass
class LockStatus:
    """Current state of the migration lock."""

    is_locked: bool
    locked_by: str | None = None
    locked_at: datetime | None = None
    expires_at: datetime | None = None
    process_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_locked": self.is_locked,
            "locked_by": self.locked_by,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "process_id": self.process_id,
        }


@dataclass
class TransactionContext:
    """Information handed to transaction hooks."""

    transaction_id: str
    mode: TransactionMode
    isolation: IsolationLevel | None = None
    migrations: list[MigrationScript] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    attempt: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# VALIDATION
# =============================================================================


@dataclass
class ValidationIssue:
    type: ValidationIssueType
    code: str
    message: str
    details: str | None = None

    @property
    def is_error(self) -> bool:
        return self.type == ValidationIssueType.ERROR


@dataclass
class ValidationResult:
    """Validation outcome for one script."""

    script: MigrationScript | None
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(i.is_error for i in self.issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.type == ValidationIssueType.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.type == ValidationIssueType.WARNING]


__all__ = [
    "TransactionMode",
    "IsolationLevel",
    "RollbackStrategy",
    "BackupMode",
    "DownMethodPolicy",
    "ValidationIssueType",
    "ValidationCode",
    "utcnow",
    "now_ms",
    "MigrationInfo",
    "MigrationScript",
    "ScriptSet",
    "MigrationResult",
    "LockStatus",
    "TransactionContext",
    "ValidationIssue",
    "ValidationResult",
]
