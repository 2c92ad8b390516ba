"""
Pre-flight validation of migration scripts.

Manifesto:
    Fail before touching the database. Every pending script is loaded and
    inspected (file exists, imports, exposes exactly one migration class,
    ``up``/``down`` are coroutine methods, ``down`` exists when the rollback
    strategy depends on it). Scripts that already ran are checked for
    integrity: a modified or vanished file means the recorded history no
    longer matches the code.

Architecture:
    ::

        MigrationValidationService      produces ValidationResult / issues
            ├── validate_one / validate_all       (pending scripts)
            ├── validate_migrated_file_integrity  (migrated scripts)
            └── validate_transaction_configuration
        ValidationOrchestrator          turns issues into ValidationError
            ├── errors      → raise
            ├── warnings    → log (raise when strict_validation)
            └── validate()  → standalone check (connection, scan, both passes)

Tags:
    validation, integrity, checksum, migrate-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
from pathlib import Path
from typing import Any, Protocol

from migrate_core.core.config import MigrationSettings
from migrate_core.core.errors import DatabaseConnectionError, ScriptLoadError, ValidationError
from migrate_core.core.hashing import compute_file_checksum
from migrate_core.core.logging import get_logger
from migrate_core.core.models import (
    DownMethodPolicy,
    MigrationScript,
    RollbackStrategy,
    TransactionMode,
    ValidationCode,
    ValidationIssue,
    ValidationIssueType,
    ValidationResult,
)
from migrate_core.core.protocols import (
    supports_callback_transactions,
    supports_imperative_transactions,
    supports_isolation_level,
)

logger = get_logger(__name__)


class MigrationValidator(Protocol):
    """Custom validator hook: return extra issues for a loaded script."""

    async def validate(self, script: MigrationScript, settings: MigrationSettings) -> list[ValidationIssue]: ...


def _error(code: ValidationCode | str, message: str, details: str | None = None) -> ValidationIssue:
    return ValidationIssue(ValidationIssueType.ERROR, getattr(code, "value", code), message, details)


def _warning(code: ValidationCode | str, message: str, details: str | None = None) -> ValidationIssue:
    return ValidationIssue(ValidationIssueType.WARNING, getattr(code, "value", code), message, details)


def effective_down_policy(settings: MigrationSettings) -> DownMethodPolicy:
    """Resolve ``AUTO`` from the rollback strategy."""
    policy = settings.down_method_policy
    if policy != DownMethodPolicy.AUTO:
        return policy
    if settings.rollback_strategy == RollbackStrategy.DOWN:
        return DownMethodPolicy.REQUIRED
    if settings.rollback_strategy == RollbackStrategy.BOTH:
        return DownMethodPolicy.RECOMMENDED
    return DownMethodPolicy.OPTIONAL


# =============================================================================
# SERVICE
# =============================================================================


class MigrationValidationService:
    """Produces validation issues; never raises for script problems."""

    def __init__(self, settings: MigrationSettings, registry: Any, validators: list[MigrationValidator] | None = None):
        self.settings = settings
        self.registry = registry
        self.validators = list(validators or [])

    async def validate_all(self, scripts: list[MigrationScript]) -> list[ValidationResult]:
        return [await self.validate_one(script) for script in scripts]

    async def validate_one(self, script: MigrationScript) -> ValidationResult:
        issues: list[ValidationIssue] = []

        await self._validate_structure(script, issues)
        self._validate_interface(script, issues)
        self._validate_down_method(script, issues)

        if not any(i.is_error for i in issues):
            for validator in self.validators:
                try:
                    issues.extend(await validator.validate(script, self.settings))
                except Exception as e:
                    issues.append(
                        _error(
                            ValidationCode.CUSTOM_VALIDATION_FAILED,
                            f"Custom validator {type(validator).__name__} raised: {e}",
                        )
                    )

        return ValidationResult(script=script, issues=issues)

    async def _validate_structure(self, script: MigrationScript, issues: list[ValidationIssue]) -> None:
        if not Path(script.filepath).exists():
            issues.append(_error(ValidationCode.FILE_NOT_FOUND, "Migration script file not found", script.filepath))
            return
        try:
            await script.init(self.registry)
        except ScriptLoadError as e:
            issues.append(_error(e.code, str(e), script.filepath))
        except Exception as e:
            issues.append(_error(ValidationCode.IMPORT_FAILED, "Failed to load migration script", str(e)))

    @staticmethod
    def _validate_interface(script: MigrationScript, issues: list[ValidationIssue]) -> None:
        runnable = script.script
        if runnable is None:
            return

        up = getattr(runnable, "up", None)
        if up is None:
            issues.append(_error(ValidationCode.MISSING_UP_METHOD, "Migration script is missing required up() method", script.name))
            return
        if not callable(up):
            issues.append(_error(ValidationCode.INVALID_UP_SIGNATURE, "up() must be a method", f"Found type: {type(up).__name__}"))
            return
        if not inspect.iscoroutinefunction(up):
            issues.append(_error(ValidationCode.UP_NOT_COROUTINE, "up() must be declared with async def", script.name))

        down = getattr(runnable, "down", None)
        if down is None:
            return
        if not callable(down):
            issues.append(
                _error(ValidationCode.INVALID_DOWN_SIGNATURE, "down() must be a method", f"Found type: {type(down).__name__}")
            )
        elif not inspect.iscoroutinefunction(down):
            issues.append(_error(ValidationCode.DOWN_NOT_COROUTINE, "down() must be declared with async def", script.name))

    def _validate_down_method(self, script: MigrationScript, issues: list[ValidationIssue]) -> None:
        if script.script is None or script.has_down:
            return

        policy = effective_down_policy(self.settings)
        if policy == DownMethodPolicy.REQUIRED:
            issues.append(
                _error(
                    ValidationCode.MISSING_DOWN_WITH_DOWN_STRATEGY,
                    "Migration is missing required down() method",
                    f"Rollback strategy is {self.settings.rollback_strategy.value}, which needs down() for rollback",
                )
            )
        elif policy == DownMethodPolicy.RECOMMENDED:
            issues.append(
                _warning(
                    ValidationCode.MISSING_DOWN_WITH_BOTH_STRATEGY,
                    "Migration is missing recommended down() method",
                    "Add down() to enable fast rollback; backup restore will be used as fallback",
                )
            )

    def _integrity_issue(self, script: MigrationScript) -> ValidationIssue | None:
        if not Path(script.filepath).exists():
            if self.settings.validate_migrated_files_location:
                return _error(
                    ValidationCode.MIGRATED_FILE_MISSING,
                    f"Previously executed migration file is missing: {script.name}",
                    f"Expected at: {script.filepath}",
                )
            logger.warning("validation.migrated_file_missing", script=script.name, path=script.filepath)
            return None

        if not script.checksum:
            return None

        current = compute_file_checksum(script.filepath, self.settings.checksum_algorithm)
        if current != script.checksum:
            return _error(
                ValidationCode.MIGRATED_FILE_CHECKSUM_MISMATCH,
                f"Migration file has been modified after execution: {script.name}",
                f"Expected checksum: {script.checksum}, current: {current}",
            )
        return None

    async def validate_migrated_file_integrity(self, migrated: list[MigrationScript]) -> list[ValidationResult]:
        """One result per already-executed script whose file is missing or changed."""
        results: list[ValidationResult] = []
        for script in migrated:
            issue = self._integrity_issue(script)
            if issue is not None:
                results.append(ValidationResult(script=script, issues=[issue]))
        return results

    def validate_transaction_configuration(self, db: Any, scripts: list[MigrationScript]) -> list[ValidationIssue]:
        config = self.settings.transaction
        if config.mode == TransactionMode.NONE or not scripts:
            return []

        issues: list[ValidationIssue] = []
        imperative = supports_imperative_transactions(db)
        if not imperative and not supports_callback_transactions(db):
            issues.append(
                _warning(
                    ValidationCode.TRANSACTIONS_UNSUPPORTED,
                    f"Transaction mode {config.mode.value} requested but the database handle has no transaction support",
                    "Migrations will run without automatic transactions",
                )
            )
        elif config.isolation is not None and not (imperative and supports_isolation_level(db)):
            issues.append(
                _warning(
                    ValidationCode.ISOLATION_UNSUPPORTED,
                    f"Isolation level {config.isolation.value} cannot be applied by this database handle",
                )
            )
        return issues


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class ValidationOrchestrator:
    """Applies error / warning / strict semantics on top of the service."""

    def __init__(
        self,
        service: MigrationValidationService,
        settings: MigrationSettings,
        handler: Any = None,
        scanner: Any = None,
    ):
        self.service = service
        self.settings = settings
        self.handler = handler
        self.scanner = scanner

    async def validate_migrations(self, scripts: list[MigrationScript]) -> list[ValidationResult]:
        if not scripts:
            return []

        logger.info("validation.pending_started", scripts=len(scripts))
        results = await self.service.validate_all(scripts)

        with_errors = [r for r in results if not r.valid]
        with_warnings = [r for r in results if r.valid and r.warnings]

        if with_errors:
            self._log_issues(with_errors, ValidationIssueType.ERROR)
            raise ValidationError("Pending migration validation failed", with_errors)

        if with_warnings:
            self._log_issues(with_warnings, ValidationIssueType.WARNING)
            if self.settings.strict_validation:
                raise ValidationError("Strict validation: warnings treated as errors", with_warnings)

        logger.info("validation.pending_passed", scripts=len(scripts))
        return results

    async def validate_migrated_file_integrity(self, migrated: list[MigrationScript]) -> None:
        if not migrated:
            return
        results = await self.service.validate_migrated_file_integrity(migrated)
        if not results:
            logger.info("validation.integrity_passed", scripts=len(migrated))
            return

        self._log_issues(results, ValidationIssueType.ERROR)
        raise ValidationError("Migration file integrity check failed", results)

    async def validate_transaction_configuration(self, scripts: list[MigrationScript]) -> None:
        issues = self.service.validate_transaction_configuration(self.handler.db, scripts)
        if not issues:
            return

        results = [ValidationResult(script=None, issues=[issue]) for issue in issues]
        errors = [r for r in results if not r.valid]
        self._log_issues(results, ValidationIssueType.WARNING)
        self._log_issues(errors, ValidationIssueType.ERROR)
        if errors:
            raise ValidationError("Transaction configuration validation failed", errors)

    async def validate(self) -> list[ValidationResult]:
        """Standalone validation: connection, tracking store, pending and migrated."""
        if not await self.handler.db.check_connection():
            raise DatabaseConnectionError("Database connection check failed").with_context(operation="validate")

        await self.handler.schema_version.init()
        scripts = await self.scanner.scan()

        results: list[ValidationResult] = []
        if self.settings.validate_before_run:
            results = await self.validate_migrations(scripts.pending)
        if self.settings.validate_migrated_files:
            await self.validate_migrated_file_integrity(scripts.migrated)

        logger.info("validation.passed", pending=len(scripts.pending), migrated=len(scripts.migrated))
        return results

    @staticmethod
    def _log_issues(results: list[ValidationResult], level: ValidationIssueType) -> None:
        log = logger.error if level == ValidationIssueType.ERROR else logger.warning
        for result in results:
            selected = result.errors if level == ValidationIssueType.ERROR else result.warnings
            for issue in selected:
                log(
                    "validation.issue",
                    script=result.script.name if result.script else None,
                    code=issue.code,
                    message=issue.message,
                    details=issue.details,
                )
