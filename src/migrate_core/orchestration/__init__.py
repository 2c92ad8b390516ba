"""Workflow sequencing, validation, failure handling and reporting."""

from .error_handler import MigrationErrorHandler
from .reporting import LoggingReporter, Reporter
from .validation import (
    MigrationValidationService,
    MigrationValidator,
    ValidationOrchestrator,
    effective_down_policy,
)
from .workflow import MigrationWorkflowOrchestrator, manages_own_transaction

__all__ = [
    "MigrationErrorHandler",
    "LoggingReporter",
    "Reporter",
    "MigrationValidationService",
    "MigrationValidator",
    "ValidationOrchestrator",
    "effective_down_policy",
    "MigrationWorkflowOrchestrator",
    "manages_own_transaction",
]
