"""Distributed migration lock: orchestration protocol and hooks."""

from .hooks import LockingHooks
from .orchestrator import LockingOrchestrator, generate_executor_id

__all__ = [
    "LockingHooks",
    "LockingOrchestrator",
    "generate_executor_id",
]
