"""
Structured logging for migrate-core.

Manifesto:
    A migration run is an audit trail: which executor held the lock, which
    scripts ran, how long each took and why recovery happened. Every module
    logs through structlog so the same events render as colored console
    output on a developer laptop and as JSON lines in a CI pipeline.

Architecture:
    ::

        configure_logging(level, json_format, service, stream)
            ↓
        structlog processor chain
          1. TimeStamper (iso, UTC)            optional
          2. merge_contextvars                 executor_id / operation of the run
          3. add_log_level / add_logger_name
          4. _add_service                      service.name
          5. _expand_errors                    exception values → error.* fields
          6. _ecs_fields                       JSON only: @timestamp, log.level, log.logger
          7. JSONRenderer | ConsoleRenderer
            ↓
        stdlib root handler on ``stream`` (stdout by default, stderr for the CLI)

Examples:
    >>> from migrate_core.core.logging import LogContext, configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=True)
    >>> logger = get_logger(__name__)
    >>> with LogContext(executor_id="host-42-ab12", operation="migrate"):
    ...     logger.info("migration.applied", script="V202401010000_users.py")

Tags:
    logging, structlog, observability, migrate-core
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from migrate_core.core.errors import MigrationCoreError

_SERVICE_NAME = "migrate-core"

_ECS_RENAMES = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
}


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _expand_errors(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Turn ``error=<exception>`` into flat, serialisable fields."""
    error = event_dict.get("error")
    if not isinstance(error, BaseException):
        return event_dict

    event_dict["error"] = str(error)
    event_dict.setdefault("error_type", type(error).__name__)
    if isinstance(error, MigrationCoreError):
        event_dict.setdefault("category", error.category.value)
        event_dict.setdefault("retryable", error.retryable)
    return event_dict


def _ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for source, target in _ECS_RENAMES.items():
        if source in event_dict:
            event_dict[target] = event_dict.pop(source)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "migrate-core",
    add_timestamp: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the stdlib root handler.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: True for JSON lines, False for console, None to pick
            JSON when stdout is not a terminal
        service: value of the ``service.name`` field
        add_timestamp: include an ISO timestamp
        stream: where log lines go (default: stdout)
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    numeric_level = getattr(logging, level.upper())
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        _expand_errors,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            _ecs_fields,
            structlog.processors.JSONRenderer(default=str),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=(stream or sys.stdout).isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=numeric_level,
        force=True,
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**fields: Any) -> None:
    """Bind fields to every log line of the current task."""
    structlog.contextvars.bind_contextvars(**fields)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for a block, restoring any values they shadowed.

    Works as a sync or async context manager::

        async with LogContext(executor_id=executor_id, operation="migrate"):
            logger.info("workflow.started")
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._shadowed: dict[str, Any] = {}

    def _enter(self) -> LogContext:
        current = structlog.contextvars.get_contextvars()
        self._shadowed = {k: current[k] for k in self._fields if k in current}
        bind_context(**self._fields)
        return self

    def _exit(self) -> None:
        unbind_context(*self._fields)
        if self._shadowed:
            bind_context(**self._shadowed)

    def __enter__(self) -> LogContext:
        return self._enter()

    def __exit__(self, *exc_info: Any) -> None:
        self._exit()

    async def __aenter__(self) -> LogContext:
        return self._enter()

    async def __aexit__(self, *exc_info: Any) -> None:
        self._exit()


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
