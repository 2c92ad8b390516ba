"""Distributed migration lock orchestration.

Manifesto:
    Two deploy pipelines must never migrate the same database at once.
    The database-side service gives an atomic insert-or-fail primitive; the
    orchestrator adds the protocol around it: clean up expired locks, try a
    bounded number of times, and *verify* ownership after every successful
    insert so a race between cleanup and insert cannot leave two executors
    believing they hold the lock. Locks carry a TTL so a crashed executor
    never blocks migrations forever.

Tags:
    locking, distributed-locks, TTL, concurrency, migrate-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import os
import socket
import uuid

from migrate_core.core.config import LockingConfig
from migrate_core.core.errors import LockOwnershipError
from migrate_core.core.logging import get_logger
from migrate_core.core.models import LockStatus
from migrate_core.core.protocols import LockingService
from migrate_core.locking.hooks import LockingHooks

logger = get_logger(__name__)


def generate_executor_id() -> str:
    """Unique identity for one workflow invocation: ``hostname-pid-uuid4``."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4()}"


class LockingOrchestrator:
    """Acquire / verify / release protocol over a ``LockingService``.

    Example:
        >>> orchestrator = LockingOrchestrator(service, LockingConfig(retry_attempts=3))
        >>> executor_id = generate_executor_id()
        >>> if await orchestrator.acquire_lock(executor_id):
        ...     try:
        ...         ...  # run migrations
        ...     finally:
        ...         await orchestrator.release_lock(executor_id)
    """

    def __init__(
        self,
        service: LockingService,
        config: LockingConfig | None = None,
        hooks: LockingHooks | None = None,
    ) -> None:
        self.service = service
        self.config = config or LockingConfig()
        self.hooks = hooks or LockingHooks()

    @property
    def max_attempts(self) -> int:
        return self.config.retry_attempts + 1

    # === Storage ===

    async def init_lock_storage(self) -> None:
        await self.service.init_lock_storage()

    async def ensure_lock_storage_accessible(self) -> bool:
        return await self.service.ensure_lock_storage_accessible()

    # === Acquire ===

    async def check_and_release_expired_lock(self) -> int:
        """Delete expired locks; returns how many were removed."""
        removed = await self.service.check_and_release_expired_lock()
        if removed:
            logger.info("lock.expired_released", count=removed)
        return removed

    async def acquire_lock(self, executor_id: str) -> bool:
        """Try up to ``retry_attempts + 1`` times; verify after each insert.

        Returns:
            True when the lock is held and verified, False when every
            attempt found the lock held by someone else.

        Raises:
            LockOwnershipError: insert succeeded but another executor owns the lock
        """
        await self.hooks.on_before_acquire_lock(executor_id, self.config.timeout)

        for attempt in range(self.max_attempts):
            try:
                await self.check_and_release_expired_lock()
                acquired = await self.service.acquire_lock(executor_id)
                if acquired:
                    if not await self.service.verify_lock_ownership(executor_id):
                        await self.hooks.on_ownership_verification_failed(executor_id)
                        raise LockOwnershipError(
                            "Lock ownership verification failed after acquire"
                        ).with_context(executor_id=executor_id, operation="lock")
                    logger.info("lock.acquired", executor_id=executor_id, attempt=attempt + 1)
                    await self.hooks.on_lock_acquired(executor_id)
                    return True
            except Exception as e:
                logger.error("lock.acquire_error", executor_id=executor_id, attempt=attempt + 1, error=str(e))
                await self.hooks.on_lock_error("acquire", e)
                raise

            if attempt < self.max_attempts - 1:
                logger.debug(
                    "lock.acquire_retry",
                    executor_id=executor_id,
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    delay_seconds=self.config.retry_delay,
                )
                await self.hooks.on_acquire_retry(executor_id, attempt + 1)
                await asyncio.sleep(self.config.retry_delay)

        holder = await self._current_holder()
        logger.warning(
            "lock.acquisition_failed",
            executor_id=executor_id,
            attempts=self.max_attempts,
            holder=holder,
        )
        await self.hooks.on_lock_acquisition_failed(executor_id, holder)
        return False

    async def _current_holder(self) -> str | None:
        status = await self.get_lock_status()
        return status.locked_by if status and status.is_locked else None

    # === Release ===

    async def release_lock(self, executor_id: str) -> None:
        """Release the lock if this executor still owns it."""
        await self.hooks.on_before_release_lock(executor_id)
        try:
            await self.service.release_lock(executor_id)
        except Exception as e:
            logger.error("lock.release_error", executor_id=executor_id, error=str(e))
            await self.hooks.on_lock_error("release", e)
            raise
        logger.info("lock.released", executor_id=executor_id)
        await self.hooks.on_lock_released(executor_id)

    async def force_release_lock(self) -> LockStatus | None:
        """Unconditionally delete the lock; returns the previous status."""
        previous = await self.get_lock_status()
        await self.service.force_release_lock()
        logger.warning(
            "lock.force_released",
            previous_holder=previous.locked_by if previous else None,
        )
        await self.hooks.on_force_release_lock(previous)
        return previous

    async def get_lock_status(self) -> LockStatus | None:
        return await self.service.get_lock_status()
