"""Lock lifecycle hooks. Override what you need; every method is a no-op."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from migrate_core.core.models import LockStatus


class LockingHooks:
    async def on_before_acquire_lock(self, executor_id: str, timeout: float) -> None:
        pass

    async def on_lock_acquired(self, executor_id: str) -> None:
        pass

    async def on_lock_acquisition_failed(self, executor_id: str, holder: str | None) -> None:
        pass

    async def on_acquire_retry(self, executor_id: str, attempt: int) -> None:
        pass

    async def on_ownership_verification_failed(self, executor_id: str) -> None:
        pass

    async def on_before_release_lock(self, executor_id: str) -> None:
        pass

    async def on_lock_released(self, executor_id: str) -> None:
        pass

    async def on_force_release_lock(self, status: LockStatus | None) -> None:
        pass

    async def on_lock_error(self, operation: str, error: Exception) -> None:
        pass
