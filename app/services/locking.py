import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Iterable, Optional, Protocol
from uuid import UUID
import logging

from app.core.config import settings
from app.core.exceptions import ConcurrencyConflict
from app.core.redis import RedisClient, redis_client


logger = logging.getLogger(__name__)


def lock_order(resource_ids: Iterable[UUID]) -> list[str]:
    """Distinct resource ids as strings, in the global acquisition order."""
    return sorted({str(r) for r in resource_ids})


class ResourceLockManager(Protocol):
    def hold(self, resource_ids: Iterable[UUID]) -> AsyncContextManager[None]: ...


class LocalResourceLockManager:
    """Per-resource asyncio locks, valid within a single process."""

    def __init__(self, wait_seconds: Optional[float] = None):
        self.wait_seconds = (
            settings.RESOURCE_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds
        )
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _acquire(self, key: str) -> asyncio.Lock:
        lock = self._lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
        except asyncio.TimeoutError as e:
            raise ConcurrencyConflict(
                f"Timed out waiting for resource {key}", {"resource_id": key}
            ) from e
        return lock

    @asynccontextmanager
    async def hold(self, resource_ids: Iterable[UUID]) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for key in lock_order(resource_ids):
                lock = await self._acquire(key)
                stack.callback(lock.release)
            yield


class RedisResourceLockManager:
    """Cross-process locks backed by redis-py's token lock."""

    def __init__(self, client: Optional[RedisClient] = None):
        self.client = client or redis_client

    @asynccontextmanager
    async def hold(self, resource_ids: Iterable[UUID]) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for key in lock_order(resource_ids):
                lock = await self.client.acquire_resource_lock(key)
                if lock is None:
                    raise ConcurrencyConflict(
                        f"Timed out waiting for resource {key}", {"resource_id": key}
                    )
                stack.push_async_callback(self.client.release_resource_lock, lock)
            yield


_local_manager: Optional[LocalResourceLockManager] = None


def get_lock_manager() -> ResourceLockManager:
    """Process-wide lock manager for the configured backend."""
    global _local_manager
    if settings.RESOURCE_LOCK_BACKEND == "redis":
        return RedisResourceLockManager()
    if _local_manager is None:
        _local_manager = LocalResourceLockManager()
    return _local_manager
