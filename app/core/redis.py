from typing import Optional

import redis.asyncio as redis
import structlog
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from app.core.config import settings

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client used for cross-process resource locks."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis_pool = None

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
                socket_keepalive_options={},
            )

            # Test connection
            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established", url=self.url)

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    @staticmethod
    def resource_lock_key(resource_id: str) -> str:
        return f"resource_lock:{resource_id}"

    async def acquire_resource_lock(
        self,
        resource_id: str,
        ttl_seconds: Optional[int] = None,
        wait_seconds: Optional[float] = None,
    ) -> Optional[Lock]:
        """Acquire the booking lock for a resource, or None if the wait expires."""
        client = await self.get_redis()
        lock = client.lock(
            self.resource_lock_key(resource_id),
            timeout=ttl_seconds or settings.RESOURCE_LOCK_TTL_SECONDS,
            blocking_timeout=(
                wait_seconds
                if wait_seconds is not None
                else settings.RESOURCE_LOCK_WAIT_SECONDS
            ),
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("Resource lock wait expired", resource_id=resource_id)
            return None
        return lock

    async def release_resource_lock(self, lock: Lock) -> bool:
        """Release a lock taken by acquire_resource_lock."""
        try:
            await lock.release()
            return True
        except LockError as e:
            # Lock expired and may already belong to another holder
            logger.warning("Resource lock release failed", key=lock.name, exc_info=e)
            return False


# Global Redis client instance
redis_client = RedisClient()
