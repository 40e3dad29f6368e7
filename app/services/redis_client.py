# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_SCHEDULE_FROM_INFLIGHT = """
if redis.call('LREM', KEYS[1], 0, ARGV[1]) > 0 then
    redis.call('ZADD', KEYS[2], ARGV[3], ARGV[2])
    return 1
end
return 0
"""


class FastRedisClient:
    """Pooled async Redis client used as job broker and contact document store."""

    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            pool_config = settings.get_redis_pool_config()
            logger.info("Attempting Redis connection", url_preview=self._url_preview())

            self.pool = ConnectionPool.from_url(
                self.redis_url,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                health_check_interval=30,
                decode_responses=True,  # Auto-decode strings
                **pool_config,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            # Test connection
            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info(
                "Fast Redis client initialized successfully",
                max_connections=pool_config["max_connections"],
            )

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    def _url_preview(self) -> str:
        """Redis URL with any password masked."""
        if "@" not in self.redis_url:
            return self.redis_url[:40]
        scheme, _, rest = self.redis_url.partition("://")
        return f"{scheme}://***@{rest.split('@', 1)[1]}"[:40]

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get_or_raise(self, key: str) -> str | None:
        """GET that propagates connection errors so callers can retry."""
        await self._ensure_initialized()
        result = await self.client.get(key)
        return result if result else None

    async def set_or_raise(self, key: str, value: str) -> None:
        """SET that propagates connection errors so callers can retry."""
        await self._ensure_initialized()
        await self.client.set(key, value)

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """Set value with TTL - with fallback handling"""
        try:
            await self._ensure_initialized()

            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete key - with fallback handling"""
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            return False

    async def exists_or_raise(self, key: str) -> bool:
        """EXISTS that propagates connection errors; a failed check is not 'missing'."""
        await self._ensure_initialized()
        return await self.client.exists(key) > 0

    async def add_to_set(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            await self.client.sadd(key, member)
            return True
        except Exception as e:
            logger.error("Redis SADD failed", key=key[:30], error=str(e))
            return False

    async def remove_from_set(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.srem(key, member) > 0
        except Exception as e:
            logger.error("Redis SREM failed", key=key[:30], error=str(e))
            return False

    async def set_members(self, key: str) -> set[str]:
        try:
            await self._ensure_initialized()
            return {str(member) for member in await self.client.smembers(key)}
        except Exception as e:
            logger.error("Redis SMEMBERS failed", key=key[:30], error=str(e))
            return set()

    async def acquire_lock(
        self, name: str, timeout: float, blocking_timeout: float
    ) -> Lock:
        """
        Take a distributed lock shared by every process using this Redis.

        ``timeout`` bounds how long a crashed holder can keep the lock.
        Raises LockError when the lock cannot be taken within ``blocking_timeout``.
        """
        await self._ensure_initialized()
        lock = self.client.lock(name, timeout=timeout, blocking_timeout=blocking_timeout)
        if not await lock.acquire():
            raise LockError(f"Timed out waiting for lock {name}")
        return lock

    async def release_lock(self, lock: Lock) -> None:
        try:
            await lock.release()
        except LockError as e:
            # Held past its timeout; another holder may already own it
            logger.warning("Redis lock expired before release", name=str(lock.name)[:40], error=str(e))

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        """Push a value onto a Redis list (used as a lightweight queue)."""
        try:
            await self._ensure_initialized()
            if left:
                result = await self.client.lpush(key, value)
            else:
                result = await self.client.rpush(key, value)
            return result > 0
        except Exception as e:
            logger.error(
                "Redis LIST push failed", key=key[:30], value_preview=value[:30], error=str(e)
            )
            return False

    async def pop_to_inflight(
        self, source_key: str, inflight_key: str, timeout: int = 0
    ) -> str | None:
        """
        Pop a value from a list and push to an in-flight list (acked queue).

        Uses BRPOPLPUSH for blocking behavior to avoid losing jobs on worker crash.
        """
        try:
            await self._ensure_initialized()
            if timeout > 0:
                payload = await self.client.brpoplpush(source_key, inflight_key, timeout=timeout)
            else:
                payload = await self.client.rpoplpush(source_key, inflight_key)
            return payload
        except Exception as e:
            logger.error(
                "Redis LIST inflight pop failed",
                source_key=source_key[:30],
                inflight_key=inflight_key[:30],
                error=str(e),
            )
            return None

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        """Remove a processed item from the in-flight list."""
        try:
            await self._ensure_initialized()
            removed = await self.client.lrem(inflight_key, 0, value)
            return removed > 0
        except Exception as e:
            logger.error(
                "Redis inflight ack failed",
                inflight_key=inflight_key[:30],
                value_preview=value[:30],
                error=str(e),
            )
            return False

    async def requeue_all_inflight(self, inflight_key: str, destination_key: str) -> int:
        """Move every in-flight item back to the main queue, one atomic hop at a time."""
        moved = 0
        try:
            await self._ensure_initialized()
            while await self.client.rpoplpush(inflight_key, destination_key) is not None:
                moved += 1
        except Exception as e:
            logger.error(
                "Redis inflight recovery failed",
                inflight_key=inflight_key[:30],
                destination_key=destination_key[:30],
                moved=moved,
                error=str(e),
            )
        return moved

    async def schedule_from_inflight(
        self,
        inflight_key: str,
        delayed_key: str,
        inflight_value: str,
        delayed_value: str,
        due_at: float,
    ) -> bool:
        """
        Atomically swap an in-flight item for a delayed (scored) entry.

        Nothing is scheduled when the item is no longer in the in-flight list,
        e.g. after another worker recovered it.
        """
        try:
            await self._ensure_initialized()
            scheduled = await self.client.eval(
                _SCHEDULE_FROM_INFLIGHT,
                2,
                inflight_key,
                delayed_key,
                inflight_value,
                delayed_value,
                due_at,
            )
            return bool(scheduled)
        except Exception as e:
            logger.error(
                "Redis delayed schedule failed",
                delayed_key=delayed_key[:30],
                value_preview=delayed_value[:30],
                error=str(e),
            )
            return False

    async def promote_due(self, delayed_key: str, destination_key: str, now: float) -> int:
        """
        Move delayed items whose score is <= now onto the destination list.

        ZREM acts as the claim so concurrent workers never promote the same item twice.
        """
        promoted = 0
        try:
            await self._ensure_initialized()
            due = await self.client.zrangebyscore(delayed_key, "-inf", now)
            for value in due:
                if await self.client.zrem(delayed_key, value):
                    await self.client.lpush(destination_key, value)
                    promoted += 1
        except Exception as e:
            logger.error(
                "Redis delayed promotion failed",
                delayed_key=delayed_key[:30],
                promoted=promoted,
                error=str(e),
            )
        return promoted

    async def list_length(self, key: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.llen(key))
        except Exception as e:
            logger.error("Redis LLEN failed", key=key[:30], error=str(e))
            return 0

    async def sorted_set_size(self, key: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.zcard(key))
        except Exception as e:
            logger.error("Redis ZCARD failed", key=key[:30], error=str(e))
            return 0


# Global instance
fast_redis = FastRedisClient()
