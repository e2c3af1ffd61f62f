"""Redis-backed persistence gateway for hosts sharing state across workers."""
import logging
from typing import Optional

from redis.asyncio import Redis

from .base import KeyValuePersistence


logger = logging.getLogger(__name__)


class RedisPersistence(KeyValuePersistence):
    """Gateway storing each fact under ``<prefix>:<key>``."""

    DEFAULT_PREFIX = "gate:state"

    def __init__(self, redis: Redis, prefix: str = DEFAULT_PREFIX) -> None:
        """Initialize Redis persistence.

        Args:
            redis: Injected redis.asyncio.Redis client
            prefix: Namespace for all keys (one per device/install)
        """
        self.redis = redis
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def _get(self, key: str) -> Optional[str]:
        value = await self.redis.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def _set(self, key: str, value: str) -> None:
        await self.redis.set(self._key(key), value)

    async def _delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.redis.aclose()
        logger.debug("Closed Redis persistence for prefix=%s", self.prefix)
