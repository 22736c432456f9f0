# src/gadgetserver/core/cache/redis_cache.py

import logging
from typing import Optional

import redis.asyncio as aioredis

from gadgetserver.services.exceptions import ConfigurationError
from .base import BaseCacheBackend, CacheBackendType, register_cache_backend

logger = logging.getLogger(__name__)

# data keys and lock keys never share a namespace
DATA_NAMESPACE = "data:"
LOCK_NAMESPACE = "lock:"

@register_cache_backend
class RedisCacheBackend(BaseCacheBackend):
    """
    一个封装了 aioredis 客户端的缓存后端。
    Locks are `SET NX PX` keys, so redis expires them for crashed holders.
    """
    name: str = CacheBackendType.REDIS.value

    def __init__(self, redis_url: Optional[str] = None, lock_ttl: float = 5.0,
                 client: Optional[aioredis.Redis] = None, prefix: str = "gadgetserver:"):
        super().__init__(lock_ttl)
        if client is None and not redis_url:
            raise ConfigurationError("RedisCacheBackend needs either a client or a redis_url.")
        # payloads are raw bytes, so responses must not be decoded
        self.client = client if client else aioredis.from_url(redis_url, decode_responses=False)
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{DATA_NAMESPACE}{key}"

    def _lock_key(self, key: str) -> str:
        return f"{self.prefix}{LOCK_NAMESPACE}{key}"

    async def fetch(self, key: str) -> Optional[bytes]:
        return await self.client.get(self._key(key))

    async def store(self, key: str, data: bytes) -> None:
        await self.client.set(self._key(key), data)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def is_locked(self, key: str) -> bool:
        return bool(await self.client.exists(self._lock_key(key)))

    async def lock(self, key: str) -> bool:
        acquired = await self.client.set(
            self._lock_key(key), b"1", nx=True, px=max(1, int(self.lock_ttl * 1000))
        )
        return bool(acquired)

    async def unlock(self, key: str) -> None:
        await self.client.delete(self._lock_key(key))

    async def close(self) -> None:
        await self.client.aclose()
