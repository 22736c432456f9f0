# src/gadgetserver/core/cache/content_cache.py

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .base import BaseCacheBackend

logger = logging.getLogger(__name__)


class ContentCache:
    """
    Front for a cache backend, shared by the feature JS memoization and the
    proxy fetcher. Keys carry their own freshness: callers put a version or
    hash into the key instead of relying on a TTL.
    """

    def __init__(self, backend: BaseCacheBackend, poll_interval: float = 0.05):
        self.backend = backend
        self.poll_interval = poll_interval

    async def fetch(self, key: str) -> Optional[bytes]:
        return await self.backend.fetch(key)

    async def store(self, key: str, data: bytes) -> None:
        await self.backend.store(key, data)

    async def delete(self, key: str) -> None:
        await self.backend.delete(key)

    async def is_locked(self, key: str) -> bool:
        return await self.backend.is_locked(key)

    async def lock(self, key: str) -> bool:
        return await self.backend.lock(key)

    async def unlock(self, key: str) -> None:
        await self.backend.unlock(key)

    async def wait_for_unlock(self, key: str) -> bool:
        """Polls until the lock is gone or the lock TTL elapsed. Returns True if it was released."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.backend.lock_ttl
        while await self.backend.is_locked(key):
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        return True

    async def get_or_compute(
        self,
        key: str,
        producer: Callable[[], Awaitable[bytes]],
        should_store: Optional[Callable[[bytes], bool]] = None,
    ) -> bytes:
        """
        check lock -> acquire -> compute -> store -> unlock.
        The lock only de-duplicates work; under contention the value is simply recomputed.
        """
        cached = await self.backend.fetch(key)
        if cached is not None:
            return cached

        if await self.backend.is_locked(key):
            await self.wait_for_unlock(key)
            cached = await self.backend.fetch(key)
            if cached is not None:
                return cached

        acquired = await self.backend.lock(key)
        try:
            data = await producer()
            if should_store is None or should_store(data):
                await self.backend.store(key, data)
            return data
        finally:
            if acquired:
                await self.backend.unlock(key)
