# src/gadgetserver/core/cache/memory_cache.py

import time
from typing import Callable, Dict, Optional

from .base import BaseCacheBackend, CacheBackendType, register_cache_backend

@register_cache_backend
class MemoryCacheBackend(BaseCacheBackend):
    """Process-local backend for development and tests."""
    name: str = CacheBackendType.MEMORY.value

    def __init__(self, lock_ttl: float = 5.0, clock: Callable[[], float] = time.monotonic):
        super().__init__(lock_ttl)
        self._data: Dict[str, bytes] = {}
        # key -> lock expiry
        self._locks: Dict[str, float] = {}
        self._clock = clock

    async def fetch(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def store(self, key: str, data: bytes) -> None:
        self._data[key] = bytes(data)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def is_locked(self, key: str) -> bool:
        expires = self._locks.get(key)
        if expires is None:
            return False
        if expires <= self._clock():
            del self._locks[key]
            return False
        return True

    async def lock(self, key: str) -> bool:
        if await self.is_locked(key):
            return False
        self._locks[key] = self._clock() + self.lock_ttl
        return True

    async def unlock(self, key: str) -> None:
        self._locks.pop(key, None)
