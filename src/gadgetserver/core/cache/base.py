# src/gadgetserver/core/cache/base.py

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional, Type, TypeVar

class CacheBackendType(str, Enum):
    FILE = "file"
    REDIS = "redis"
    MEMORY = "memory"

class BaseCacheBackend(ABC):
    """
    缓存后端抽象基类。
    A flat byte-oriented key/value store plus advisory, self-expiring locks.
    Every implementation must define a `name` and present identical semantics.
    """
    name: str = "base"

    def __init__(self, lock_ttl: float = 5.0):
        # 锁的最长存活时间：持有者崩溃后锁会自动失效
        self.lock_ttl = lock_ttl

    @abstractmethod
    async def fetch(self, key: str) -> Optional[bytes]:
        """Returns the stored payload, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def store(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def is_locked(self, key: str) -> bool:
        """Point-in-time check; an expired lock counts as unlocked."""
        raise NotImplementedError

    @abstractmethod
    async def lock(self, key: str) -> bool:
        """Creates the lock marker. Returns False if somebody else holds a live lock."""
        raise NotImplementedError

    @abstractmethod
    async def unlock(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

# 定义注册表
ALL_CACHE_BACKENDS: Dict[str, Type[BaseCacheBackend]] = {}

T = TypeVar('T', bound=BaseCacheBackend)

def register_cache_backend(cls: Type[T]) -> Type[T]:
    """
    装饰器：注册缓存后端实现类。
    """
    if not hasattr(cls, 'name') or not cls.name:
        raise ValueError(f"Cache backend class {cls.__name__} must define a 'name' attribute.")

    if cls.name in ALL_CACHE_BACKENDS:
        raise ValueError(f"Cache backend with name '{cls.name}' already registered.")

    ALL_CACHE_BACKENDS[cls.name] = cls
    return cls
