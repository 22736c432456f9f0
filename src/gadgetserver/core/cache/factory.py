# src/gadgetserver/core/cache/factory.py

import logging
from typing import Any, Dict

from gadgetserver.services.exceptions import ConfigurationError
from .base import BaseCacheBackend, ALL_CACHE_BACKENDS, CacheBackendType

# 导入具体实现以触发注册
from .file_cache import FileCacheBackend
from .memory_cache import MemoryCacheBackend
from .redis_cache import RedisCacheBackend

logger = logging.getLogger(__name__)


def _backend_kwargs(name: str, settings) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"lock_ttl": settings.CACHE_LOCK_TTL_SECONDS}
    if name == CacheBackendType.FILE.value:
        kwargs["cache_dir"] = settings.CACHE_DIR
    elif name == CacheBackendType.REDIS.value:
        kwargs["redis_url"] = settings.REDIS_URL
    return kwargs


def create_cache_backend(settings, name: str = None) -> BaseCacheBackend:
    """
    根据配置创建缓存后端实例。Resolved once at startup.

    :param name: 指定后端名称 (e.g., 'file', 'redis', 'memory').
                 如果不传，默认使用配置中的 CACHE_BACKEND。
    """
    target_name = name or settings.CACHE_BACKEND

    backend_cls = ALL_CACHE_BACKENDS.get(target_name)
    if not backend_cls:
        available = list(ALL_CACHE_BACKENDS.keys())
        raise ConfigurationError(
            f"Cache backend '{target_name}' not registered. "
            f"Available: {available}."
        )

    instance = backend_cls(**_backend_kwargs(target_name, settings))
    logger.info(f"Using '{target_name}' content cache backend")
    return instance
