# src/gadgetserver/core/cache/file_cache.py

import asyncio
import hashlib
import logging
import os
import tempfile
import time
from functools import partial
from pathlib import Path
from typing import Optional

from .base import BaseCacheBackend, CacheBackendType, register_cache_backend

logger = logging.getLogger(__name__)

@register_cache_backend
class FileCacheBackend(BaseCacheBackend):
    """
    Stores every entry as a file under `cache_dir/<h[:2]>/<h>` where h is the
    MD5 of the key. A lock is a sibling `<h>.lock` file; its mtime bounds its life.
    """
    name: str = CacheBackendType.FILE.value

    def __init__(self, cache_dir: str, lock_ttl: float = 5.0):
        super().__init__(lock_ttl)
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    async def _run_in_executor(self, func, *args, **kwargs):
        """
        将同步文件 IO 放入线程池执行，避免阻塞 Event Loop
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _path_for(self, key: str) -> Path:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return self.cache_dir / digest[:2] / digest

    def _lock_path_for(self, key: str) -> Path:
        path = self._path_for(key)
        return path.with_name(path.name + ".lock")

    # --- sync implementations ---

    def _fetch_sync(self, key: str) -> Optional[bytes]:
        try:
            return self._path_for(key).read_bytes()
        except FileNotFoundError:
            return None

    def _store_sync(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # write to a temp file first so readers never see a half written entry
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _delete_sync(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            pass

    def _is_locked_sync(self, key: str) -> bool:
        lock_path = self._lock_path_for(key)
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return False
        if age >= self.lock_ttl:
            logger.warning(f"Removing stale cache lock {lock_path} ({age:.1f}s old)")
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass
            return False
        return True

    def _lock_sync(self, key: str) -> bool:
        if self._is_locked_sync(key):
            return False
        lock_path = self._lock_path_for(key)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        os.close(fd)
        return True

    def _unlock_sync(self, key: str) -> None:
        try:
            self._lock_path_for(key).unlink()
        except FileNotFoundError:
            pass

    # --- async interface ---

    async def fetch(self, key: str) -> Optional[bytes]:
        return await self._run_in_executor(self._fetch_sync, key)

    async def store(self, key: str, data: bytes) -> None:
        await self._run_in_executor(self._store_sync, key, data)

    async def delete(self, key: str) -> None:
        await self._run_in_executor(self._delete_sync, key)

    async def is_locked(self, key: str) -> bool:
        return await self._run_in_executor(self._is_locked_sync, key)

    async def lock(self, key: str) -> bool:
        return await self._run_in_executor(self._lock_sync, key)

    async def unlock(self, key: str) -> None:
        await self._run_in_executor(self._unlock_sync, key)
