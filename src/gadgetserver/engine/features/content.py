# src/gadgetserver/engine/features/content.py

import asyncio
import hashlib
import logging
import os
from typing import Iterable, List, Optional, Tuple

from gadgetserver.core.cache.content_cache import ContentCache
from gadgetserver.engine.fetch.base import FetchRequest
from gadgetserver.services.exceptions import ConfigurationError, FetchError
from .base import Feature, JsLibrary, LibraryContext, LibraryType, ResolvedFeatureSet
from .catalog import FeatureCatalog

logger = logging.getLogger(__name__)


class FeatureContentLoader:
    """
    Turns features into JavaScript text.
    Everything is memoized in the ContentCache under keys that contain the catalog
    fingerprint, so a changed feature tree never serves stale content.
    """

    def __init__(
        self,
        catalog: FeatureCatalog,
        cache: ContentCache,
        fetcher=None,
        resources_path: Optional[str] = None,
        js_prefix: str = "/gadgets/js/",
    ):
        self.catalog = catalog
        self.cache = cache
        self.fetcher = fetcher
        self.resources_path = resources_path
        self.js_prefix = js_prefix

    # --- cache keys ---

    def _feature_key(self, feature: Feature, context: LibraryContext) -> str:
        raw = f"features:{feature.name}:{context.value}:{self.catalog.fingerprint()}"
        return "features:" + hashlib.md5(raw.encode("utf-8")).hexdigest()

    def _hash_key(self) -> str:
        return f"features-hash:{self.catalog.fingerprint()}"

    # --- content ---

    async def get_feature_content(
        self, feature: Feature, context: LibraryContext = LibraryContext.GADGET
    ) -> str:
        content, _ = await self._load_feature(feature, context)
        return content

    async def _load_feature(self, feature: Feature, context: LibraryContext) -> Tuple[str, bool]:
        """Returns (content, complete). Content with skipped libraries is served but never memoized."""
        complete = True

        async def producer() -> bytes:
            nonlocal complete
            parts = []
            for lib in feature.libraries_for(context):
                text = await self._library_content(feature, lib)
                if text is None:
                    complete = False
                elif text:
                    parts.append(text)
            return "\n".join(parts).encode("utf-8")

        data = await self.cache.get_or_compute(
            self._feature_key(feature, context), producer, should_store=lambda _: complete
        )
        return data.decode("utf-8"), complete

    async def get_content(
        self, resolved: ResolvedFeatureSet, context: LibraryContext = LibraryContext.GADGET
    ) -> str:
        parts = []
        for feature in resolved:
            text = await self.get_feature_content(feature, context)
            if text:
                parts.append(text)
        return "\n".join(parts)

    async def get_aggregate_hash(self) -> str:
        """MD5 over the gadget content of every catalog feature; the `v` of JS URLs."""
        complete = True

        async def producer() -> bytes:
            nonlocal complete
            h = hashlib.md5()
            for feature in self.catalog.all():
                content, feature_complete = await self._load_feature(feature, LibraryContext.GADGET)
                complete = complete and feature_complete
                h.update(content.encode("utf-8"))
            return h.hexdigest().encode("ascii")

        data = await self.cache.get_or_compute(self._hash_key(), producer, should_store=lambda _: complete)
        return data.decode("ascii")

    async def js_url(self, feature_names: Iterable[str]) -> str:
        names: List[str] = list(feature_names)
        return f"{self.js_prefix}{':'.join(names)}.js?v={await self.get_aggregate_hash()}"

    # --- library loading ---

    async def _library_content(self, feature: Feature, lib: JsLibrary) -> Optional[str]:
        """None means the library was skipped (remote failure)."""
        if lib.type == LibraryType.INLINE:
            return lib.content
        if lib.type == LibraryType.FILE:
            return await self._read_file(os.path.join(feature.base_path, lib.content))
        if lib.type == LibraryType.RESOURCE:
            if not self.resources_path:
                raise ConfigurationError(
                    f"Feature '{feature.name}' uses resource {lib.content} but RESOURCES_PATH is not set."
                )
            return await self._read_file(os.path.join(self.resources_path, lib.content))
        return await self._fetch_url(feature, lib.content)

    async def _read_file(self, path: str) -> str:
        def _read():
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        try:
            return await asyncio.get_running_loop().run_in_executor(None, _read)
        except OSError as e:
            raise ConfigurationError(f"Cannot read feature library {path}: {e}")

    async def _fetch_url(self, feature: Feature, url: str) -> Optional[str]:
        if self.fetcher is None:
            logger.warning(f"No fetcher configured, skipping {url} of feature '{feature.name}'")
            return None
        try:
            response = await self.fetcher.fetch_one(FetchRequest(url=url))
        except FetchError as e:
            logger.warning(f"Skipping {url} of feature '{feature.name}': {e.message}")
            return None
        if response.status != 200:
            logger.warning(f"Skipping {url} of feature '{feature.name}': upstream answered {response.status}")
            return None
        return response.body
