# src/gadgetserver/engine/features/catalog.py

import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from gadgetserver.services.exceptions import ConfigurationError, DuplicateFeatureError, MissingFeatureError
from .base import Feature, LibraryType
from .parser import FEATURE_FILE_NAME, parse_feature_xml

logger = logging.getLogger(__name__)

CORE_PREFIX = "core"


class FeatureCatalog:
    """
    Immutable name -> Feature map. Built once, then only read.
    Several catalogs can live side by side (reloads, per-tenant feature sets).
    """

    def __init__(self, features: Iterable[Feature]):
        self._features: Dict[str, Feature] = {}
        self._order: List[str] = []
        for feature in features:
            if feature.name in self._features:
                raise DuplicateFeatureError(
                    feature.name,
                    self._features[feature.name].base_path,
                    feature.base_path,
                )
            self._features[feature.name] = feature
            self._order.append(feature.name)
        self._index = {name: i for i, name in enumerate(self._order)}
        self._fingerprint: Optional[str] = None

    # --- loading ---

    @classmethod
    def load(cls, roots: Union[str, Path, Sequence[Union[str, Path]]]) -> "FeatureCatalog":
        """Walks every root (in the given order, sorted below each) and parses each feature.xml once."""
        if isinstance(roots, (str, Path)):
            roots = [roots]

        features: List[Feature] = []
        for root in roots:
            root_path = Path(root)
            if not root_path.is_dir():
                raise ConfigurationError(f"Feature directory not found: {root_path}")
            for descriptor in cls._discover(root_path):
                with open(descriptor, "r", encoding="utf-8") as f:
                    content = f.read()
                features.append(parse_feature_xml(content, str(descriptor.parent), source=str(descriptor)))

        catalog = cls(features)
        logger.info(f"Loaded {len(catalog)} features from {[str(r) for r in roots]}")
        return catalog

    @staticmethod
    def _discover(root: Path) -> List[Path]:
        found = []
        for dirpath, dirnames, filenames in os.walk(root):
            # sort in place so the walk itself is deterministic
            dirnames.sort()
            if FEATURE_FILE_NAME in filenames:
                found.append(Path(dirpath) / FEATURE_FILE_NAME)
        return found

    # --- lookups ---

    def get(self, name: str) -> Optional[Feature]:
        return self._features.get(name)

    def require(self, name: str) -> Feature:
        feature = self._features.get(name)
        if feature is None:
            raise MissingFeatureError(name)
        return feature

    def all(self) -> List[Feature]:
        """Declaration order, stable across loads of the same tree."""
        return [self._features[name] for name in self._order]

    def index_of(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def core_features(self) -> List[str]:
        return [name for name in self._order if name.lower().startswith(CORE_PREFIX)]

    def fingerprint(self) -> str:
        """Changes whenever any name, dependency, library or local library file of the catalog changes."""
        if self._fingerprint is None:
            h = hashlib.sha1()
            for feature in self.all():
                h.update(feature.name.encode("utf-8"))
                h.update(b"\x00")
                for dep in feature.dependencies:
                    h.update(f"dep:{dep}\x00".encode("utf-8"))
                for lib in feature.libraries:
                    h.update(f"lib:{lib.context.value}:{lib.type.value}:{lib.content}\x00".encode("utf-8"))
                    if lib.type == LibraryType.FILE:
                        h.update(self._file_digest(os.path.join(feature.base_path, lib.content)))
                h.update(b"\x01")
            self._fingerprint = h.hexdigest()
        return self._fingerprint

    @staticmethod
    def _file_digest(path: str) -> bytes:
        # 缓存持久化时，文件内容变化也必须让缓存键失效
        try:
            with open(path, "rb") as f:
                return hashlib.sha1(f.read()).digest()
        except OSError:
            return b"missing"

    def __contains__(self, name: object) -> bool:
        return name in self._features

    def __len__(self) -> int:
        return len(self._features)
