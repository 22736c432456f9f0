# src/gadgetserver/engine/features/base.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Tuple


class LibraryType(str, Enum):
    FILE = "FILE"
    URL = "URL"
    INLINE = "INLINE"
    RESOURCE = "RESOURCE"


class LibraryContext(str, Enum):
    GADGET = "gadget"         # loaded inside the gadget iframe
    CONTAINER = "container"   # loaded by the container page


@dataclass(frozen=True)
class JsLibrary:
    """
    One script of a feature.
    `content` is a path (FILE), an absolute URL (URL), script text (INLINE)
    or a bundled resource id (RESOURCE).
    """
    type: LibraryType
    content: str
    context: LibraryContext = LibraryContext.GADGET


@dataclass(frozen=True)
class Feature:
    name: str
    dependencies: Tuple[str, ...] = ()
    libraries: Tuple[JsLibrary, ...] = ()
    # Directory of the descriptor, FILE libraries are relative to it
    base_path: str = ""

    def libraries_for(self, context: LibraryContext) -> List[JsLibrary]:
        return [lib for lib in self.libraries if lib.context == context]


@dataclass(frozen=True)
class ResolvedFeatureSet:
    """Features in load order: every dependency appears before its dependents, once."""
    features: Tuple[Feature, ...] = field(default_factory=tuple)

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.features]

    def __iter__(self) -> Iterator[Feature]:
        return iter(self.features)

    def __len__(self) -> int:
        return len(self.features)

    def __contains__(self, name: object) -> bool:
        return any(f.name == name for f in self.features)
