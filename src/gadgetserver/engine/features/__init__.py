from .base import Feature, JsLibrary, LibraryContext, LibraryType, ResolvedFeatureSet
from .catalog import FeatureCatalog
from .resolver import DependencyResolver
from .content import FeatureContentLoader
