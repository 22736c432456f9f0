# src/gadgetserver/engine/features/resolver.py

from typing import Iterable, List, Optional, Set

from gadgetserver.services.exceptions import CircularDependencyError, MissingFeatureError, ValidationError
from .base import Feature, ResolvedFeatureSet
from .catalog import FeatureCatalog


class DependencyResolver:
    """
    Expands requested feature names into a load order.

    Depth-first walk with a `visiting` path and a `done` set: meeting a name that
    is still being visited is a cycle, meeting a finished one is a no-op (that is
    what removes shared dependencies). The first error aborts the whole walk.
    """

    def resolve(self, requested: Iterable[str], catalog: FeatureCatalog) -> ResolvedFeatureSet:
        names = self._ordered_requests(requested, catalog)
        if not names:
            raise ValidationError("At least one feature must be requested.")

        order: List[Feature] = []
        done: Set[str] = set()
        for name in names:
            self._visit(name, None, catalog, [], done, order)
        return ResolvedFeatureSet(features=tuple(order))

    @staticmethod
    def _ordered_requests(requested: Iterable[str], catalog: FeatureCatalog) -> List[str]:
        # 请求是一个集合：按目录声明顺序排序，保证输出稳定（未知名称排在最后）
        unique = {name.strip() for name in requested if name and name.strip()}
        size = len(catalog)

        def sort_key(name: str):
            index = catalog.index_of(name)
            return (index if index is not None else size, name)

        return sorted(unique, key=sort_key)

    def _visit(
        self,
        name: str,
        required_by: Optional[str],
        catalog: FeatureCatalog,
        visiting: List[str],
        done: Set[str],
        order: List[Feature],
    ) -> None:
        if name in done:
            return
        if name in visiting:
            cycle = visiting[visiting.index(name):] + [name]
            raise CircularDependencyError(cycle)

        feature = catalog.get(name)
        if feature is None:
            raise MissingFeatureError(name, required_by)

        visiting.append(name)
        for dep in feature.dependencies:
            self._visit(dep, name, catalog, visiting, done, order)
        visiting.pop()

        done.add(name)
        order.append(feature)
