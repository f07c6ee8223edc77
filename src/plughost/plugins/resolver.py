"""Dependency resolution over a plugin manifest."""

from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from .interface import DependencyCycle, PluginDescriptor, normalize_id
from ..core.logger import get_logger

logger = get_logger(__name__)


def drop_cyclic_edge(parent: str, dependency: str, branch: Sequence[str]) -> None:
    """Cycle policy: the edge ``parent -> dependency`` is skipped with a warning.

    Custom policies get the same arguments. They may raise
    :class:`DependencyCycle` to report the cycle; the edge is dropped either way.
    """
    cycle = list(branch) + [dependency]
    logger.warning(
        "Dependency cycle detected, dropping edge",
        plugin=parent,
        dependency=dependency,
        cycle=" -> ".join(cycle)
    )


class DependencyResolver:
    """
    Pure lookups over the current manifest.

    The resolver holds a reference to a manifest provider rather than a copy,
    so re-applying a manifest is picked up on the next call.
    """

    def __init__(
        self,
        manifest: Callable[[], Sequence[PluginDescriptor]],
        on_cycle: Callable[[str, str, Sequence[str]], None] = drop_cyclic_edge,
    ):
        self._manifest = manifest
        self._on_cycle = on_cycle

    def descriptors(self) -> Dict[str, PluginDescriptor]:
        """Map of id to descriptor; the first entry wins for duplicate ids."""
        by_id: Dict[str, PluginDescriptor] = {}
        for descriptor in self._manifest():
            by_id.setdefault(descriptor.id, descriptor)
        return by_id

    def get_descriptor(self, plugin_id: str) -> Optional[PluginDescriptor]:
        return self.descriptors().get(normalize_id(plugin_id))

    def get_dependencies(self, plugin_id: str) -> List[str]:
        """
        Transitive dependencies of a plugin.

        Args:
            plugin_id: Plugin id

        Returns:
            Deduplicated ids, deepest dependencies first. Unknown ids yield [].
        """
        root = normalize_id(plugin_id)
        by_id = self.descriptors()
        if root not in by_id:
            return []

        result: List[str] = []
        expanded: Set[str] = set()
        self._collect(root, by_id, [root], expanded, result)
        return result

    def _collect(
        self,
        current: str,
        by_id: Dict[str, PluginDescriptor],
        branch: List[str],
        expanded: Set[str],
        result: List[str],
    ) -> None:
        descriptor = by_id.get(current)
        if descriptor is None:
            return

        for dep in descriptor.dependencies:
            if dep in branch:
                try:
                    self._on_cycle(current, dep, branch)
                except DependencyCycle as e:
                    logger.warning(
                        "Dependency cycle rejected, dropping edge",
                        plugin=current,
                        dependency=dep,
                        reason=str(e)
                    )
                continue
            if dep in expanded:
                continue

            expanded.add(dep)
            branch.append(dep)
            self._collect(dep, by_id, branch, expanded, result)
            branch.pop()
            result.append(dep)

    def get_dependents(self, plugin_id: str) -> List[str]:
        """Ids of manifest entries that list ``plugin_id`` as a direct dependency."""
        target = normalize_id(plugin_id)
        if not target:
            return []
        return [
            descriptor.id
            for descriptor in self.descriptors().values()
            if target in descriptor.dependencies and descriptor.id != target
        ]

    def load_order(
        self,
        roots: Iterable[str],
        skip: Optional[Callable[[str], bool]] = None,
    ) -> List[str]:
        """
        Topological order over the dependency closure of ``roots``.

        Dependencies always come before their dependents. ``skip`` filters
        roots only; a skipped id is still included when a root needs it.
        """
        by_id = self.descriptors()
        processed: Set[str] = set()
        order: List[str] = []

        def visit(plugin_id: str) -> None:
            if plugin_id in processed:
                return
            processed.add(plugin_id)
            descriptor = by_id.get(plugin_id)
            if descriptor is not None:
                for dep in descriptor.dependencies:
                    visit(dep)
            order.append(plugin_id)

        for root in roots:
            root_id = normalize_id(root)
            if not root_id or (skip is not None and skip(root_id)):
                continue
            visit(root_id)

        return order
