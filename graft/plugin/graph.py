"""
Plugin Dependency Graph.

An incremental directed graph over plugin ids, rebuilt for every operation
from the installed plugin records and each plugin's descriptor.

Key features:
- Eager cycle detection when an edge is added
- Post-order dependency chains (dependencies before dependents)
- Dependents and dangler queries used by uninstall
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from graft.core.errors import CyclicDependencyError
from graft.core.events import EventBus
from graft.plugin.descriptor import DescriptorError, DescriptorProvider
from graft.plugin.installed import InstalledPluginStore


class DependencyGraph:
    """
    Directed graph of plugin id -> dependency ids.

    Example:
        graph = DependencyGraph()
        graph.add("A", "B")
        graph.add("B", "C")
        graph.get_chain("A")  # ["C", "B"]
        graph.add("C", "A")  # raises CyclicDependencyError("C", "A")
    """

    def __init__(self):
        self._edges: dict[str, list[str]] = {}

    def add(self, parent: str, child: str | None = None) -> None:
        """
        Add a node, or an edge from parent to child.

        Raises:
            CyclicDependencyError: If the edge would close a cycle
        """
        self._edges.setdefault(parent, [])
        if child is None:
            return

        self._edges.setdefault(child, [])
        if child in self._edges[parent]:
            return
        if parent == child or self._reaches(child, parent):
            raise CyclicDependencyError(parent, child)
        self._edges[parent].append(child)

    def _reaches(self, start: str, target: str) -> bool:
        stack = [start]
        seen = set()
        while stack:
            node = stack.pop()
            if node == target:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._edges.get(node, []))
        return False

    def __contains__(self, node: str) -> bool:
        return node in self._edges

    def nodes(self) -> list[str]:
        return list(self._edges)

    def children(self, node: str) -> list[str]:
        return list(self._edges.get(node, []))

    def get_chain(self, node: str) -> list[str]:
        """
        Return every transitive dependency of a node.

        Dependencies appear before the plugins that need them; the node itself
        is not included.
        """
        chain: list[str] = []
        visited: set[str] = set()

        def visit(current: str) -> None:
            for child in self._edges.get(current, []):
                if child in visited:
                    continue
                visited.add(child)
                visit(child)
                chain.append(child)

        visit(node)
        return chain


@dataclass
class DependencyInfo:
    """
    Graph built from the installed records of one platform.

    Attributes:
        graph: Dependency graph of every installed plugin
        top_level_plugins: Ids recorded as explicitly requested
    """

    graph: DependencyGraph
    top_level_plugins: list[str] = field(default_factory=list)


def generate_dependency_info(
    store: InstalledPluginStore,
    plugins_dir: Path,
    platform: str,
    descriptors: DescriptorProvider,
    events: EventBus | None = None,
) -> DependencyInfo:
    """
    Build the dependency graph for one platform.

    Plugins recorded but missing on disk are skipped.
    """
    graph = DependencyGraph()
    ids = list(store.installed_plugins) + list(store.dependent_plugins)

    for plugin_id in ids:
        plugin_dir = Path(plugins_dir) / plugin_id
        if not plugin_dir.is_dir():
            if events:
                events.verbose(f'Plugin "{plugin_id}" is recorded but missing on disk; skipping.')
            continue
        try:
            descriptor = descriptors.get(plugin_dir)
        except DescriptorError as e:
            if events:
                events.verbose(f'Could not read plugin "{plugin_id}": {e}')
            continue

        graph.add(plugin_id)
        for dep in descriptor.get_dependencies(platform):
            graph.add(plugin_id, dep.id)

    return DependencyInfo(graph=graph, top_level_plugins=list(store.installed_plugins))


def dependents(plugin_id: str, info: DependencyInfo, exclude: Iterable[str] = ()) -> list[str]:
    """Return top-level plugins other than plugin_id whose chain includes it."""
    excluded = set(exclude)
    return [
        top
        for top in info.top_level_plugins
        if top != plugin_id and top not in excluded and plugin_id in info.graph.get_chain(top)
    ]


def danglers(plugin_id: str, info: DependencyInfo) -> list[str]:
    """
    Return the dependencies of plugin_id that nothing else needs.

    A dependency is kept when it is itself top-level or appears in the chain of
    any other top-level plugin.
    """
    still_needed: set[str] = set()
    for top in info.top_level_plugins:
        if top == plugin_id:
            continue
        still_needed.add(top)
        still_needed.update(info.graph.get_chain(top))

    return [dep for dep in info.graph.get_chain(plugin_id) if dep not in still_needed]
