"""Dependency graph primitive.

Nodes are opaque string ids. An edge ``a -> b`` means "a depends on b".
Both directions are stored (``dependencies`` and ``dependents``) and kept
symmetric by every mutation. The graph performs no cycle rejection;
see :mod:`plansmith.planning.cycles` for detection.
"""

from collections import deque
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from plansmith.planning.models import AtomicTask


class DependencyGraph:
    """
    Directed graph of task dependencies.

    Example:
        >>> graph = DependencyGraph()
        >>> graph.add_dependency("b", "a")  # b depends on a
        >>> graph.get_dependencies("b")
        ['a']
        >>> graph.get_dependents("a")
        ['b']
    """

    def __init__(self) -> None:
        self._dependencies: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}

    @classmethod
    def from_tasks(cls, tasks: Iterable["AtomicTask"]) -> "DependencyGraph":
        """Build a graph from the ``depends_on`` sets of tasks.

        Args:
            tasks: Tasks to add as nodes.

        Returns:
            New graph with one node per task and one edge per dependency.
        """
        graph = cls()
        task_list = list(tasks)
        for task in task_list:
            graph.add_node(task.id)
        for task in task_list:
            for dep_id in task.depends_on:
                graph.add_dependency(task.id, dep_id)
        return graph

    @classmethod
    def from_mapping(cls, edges: dict[str, Iterable[str]]) -> "DependencyGraph":
        """Build a graph from a ``node -> dependencies`` mapping."""
        graph = cls()
        for node in edges:
            graph.add_node(node)
        for node, deps in edges.items():
            for dep in deps:
                graph.add_dependency(node, dep)
        return graph

    # =========================================================================
    # MUTATION
    # =========================================================================

    def add_node(self, node_id: str) -> None:
        """Add a node if it does not exist yet."""
        if node_id not in self._dependencies:
            self._dependencies[node_id] = set()
            self._dependents[node_id] = set()

    def add_dependency(self, dependent: str, dependency: str) -> None:
        """Record that ``dependent`` depends on ``dependency``.

        Both nodes are created if missing.
        """
        self.add_node(dependent)
        self.add_node(dependency)
        self._dependencies[dependent].add(dependency)
        self._dependents[dependency].add(dependent)

    def remove_dependency(self, dependent: str, dependency: str) -> None:
        """Remove a single edge. Unknown nodes are ignored."""
        if dependent in self._dependencies:
            self._dependencies[dependent].discard(dependency)
        if dependency in self._dependents:
            self._dependents[dependency].discard(dependent)

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge that references it."""
        if node_id not in self._dependencies:
            return

        for dep in self._dependencies[node_id]:
            if dep in self._dependents:
                self._dependents[dep].discard(node_id)
        for dependent in self._dependents[node_id]:
            if dependent in self._dependencies:
                self._dependencies[dependent].discard(node_id)

        del self._dependencies[node_id]
        del self._dependents[node_id]

    def clear(self) -> None:
        """Remove all nodes and edges."""
        self._dependencies.clear()
        self._dependents.clear()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_dependencies(self, node_id: str) -> list[str]:
        """Direct dependencies of a node, sorted."""
        return sorted(self._dependencies.get(node_id, ()))

    def get_dependents(self, node_id: str) -> list[str]:
        """Direct dependents of a node, sorted."""
        return sorted(self._dependents.get(node_id, ()))

    def get_all_dependencies(self, node_id: str) -> list[str]:
        """Transitive dependencies of a node (excluding the node itself)."""
        return self._walk(node_id, self._dependencies)

    def get_all_dependents(self, node_id: str) -> list[str]:
        """Transitive dependents of a node (excluding the node itself)."""
        return self._walk(node_id, self._dependents)

    def has_dependencies(self, node_id: str) -> bool:
        return bool(self._dependencies.get(node_id))

    def has_dependents(self, node_id: str) -> bool:
        return bool(self._dependents.get(node_id))

    def nodes(self) -> list[str]:
        """All node ids in insertion order."""
        return list(self._dependencies)

    def get_roots(self) -> list[str]:
        """Nodes with no dependencies."""
        return [n for n in self._dependencies if not self._dependencies[n]]

    def get_leaves(self) -> list[str]:
        """Nodes with no dependents."""
        return [n for n in self._dependents if not self._dependents[n]]

    def get_node_data(self, node_id: str) -> dict[str, Any] | None:
        """Snapshot of a node's edges, or None if absent."""
        if node_id not in self._dependencies:
            return None
        return {
            "id": node_id,
            "dependencies": self.get_dependencies(node_id),
            "dependents": self.get_dependents(node_id),
        }

    def size(self) -> int:
        return len(self._dependencies)

    def is_empty(self) -> bool:
        return not self._dependencies

    def copy(self) -> "DependencyGraph":
        """Independent copy of the graph."""
        clone = DependencyGraph()
        clone._dependencies = {k: set(v) for k, v in self._dependencies.items()}
        clone._dependents = {k: set(v) for k, v in self._dependents.items()}
        return clone

    def to_dict(self) -> dict[str, list[str]]:
        """Adjacency mapping ``node -> sorted dependencies``."""
        return {node: self.get_dependencies(node) for node in self._dependencies}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._dependencies

    def __len__(self) -> int:
        return len(self._dependencies)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._dependencies))

    def __repr__(self) -> str:
        edges = sum(len(deps) for deps in self._dependencies.values())
        return f"DependencyGraph(nodes={len(self)}, edges={edges})"

    @staticmethod
    def _walk(start: str, adjacency: dict[str, set[str]]) -> list[str]:
        """Iterative traversal collecting every node reachable from start."""
        if start not in adjacency:
            return []

        seen: set[str] = {start}
        found: list[str] = []
        stack = sorted(adjacency[start], reverse=True)

        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            found.append(current)
            stack.extend(sorted(adjacency.get(current, ()), reverse=True))

        return found


# =============================================================================
# ORDERING
# =============================================================================


def topological_sort(graph: DependencyGraph) -> list[str]:
    """
    Order nodes so every node follows its dependencies (Kahn's algorithm).

    Ready nodes are released in insertion order. Nodes that sit on or behind
    a cycle never reach in-degree zero and are left out; a warning is logged
    and the partial order is returned.

    Args:
        graph: Graph to sort.

    Returns:
        Node ids in dependency order.
    """
    nodes = graph.nodes()
    in_degree = {node: len(graph.get_dependencies(node)) for node in nodes}
    queue: deque[str] = deque(node for node in nodes if in_degree[node] == 0)
    ordered: list[str] = []

    while queue:
        current = queue.popleft()
        ordered.append(current)

        for dependent in graph.get_dependents(current):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(nodes):
        logger.warning(
            f"Circular dependency detected, returning partial order "
            f"({len(ordered)}/{len(nodes)} nodes)"
        )

    return ordered


def parallel_levels(graph: DependencyGraph) -> list[list[str]]:
    """
    Group nodes into execution waves.

    Every node in a wave depends only on nodes from earlier waves. Nodes
    that can never be placed (cycles) are forced into a final wave.

    Args:
        graph: Graph to group.

    Returns:
        List of waves, each a sorted list of node ids.
    """
    levels: list[list[str]] = []
    placed: set[str] = set()
    nodes = graph.nodes()

    while len(placed) < len(nodes):
        level = sorted(
            node for node in nodes
            if node not in placed
            and all(dep in placed for dep in graph.get_dependencies(node))
        )

        if not level:
            remaining = sorted(set(nodes) - placed)
            logger.error(f"Cannot order remaining nodes: {remaining}")
            level = remaining

        levels.append(level)
        placed.update(level)

    return levels
