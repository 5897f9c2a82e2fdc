"""Circular dependency detection and reporting.

Detection never mutates or repairs a graph. Callers decide what to do with
the cycles found (the scheduler can block the affected tasks, the
decomposer only reports them).
"""

from collections.abc import Iterable, Iterator, Mapping
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field

from plansmith.planning.graph import DependencyGraph

GraphLike = DependencyGraph | Mapping[str, Iterable[str]]


class CycleInfo(BaseModel):
    """A single detected cycle with a human-readable suggestion."""

    cycle: list[str]
    description: str
    suggestion: str
    severity: Literal["warning", "error"]


class CycleAnalysis(BaseModel):
    """Result of analyzing a graph for circular dependencies."""

    has_cycles: bool = False
    cycle_count: int = 0
    cycles: list[CycleInfo] = Field(default_factory=list)
    affected_tasks: list[str] = Field(default_factory=list)
    safe_tasks: list[str] = Field(default_factory=list)


def _as_mapping(graph: GraphLike) -> dict[str, list[str]]:
    if isinstance(graph, DependencyGraph):
        return graph.to_dict()
    return {node: sorted(deps) for node, deps in graph.items()}


# =============================================================================
# DETECTION
# =============================================================================


def detect_cycles(graph: GraphLike) -> list[list[str]]:
    """
    Detect every cycle reachable by depth-first search.

    Uses the classic white/gray/black coloring over an explicit stack of
    ``(node, neighbor iterator)`` frames, so chain length is not bounded by
    the interpreter's recursion limit. A gray neighbor is on the current
    path, so the path slice from it forms a cycle. Dependencies on unknown
    nodes are skipped.

    Args:
        graph: Graph, or mapping of ``node -> dependency ids``.

    Returns:
        List of cycle paths, each closed (first id repeated at the end).

    Example:
        >>> detect_cycles({"a": ["b"], "b": ["a"]})
        [['a', 'b', 'a']]
    """
    edges = _as_mapping(graph)
    WHITE, GRAY, BLACK = 0, 1, 2
    colors: dict[str, int] = {node: WHITE for node in edges}
    cycles: list[list[str]] = []

    for root in edges:
        if colors[root] != WHITE:
            continue

        colors[root] = GRAY
        path: list[str] = [root]
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(edges.get(root, [])))]

        while stack:
            node, neighbors = stack[-1]
            descended = False

            for neighbor in neighbors:
                if neighbor not in colors:
                    continue
                if colors[neighbor] == GRAY:
                    start = path.index(neighbor)
                    cycles.append(path[start:] + [neighbor])
                elif colors[neighbor] == WHITE:
                    colors[neighbor] = GRAY
                    path.append(neighbor)
                    stack.append((neighbor, iter(edges.get(neighbor, []))))
                    descended = True
                    break

            if not descended:
                stack.pop()
                path.pop()
                colors[node] = BLACK

    return cycles


def has_cycles(graph: GraphLike) -> bool:
    """Quick yes/no check for circular dependencies."""
    return bool(detect_cycles(graph))


def would_create_cycle(
    graph: DependencyGraph,
    task_id: str,
    dependency_id: str,
) -> bool:
    """
    Check whether adding ``task_id -> dependency_id`` would close a loop.

    Args:
        graph: Current graph.
        task_id: Task that would gain the dependency.
        dependency_id: Task it would depend on.

    Returns:
        True if ``dependency_id`` already reaches ``task_id``.
    """
    if task_id == dependency_id:
        return True
    return task_id in graph.get_all_dependencies(dependency_id)


# =============================================================================
# ANALYSIS
# =============================================================================


def _suggest_resolution(cycle: list[str]) -> str:
    if len(cycle) == 2:
        return f'Task "{cycle[0]}" depends on itself. Remove the self-dependency.'

    if len(cycle) == 3:
        return (
            f'Consider removing the dependency from "{cycle[1]}" to '
            f'"{cycle[0]}" or from "{cycle[0]}" to "{cycle[1]}"'
        )

    return (
        f'Remove the dependency from "{cycle[-2]}" to "{cycle[0]}", '
        "or introduce a shared prerequisite task both can depend on"
    )


def analyze_cycles(graph: DependencyGraph) -> CycleAnalysis:
    """
    Detect cycles and describe them.

    Args:
        graph: Graph to analyze.

    Returns:
        CycleAnalysis listing each cycle plus affected and safe tasks.
    """
    raw_cycles = detect_cycles(graph)
    affected: dict[str, None] = {}
    infos: list[CycleInfo] = []

    for cycle in raw_cycles:
        for task_id in cycle:
            affected[task_id] = None
        infos.append(
            CycleInfo(
                cycle=cycle,
                description=f"Circular dependency: {' -> '.join(cycle)}",
                suggestion=_suggest_resolution(cycle),
                severity="error" if len(cycle) <= 2 else "warning",
            )
        )

    analysis = CycleAnalysis(
        has_cycles=bool(infos),
        cycle_count=len(infos),
        cycles=infos,
        affected_tasks=list(affected),
        safe_tasks=[n for n in graph.nodes() if n not in affected],
    )

    if analysis.has_cycles:
        logger.error(
            f"Found {analysis.cycle_count} circular dependencies affecting "
            f"{len(analysis.affected_tasks)} tasks"
        )
    else:
        logger.debug("No circular dependencies detected")

    return analysis


def find_minimum_cycle_breakers(graph: DependencyGraph) -> list[tuple[str, str]]:
    """
    Greedily pick edges whose removal breaks every cycle.

    The closing edge of the first remaining cycle is removed until none
    are left. Works on a copy; the input graph is untouched. Not guaranteed
    to be a true minimum.

    Args:
        graph: Graph to analyze.

    Returns:
        List of ``(task_id, dependency_id)`` edges to remove.
    """
    working = graph.copy()
    breakers: list[tuple[str, str]] = []

    cycles = detect_cycles(working)
    while cycles:
        cycle = cycles[0]
        edge = (cycle[-2], cycle[-1])
        breakers.append(edge)
        working.remove_dependency(*edge)
        cycles = detect_cycles(working)

    if breakers:
        logger.warning(
            f"Suggest removing {len(breakers)} dependencies to break cycles"
        )

    return breakers


def format_cycle_report(analysis: CycleAnalysis) -> str:
    """Render a CycleAnalysis as plain text for logs or terminals."""
    if not analysis.has_cycles:
        return "No circular dependencies detected. All tasks can be scheduled."

    lines = [
        f"Found {analysis.cycle_count} circular dependency cycle(s)",
        "",
        "Cycles detected:",
    ]
    for idx, info in enumerate(analysis.cycles, start=1):
        lines.append(f"  {idx}. {info.description}")
        lines.append(f"     Suggestion: {info.suggestion}")

    lines.append("")
    lines.append(
        f"Affected tasks ({len(analysis.affected_tasks)}): "
        f"{', '.join(analysis.affected_tasks)}"
    )
    lines.append(
        f"Safe tasks ({len(analysis.safe_tasks)}): "
        f"{', '.join(analysis.safe_tasks)}"
    )
    return "\n".join(lines)
