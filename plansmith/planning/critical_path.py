"""Critical path analysis.

The critical path is the dependency chain with the largest cumulative
estimate. Path lengths are computed by dynamic programming over a Kahn
topological order, so there is no recursion depth limit on large graphs.

Ties are broken deterministically: among equal path lengths the lowest
task id wins, comparing ids in natural order (``F-1.2`` before ``F-1.10``).
"""

import re
from collections import deque
from collections.abc import Sequence

from loguru import logger
from pydantic import BaseModel, Field

from plansmith.planning.graph import DependencyGraph
from plansmith.planning.models import AtomicTask

_DIGITS = re.compile(r"(\d+)")


def natural_key(task_id: str) -> tuple[str | int, ...]:
    """Sort key comparing embedded numbers numerically.

    Example:
        >>> sorted(["F.10", "F.2"], key=natural_key)
        ['F.2', 'F.10']
    """
    return tuple(
        int(part) if i % 2 else part
        for i, part in enumerate(_DIGITS.split(task_id))
    )


class CriticalPathResult(BaseModel):
    """Outcome of a critical path computation."""

    path: list[str] = Field(default_factory=list)
    length_minutes: int = 0
    path_lengths: dict[str, int] = Field(
        default_factory=dict,
        description="Longest chain (minutes) ending at each acyclic task",
    )
    unresolved: list[str] = Field(
        default_factory=list,
        description="Tasks skipped because they sit on or behind a cycle",
    )

    def contains(self, task_id: str) -> bool:
        return task_id in self.path


class CriticalPathAnalyzer:
    """
    Compute the longest-duration dependency chain through a task set.

    Example:
        >>> analyzer = CriticalPathAnalyzer()
        >>> result = analyzer.analyze(tasks)
        >>> result.path
        ['F-1.1', 'F-1.3', 'F-1.4']
        >>> result.length_minutes
        135
    """

    def analyze(
        self,
        tasks: Sequence[AtomicTask],
        graph: DependencyGraph | None = None,
    ) -> CriticalPathResult:
        """
        Compute path lengths and reconstruct the critical path.

        Only dependencies inside ``tasks`` count. Tasks caught in a cycle
        never reach in-degree zero; they get no path length and are
        reported in ``unresolved`` instead.

        Args:
            tasks: Tasks to analyze.
            graph: Dependency graph (built from ``depends_on`` if omitted).

        Returns:
            CriticalPathResult with the path and per-task lengths.
        """
        if not tasks:
            return CriticalPathResult()

        if graph is None:
            graph = DependencyGraph.from_tasks(tasks)

        estimates = {task.id: task.estimate_minutes for task in tasks}
        deps_of = {
            task_id: [d for d in graph.get_dependencies(task_id) if d in estimates]
            for task_id in estimates
        }

        order = self._topological_order(deps_of)
        lengths: dict[str, int] = {}
        for task_id in order:
            best_dep = max((lengths[d] for d in deps_of[task_id]), default=0)
            lengths[task_id] = estimates[task_id] + best_dep

        unresolved = [t for t in estimates if t not in lengths]
        if unresolved:
            logger.warning(
                f"Critical path ignores {len(unresolved)} tasks on or behind "
                f"a dependency cycle: {unresolved}"
            )

        if not lengths:
            return CriticalPathResult(unresolved=unresolved)

        end_task = self._pick(lengths, lengths.keys())
        path = [end_task]
        current = end_task
        while True:
            candidates = [d for d in deps_of[current] if d in lengths]
            if not candidates:
                break
            current = self._pick(lengths, candidates)
            path.append(current)

        path.reverse()
        logger.debug(
            f"Critical path: {' -> '.join(path)} ({lengths[end_task]} min)"
        )

        return CriticalPathResult(
            path=path,
            length_minutes=lengths[end_task],
            path_lengths=lengths,
            unresolved=unresolved,
        )

    def find_critical_path(
        self,
        tasks: Sequence[AtomicTask],
        graph: DependencyGraph | None = None,
    ) -> list[str]:
        """Task ids on the critical path, first to last."""
        return self.analyze(tasks, graph).path

    def critical_task_ids(
        self,
        tasks: Sequence[AtomicTask],
        graph: DependencyGraph | None = None,
    ) -> set[str]:
        """Set form of :meth:`find_critical_path` for membership checks."""
        return set(self.find_critical_path(tasks, graph))

    @staticmethod
    def _pick(lengths: dict[str, int], candidates) -> str:
        """Longest candidate, lowest natural id on ties."""
        return min(candidates, key=lambda t: (-lengths[t], natural_key(t)))

    @staticmethod
    def _topological_order(deps_of: dict[str, list[str]]) -> list[str]:
        in_degree = {task_id: len(deps) for task_id, deps in deps_of.items()}
        dependents: dict[str, list[str]] = {task_id: [] for task_id in deps_of}
        for task_id, deps in deps_of.items():
            for dep in deps:
                dependents[dep].append(task_id)

        queue = deque(t for t, degree in in_degree.items() if degree == 0)
        order: list[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for dependent in dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)
        return order
