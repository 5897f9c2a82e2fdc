"""Pydantic models for feature planning.

This module defines the data structures shared by the planning pipeline:
features, atomic tasks, priority factors and results, and the
decomposition result returned to callers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plansmith.planning.graph import DependencyGraph

# =============================================================================
# ENUMS
# =============================================================================


class TaskStatus(str, Enum):
    """Planning status of an atomic task."""

    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    VERIFICATION = "verification"
    DONE = "done"


class PriorityLevel(str, Enum):
    """Priority class, P0 being the most urgent."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"

    @property
    def rank(self) -> int:
        """Numeric rank (0 = highest priority)."""
        return int(self.value[1])

    @classmethod
    def from_rank(cls, rank: int) -> "PriorityLevel":
        """Get the level for a numeric rank, clamped to P0..P3."""
        return cls(f"P{max(0, min(3, rank))}")


PRIORITY_DESCRIPTIONS: dict[PriorityLevel, str] = {
    PriorityLevel.P0: "Critical - Must be done first, blocks other work",
    PriorityLevel.P1: "High - Important for core functionality",
    PriorityLevel.P2: "Medium - Needed but not blocking",
    PriorityLevel.P3: "Low - Nice to have, can be deferred",
}


# =============================================================================
# FEATURES AND TASKS
# =============================================================================


class Feature(BaseModel):
    """A feature-level requirement to be decomposed.

    Example:
        >>> feature = Feature(id="F-1", description="User login with OAuth")
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Feature identifier, used as the task id prefix",
    )
    description: str = Field(
        ...,
        min_length=1,
        description="What the feature should do",
    )
    is_ui: bool = Field(
        default=False,
        description="Whether the feature is user-interface work",
    )


class AtomicTask(BaseModel):
    """Smallest schedulable unit of work.

    Ids follow the ``{feature_id}.{n}`` format. ``blocks`` is the inverse
    of ``depends_on`` across a task set and is maintained by whoever builds
    the set (the decomposer, or :func:`link_blocks`).

    Example:
        >>> task = AtomicTask(
        ...     id="F-1.2",
        ...     feature_id="F-1",
        ...     title="Add login endpoint",
        ...     estimate_minutes=45,
        ...     depends_on=["F-1.1"],
        ... )
    """

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., min_length=1, description="Unique task identifier")
    feature_id: str = Field(default="", description="Parent feature id")
    title: str = Field(..., min_length=1, description="Task title")
    description: str = Field(default="", description="What needs to be done")
    estimate_minutes: int = Field(
        default=30,
        ge=1,
        description="Estimated effort in minutes",
    )
    depends_on: list[str] = Field(
        default_factory=list,
        description="Task ids that must complete first",
    )
    blocks: list[str] = Field(
        default_factory=list,
        description="Task ids waiting on this task",
    )
    acceptance_criteria: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    priority: PriorityLevel = Field(default=PriorityLevel.P1)
    is_ui: bool = Field(default=False)
    status: TaskStatus = Field(default=TaskStatus.PENDING)

    @field_validator("depends_on", "blocks")
    @classmethod
    def dedupe_ids(cls, v: list[str]) -> list[str]:
        """Keep the first occurrence of each id."""
        return list(dict.fromkeys(v))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json")


def link_blocks(tasks: list[AtomicTask]) -> None:
    """Recompute ``blocks`` on every task from the ``depends_on`` sets.

    Dependencies on ids outside ``tasks`` are ignored.

    Args:
        tasks: Task set to relink in place.
    """
    by_id = {task.id: task for task in tasks}
    for task in tasks:
        task.blocks = []
    for task in tasks:
        for dep_id in task.depends_on:
            dep = by_id.get(dep_id)
            if dep is not None and task.id not in dep.blocks:
                dep.blocks.append(task.id)


# =============================================================================
# DECOMPOSITION RESULT
# =============================================================================


class DecompositionResult(BaseModel):
    """Result of decomposing one feature."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    feature: Feature
    tasks: list[AtomicTask] = Field(default_factory=list)
    dependency_graph: DependencyGraph = Field(
        default_factory=DependencyGraph,
        exclude=True,
    )
    critical_path: list[str] = Field(default_factory=list)
    total_estimate_minutes: int = 0
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    used_fallback: bool = Field(
        default=False,
        description="True when the generation step failed",
    )
    cycles: list[list[str]] = Field(default_factory=list)

    def get_task(self, task_id: str) -> AtomicTask | None:
        """Get a task by id."""
        return next((t for t in self.tasks if t.id == task_id), None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = self.model_dump(mode="json")
        data["dependency_graph"] = self.dependency_graph.to_dict()
        return data


# =============================================================================
# PRIORITY
# =============================================================================


class PriorityFactors(BaseModel):
    """Signals used to score a task."""

    model_config = ConfigDict(frozen=True)

    dependent_count: int = Field(default=0, ge=0)
    is_on_critical_path: bool = False
    blocks_milestone: bool = False
    user_impact: int = Field(default=2, ge=1, le=5)
    technical_risk: int = Field(default=2, ge=1, le=5)
    is_bug_fix: bool = False
    has_deadline: bool = False
    estimate_minutes: int = Field(default=30, ge=0)


class PriorityResult(BaseModel):
    """Outcome of scoring a single task."""

    model_config = ConfigDict(frozen=True)

    priority: PriorityLevel
    score: int = Field(ge=0, le=100)
    factors: PriorityFactors
    reasons: list[str] = Field(default_factory=list)


class PriorityStatistics(BaseModel):
    """Priority distribution across a task set."""

    p0: int = 0
    p1: int = 0
    p2: int = 0
    p3: int = 0
    average_score: float = 0.0

    @property
    def total(self) -> int:
        """Number of tasks counted."""
        return self.p0 + self.p1 + self.p2 + self.p3
