"""Scheduler-side models.

A :class:`ScheduledTask` wraps an :class:`AtomicTask` with execution
state. The scheduler tracks unmet dependencies in ``waiting_on`` so the
planning-side ``depends_on``/``blocks`` sets are never rewritten.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from plansmith.planning.models import AtomicTask, PriorityLevel, TaskStatus

# =============================================================================
# ENUMS
# =============================================================================


class SchedulerStatus(str, Enum):
    """Lifecycle state of a scheduled task."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    VERIFICATION = "verification"
    DONE = "done"
    INVESTIGATION = "investigation"
    FAILED = "failed"
    BLOCKED = "blocked"
    BLOCKED_AWAITING_FEEDBACK = "blocked_awaiting_feedback"


# Dependencies in these states count as satisfied for their dependents.
SATISFIED_STATUSES = frozenset(
    {
        SchedulerStatus.COMPLETED,
        SchedulerStatus.VERIFICATION,
        SchedulerStatus.DONE,
    }
)

# How scheduler states are reflected on the planning-side task.
PLANNING_STATUS: dict[SchedulerStatus, TaskStatus] = {
    SchedulerStatus.PENDING: TaskStatus.PENDING,
    SchedulerStatus.READY: TaskStatus.READY,
    SchedulerStatus.RUNNING: TaskStatus.IN_PROGRESS,
    SchedulerStatus.COMPLETED: TaskStatus.DONE,
    SchedulerStatus.VERIFICATION: TaskStatus.VERIFICATION,
    SchedulerStatus.DONE: TaskStatus.DONE,
    SchedulerStatus.INVESTIGATION: TaskStatus.IN_PROGRESS,
    SchedulerStatus.FAILED: TaskStatus.IN_PROGRESS,
    SchedulerStatus.BLOCKED: TaskStatus.PENDING,
    SchedulerStatus.BLOCKED_AWAITING_FEEDBACK: TaskStatus.PENDING,
}


class BlockReason(str, Enum):
    """Why a task is blocked."""

    DEPENDENCY_FAILED = "dependency-failed"
    DEPENDENCY_BLOCKED = "dependency-blocked"
    MANUAL_HOLD = "manual-hold"
    CIRCULAR_DEPENDENCY = "circular-dependency"
    AWAITING_FEEDBACK = "awaiting-feedback"


# Blocks that only an explicit operation may lift.
STICKY_BLOCK_REASONS = frozenset(
    {
        BlockReason.MANUAL_HOLD,
        BlockReason.CIRCULAR_DEPENDENCY,
        BlockReason.AWAITING_FEEDBACK,
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# TASK STATE
# =============================================================================


class BlockInfo(BaseModel):
    """Details of a block placed on a task."""

    task_id: str
    reason: BlockReason
    blocked_by: str | None = None
    description: str = ""
    blocked_at: datetime = Field(default_factory=_utcnow)


class ScheduledTask(BaseModel):
    """A task under the scheduler's control."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., min_length=1)
    title: str = ""
    priority: PriorityLevel = PriorityLevel.P1
    depends_on: list[str] = Field(default_factory=list)
    waiting_on: set[str] = Field(
        default_factory=set,
        description="Dependencies not yet satisfied",
    )
    status: SchedulerStatus = SchedulerStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    seq: int = Field(default=0, description="Insertion order, for FIFO ties")
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimate_minutes: int | None = None
    actual_minutes: int | None = None
    error: str | None = None
    block: BlockInfo | None = None
    question: str | None = Field(
        default=None,
        description="Open clarification while awaiting feedback",
    )
    result: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: AtomicTask | None = Field(default=None, exclude=True)

    @classmethod
    def from_atomic(cls, task: AtomicTask) -> "ScheduledTask":
        """Wrap a planning task, keeping a reference for status sync."""
        return cls(
            id=task.id,
            title=task.title,
            priority=task.priority,
            depends_on=list(task.depends_on),
            estimate_minutes=task.estimate_minutes,
            source=task,
        )

    def set_status(self, status: SchedulerStatus) -> None:
        """Change status and mirror it onto the source task, if any."""
        self.status = status
        if self.source is not None:
            self.source.status = PLANNING_STATUS[status]


class QueueStats(BaseModel):
    """Task counts per status."""

    pending: int = 0
    ready: int = 0
    running: int = 0
    completed: int = 0
    verification: int = 0
    done: int = 0
    investigation: int = 0
    failed: int = 0
    blocked: int = 0
    blocked_awaiting_feedback: int = 0
    total: int = 0


class OperationResult(BaseModel):
    """Outcome of a scheduler operation. Errors are reported, not raised."""

    ok: bool
    message: str = ""
    error_code: str | None = None
    task: ScheduledTask | None = None

    @classmethod
    def success(cls, task: ScheduledTask, message: str = "") -> "OperationResult":
        return cls(ok=True, message=message, task=task)

    @classmethod
    def failure(
        cls,
        message: str,
        error_code: str,
        task: ScheduledTask | None = None,
    ) -> "OperationResult":
        return cls(ok=False, message=message, error_code=error_code, task=task)


class SchedulerConfig(BaseModel):
    """Scheduler tuning."""

    model_config = ConfigDict(frozen=True)

    min_confidence_for_auto_pass: int = Field(default=95, ge=0, le=100)
    require_modified_files: bool = True
    max_concurrent: int = Field(default=3, ge=1)
    escalation_hours: float = Field(default=24.0, gt=0)
    force_p0_hours: float = Field(default=48.0, gt=0)
    block_on_cycles: bool = True
