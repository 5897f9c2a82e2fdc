"""Priority ordering and time-based escalation for the ready queue.

Lower rank means more urgent (P0 = 0). Within a tier, tasks are served
FIFO by creation time. A task that waits too long is promoted: one tier
after ``escalation_hours``, straight to P0 after ``force_p0_hours``.
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime

from loguru import logger

from plansmith.planning.models import PriorityLevel
from plansmith.scheduling.models import ScheduledTask

DEFAULT_ESCALATION_HOURS = 24.0
DEFAULT_FORCE_P0_HOURS = 48.0


def effective_priority(
    level: PriorityLevel,
    created_at: datetime,
    now: datetime,
    escalation_hours: float = DEFAULT_ESCALATION_HOURS,
    force_p0_hours: float = DEFAULT_FORCE_P0_HOURS,
) -> PriorityLevel:
    """
    Priority after applying the waiting-time rule.

    Thresholds are strict: exactly 24 hours of waiting does not escalate.

    Args:
        level: Assigned priority.
        created_at: When the task entered the queue.
        now: Current time.
        escalation_hours: Wait after which the task moves up one tier.
        force_p0_hours: Wait after which the task becomes P0.

    Returns:
        Effective priority level.

    Example:
        >>> effective_priority(PriorityLevel.P1, created, created + timedelta(hours=49))
        <PriorityLevel.P0: 'P0'>
    """
    rank = level.rank
    waited_hours = (now - created_at).total_seconds() / 3600

    if waited_hours > escalation_hours and rank > 0:
        rank -= 1
    if waited_hours > force_p0_hours and rank > 0:
        rank = 0

    return PriorityLevel.from_rank(rank)


def queue_key(
    task: ScheduledTask,
    now: datetime,
    escalation_hours: float = DEFAULT_ESCALATION_HOURS,
    force_p0_hours: float = DEFAULT_FORCE_P0_HOURS,
) -> tuple[int, datetime, int]:
    """Sort key: effective rank, then creation time, then insertion order."""
    level = effective_priority(
        task.priority, task.created_at, now, escalation_hours, force_p0_hours
    )
    return (level.rank, task.created_at, task.seq)


def sort_by_priority(
    tasks: Iterable[ScheduledTask],
    now: datetime | None = None,
    escalation_hours: float = DEFAULT_ESCALATION_HOURS,
    force_p0_hours: float = DEFAULT_FORCE_P0_HOURS,
) -> list[ScheduledTask]:
    """
    New list ordered for dequeue.

    Without ``now`` no escalation is applied (assigned tiers only).
    """
    if now is None:
        return sorted(tasks, key=lambda t: (t.priority.rank, t.created_at, t.seq))
    return sorted(
        tasks,
        key=lambda t: queue_key(t, now, escalation_hours, force_p0_hours),
    )


def filter_by_priority(
    tasks: Iterable[ScheduledTask],
    max_priority: PriorityLevel | None = None,
    min_priority: PriorityLevel | None = None,
    include: Sequence[PriorityLevel] | None = None,
    exclude: Sequence[PriorityLevel] | None = None,
) -> list[ScheduledTask]:
    """
    Keep tasks whose assigned level passes every given filter.

    Args:
        tasks: Tasks to filter.
        max_priority: Least urgent level accepted (``P1`` keeps P0 and P1).
        min_priority: Most urgent level accepted.
        include: Only these levels.
        exclude: Never these levels.

    Returns:
        Matching tasks in input order.
    """
    kept: list[ScheduledTask] = []
    for task in tasks:
        rank = task.priority.rank
        if max_priority is not None and rank > max_priority.rank:
            continue
        if min_priority is not None and rank < min_priority.rank:
            continue
        if include is not None and task.priority not in include:
            continue
        if exclude is not None and task.priority in exclude:
            continue
        kept.append(task)
    return kept


def should_preempt(new_task: ScheduledTask, current_task: ScheduledTask) -> bool:
    """Only P0 work preempts, and only P2/P3 work is preempted."""
    if new_task.priority != PriorityLevel.P0:
        return False
    return current_task.priority.rank > PriorityLevel.P1.rank


def priority_counts(tasks: Iterable[ScheduledTask]) -> dict[PriorityLevel, int]:
    counts = Counter(task.priority for task in tasks)
    return {level: counts.get(level, 0) for level in PriorityLevel}


def priority_summary(tasks: Sequence[ScheduledTask]) -> str:
    """Plain-text count of tasks per assigned level."""
    counts = priority_counts(tasks)
    lines = ["Task Priority Summary:"]
    lines.extend(f"  {level.value}: {counts[level]}" for level in PriorityLevel)
    lines.append(f"  Total: {len(tasks)}")

    logger.debug(
        "Priority summary: "
        + ", ".join(f"{level.value}={counts[level]}" for level in PriorityLevel)
    )
    return "\n".join(lines)
