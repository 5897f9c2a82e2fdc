"""Task scheduler - lifecycle state and cascading unblock.

All mutations run under one re-entrant lock per scheduler, so a
completion and the readiness changes it causes are atomic with respect
to a competing dequeue. Public methods report errors as
:class:`OperationResult` values instead of raising.
"""

import threading
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from plansmith.core.errors import CycleError, NotFoundError, PlannerError, StateError
from plansmith.planning.cycles import detect_cycles
from plansmith.planning.graph import DependencyGraph, topological_sort
from plansmith.planning.models import AtomicTask, DecompositionResult, PriorityLevel
from plansmith.scheduling.escalation import effective_priority, queue_key
from plansmith.scheduling.models import (
    SATISFIED_STATUSES,
    STICKY_BLOCK_REASONS,
    BlockInfo,
    BlockReason,
    OperationResult,
    QueueStats,
    ScheduledTask,
    SchedulerConfig,
    SchedulerStatus,
)

EventCallback = Callable[[str, dict[str, Any]], None]

_FAILURE_BLOCKS = (BlockReason.DEPENDENCY_FAILED, BlockReason.DEPENDENCY_BLOCKED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskScheduler:
    """
    Owns task lifecycle state for one plan.

    Example:
        >>> scheduler = TaskScheduler()
        >>> scheduler.add_tasks(result.tasks)
        >>> task = scheduler.claim_next_task()
        >>> scheduler.complete_task(task.id).ok
        True
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_event: EventCallback | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            config: Scheduler configuration (defaults if omitted).
            clock: Time source, injectable for tests.
            on_event: Optional callback receiving ``(event_name, payload)``.
        """
        self.config = config or SchedulerConfig()
        self._clock = clock
        self._on_event = on_event
        self._tasks: dict[str, ScheduledTask] = {}
        self._graph = DependencyGraph()
        self._seq = 0
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """Lock guarding all scheduler state (re-entrant)."""
        return self._lock

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    def _emit(self, event: str, **payload: Any) -> None:
        if self._on_event is not None:
            self._on_event(event, payload)

    def _require(self, task_id: str) -> ScheduledTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    @staticmethod
    def _require_status(
        task: ScheduledTask,
        *allowed: SchedulerStatus,
    ) -> None:
        if task.status not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise StateError(task.id, task.status.value, expected)

    @staticmethod
    def _failed(error: PlannerError, task: ScheduledTask | None = None) -> OperationResult:
        logger.warning(error.message)
        return OperationResult.failure(error.message, error.code, task)

    # =========================================================================
    # LOADING
    # =========================================================================

    def add_task(self, task: AtomicTask | ScheduledTask) -> OperationResult:
        """Add a single task. Duplicate ids are rejected."""
        with self._lock:
            if task.id in self._tasks:
                return OperationResult.failure(
                    f"Task {task.id} already exists", "duplicate", self._tasks[task.id]
                )
            added = self.add_tasks([task])
            return OperationResult.success(added[0], f"Added task {task.id}")

    def add_tasks(
        self,
        tasks: Iterable[AtomicTask | ScheduledTask],
        strict: bool = False,
    ) -> list[ScheduledTask]:
        """
        Load tasks and compute their initial state.

        Tasks whose dependencies are all satisfied start ``ready``, others
        ``pending``. When the load introduces a dependency cycle and
        ``block_on_cycles`` is enabled, the tasks on the cycle are blocked
        (or, with ``strict=True``, the whole load is rolled back).

        Args:
            tasks: Planning tasks or pre-built scheduled tasks.
            strict: Raise instead of blocking when cycles are found.

        Returns:
            The scheduled tasks that were added (duplicates are skipped).

        Raises:
            CycleError: If ``strict`` and ``block_on_cycles`` and a cycle exists.
        """
        with self._lock:
            previous_graph = self._graph.copy()
            added: list[ScheduledTask] = []
            for task in tasks:
                if task.id in self._tasks:
                    logger.warning(f"Skipping duplicate task {task.id}")
                    continue

                scheduled = (
                    task
                    if isinstance(task, ScheduledTask)
                    else ScheduledTask.from_atomic(task)
                )
                scheduled.created_at = self._clock()
                scheduled.seq = self._seq
                self._seq += 1

                self._tasks[scheduled.id] = scheduled
                self._graph.add_node(scheduled.id)
                for dep_id in scheduled.depends_on:
                    self._graph.add_dependency(scheduled.id, dep_id)
                added.append(scheduled)

            cycles = detect_cycles(self._graph)
            new_ids = {t.id for t in added}
            new_cycles = [c for c in cycles if new_ids.intersection(c)]

            if new_cycles and strict and self.config.block_on_cycles:
                for scheduled in added:
                    del self._tasks[scheduled.id]
                self._graph = previous_graph
                self._emit("circular-dependency", cycles=new_cycles)
                raise CycleError(new_cycles)

            for scheduled in added:
                self._init_status(scheduled)
                self._emit("task-added", task_id=scheduled.id)

            if new_cycles:
                self._handle_cycles(new_cycles)

            for scheduled in added:
                if scheduled.status == SchedulerStatus.READY:
                    self._emit("task-ready", task_id=scheduled.id)

            logger.info(f"Added {len(added)} tasks to scheduler")
            return added

    def load_plan(self, result: DecompositionResult, strict: bool = False) -> list[ScheduledTask]:
        """Load every task of a decomposition."""
        return self.add_tasks(result.tasks, strict=strict)

    def _init_status(self, task: ScheduledTask) -> None:
        task.waiting_on = {
            dep_id
            for dep_id in task.depends_on
            if dep_id not in self._tasks
            or self._tasks[dep_id].status not in SATISFIED_STATUSES
        }

        broken = next(
            (
                dep_id
                for dep_id in task.depends_on
                if dep_id in self._tasks
                and self._tasks[dep_id].status
                in (SchedulerStatus.FAILED, SchedulerStatus.BLOCKED)
            ),
            None,
        )

        if broken is not None:
            self._block(task, BlockReason.DEPENDENCY_BLOCKED, broken)
        elif task.waiting_on:
            task.set_status(SchedulerStatus.PENDING)
        else:
            task.set_status(SchedulerStatus.READY)

    def _handle_cycles(self, cycles: list[list[str]]) -> None:
        self._emit("circular-dependency", cycles=cycles)
        members = {task_id for cycle in cycles for task_id in cycle}

        if not self.config.block_on_cycles:
            logger.warning(
                f"Circular dependencies left unblocked: {sorted(members)}"
            )
            return

        logger.error(f"Blocking {len(members)} tasks on circular dependencies")
        for task_id in sorted(members):
            task = self._tasks.get(task_id)
            if task is not None and task.status in (
                SchedulerStatus.PENDING,
                SchedulerStatus.READY,
            ):
                self._block(task, BlockReason.CIRCULAR_DEPENDENCY)

    def _block(
        self,
        task: ScheduledTask,
        reason: BlockReason,
        blocked_by: str | None = None,
    ) -> None:
        descriptions = {
            BlockReason.DEPENDENCY_FAILED: f'Task "{task.id}" depends on failed task "{blocked_by}"',
            BlockReason.DEPENDENCY_BLOCKED: f'Task "{task.id}" is blocked because "{blocked_by}" is blocked',
            BlockReason.MANUAL_HOLD: f'Task "{task.id}" is on manual hold',
            BlockReason.CIRCULAR_DEPENDENCY: f'Task "{task.id}" is part of a circular dependency',
            BlockReason.AWAITING_FEEDBACK: f'Task "{task.id}" is awaiting clarification',
        }
        task.block = BlockInfo(
            task_id=task.id,
            reason=reason,
            blocked_by=blocked_by,
            description=descriptions[reason],
            blocked_at=self._clock(),
        )
        if reason == BlockReason.AWAITING_FEEDBACK:
            task.set_status(SchedulerStatus.BLOCKED_AWAITING_FEEDBACK)
        else:
            task.set_status(SchedulerStatus.BLOCKED)
        self._emit("task-blocked", task_id=task.id, reason=reason.value)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    def get_tasks_by_status(self, status: SchedulerStatus) -> list[ScheduledTask]:
        return [t for t in self._tasks.values() if t.status == status]

    def get_stats(self) -> QueueStats:
        """Count tasks per status."""
        with self._lock:
            counts = {status.value: 0 for status in SchedulerStatus}
            for task in self._tasks.values():
                counts[task.status.value] += 1
            return QueueStats(**counts, total=len(self._tasks))

    def get_execution_order(self) -> list[str]:
        """Dependency order of all tasks (cyclic tasks are omitted)."""
        with self._lock:
            return topological_sort(self._graph)

    def get_blocking_chain(self, task_id: str) -> list[str]:
        """Follow ``blocked_by`` links from a blocked task to the root cause."""
        chain: list[str] = []
        seen = {task_id}
        task = self._tasks.get(task_id)
        while task is not None and task.block is not None and task.block.blocked_by:
            blocker = task.block.blocked_by
            if blocker in seen:
                break
            chain.append(blocker)
            seen.add(blocker)
            task = self._tasks.get(blocker)
        return chain

    def calculate_blast_radius(self, task_id: str) -> int:
        """Number of tasks that transitively depend on ``task_id``."""
        return len(self._graph.get_all_dependents(task_id))

    def effective_priority_of(self, task: ScheduledTask) -> PriorityLevel:
        """Priority of a task after waiting-time escalation."""
        return effective_priority(
            task.priority,
            task.created_at,
            self._clock(),
            self.config.escalation_hours,
            self.config.force_p0_hours,
        )

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable view of the whole queue."""
        with self._lock:
            return {
                "tasks": [t.model_dump(mode="json") for t in self._tasks.values()],
                "stats": self.get_stats().model_dump(),
                "execution_order": topological_sort(self._graph),
            }

    # =========================================================================
    # DEQUEUE
    # =========================================================================

    def get_next_task(self) -> ScheduledTask | None:
        """
        Peek at the ready task that should run next.

        Ordering is effective priority (after escalation), then creation
        time, then insertion order. Returns None when ``max_concurrent``
        tasks are already running.
        """
        with self._lock:
            running = sum(
                1 for t in self._tasks.values() if t.status == SchedulerStatus.RUNNING
            )
            if running >= self.config.max_concurrent:
                return None

            ready = self.get_tasks_by_status(SchedulerStatus.READY)
            if not ready:
                return None

            now = self._clock()
            return min(
                ready,
                key=lambda t: queue_key(
                    t, now, self.config.escalation_hours, self.config.force_p0_hours
                ),
            )

    def claim_next_task(self) -> ScheduledTask | None:
        """Atomically pick the next ready task and start it."""
        with self._lock:
            task = self.get_next_task()
            if task is None:
                return None
            self.start_task(task.id)
            return task

    def start_task(self, task_id: str) -> OperationResult:
        """``ready -> running``."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.READY)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            effective = self.effective_priority_of(task)
            if effective != task.priority:
                logger.info(
                    f"Task {task_id} escalated {task.priority.value} -> "
                    f"{effective.value} after waiting"
                )

            task.set_status(SchedulerStatus.RUNNING)
            task.started_at = self._clock()
            self._emit("task-started", task_id=task_id)
            logger.info(f"Started task: {task_id}")
            return OperationResult.success(task, f"Task {task_id} started")

    # =========================================================================
    # COMPLETION
    # =========================================================================

    def complete_task(
        self,
        task_id: str,
        result: dict[str, Any] | None = None,
        actual_minutes: int | None = None,
    ) -> OperationResult:
        """
        ``running -> completed`` and unblock dependents in the same step.

        Args:
            task_id: Task to complete.
            result: Completion data stored on the task.
            actual_minutes: Reported effort (measured from start if omitted).

        Returns:
            OperationResult; ``message`` lists the tasks that became ready.
        """
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.RUNNING)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.set_status(SchedulerStatus.COMPLETED)
            task.completed_at = self._clock()
            if actual_minutes is not None:
                task.actual_minutes = actual_minutes
            elif task.started_at is not None:
                elapsed = (task.completed_at - task.started_at).total_seconds()
                task.actual_minutes = round(elapsed / 60)
            if result:
                task.result = dict(result)

            self._emit("task-completed", task_id=task_id)
            logger.info(f"Completed task: {task_id}")

            unblocked = self._cascade_completion(task_id)
            self._check_queue_empty()

            message = f"Task {task_id} completed"
            if unblocked:
                message += f"; ready: {', '.join(unblocked)}"
            return OperationResult.success(task, message)

    def _cascade_completion(self, task_id: str) -> list[str]:
        unblocked: list[str] = []
        for dependent_id in self._graph.get_dependents(task_id):
            dependent = self._tasks.get(dependent_id)
            if dependent is None:
                continue

            dependent.waiting_on.discard(task_id)
            if dependent.waiting_on or not self._can_release(dependent):
                continue

            dependent.block = None
            dependent.set_status(SchedulerStatus.READY)
            unblocked.append(dependent_id)
            self._emit("task-ready", task_id=dependent_id)

        if unblocked:
            logger.info(f"Completion of {task_id} unblocked: {unblocked}")
        return unblocked

    @staticmethod
    def _can_release(task: ScheduledTask) -> bool:
        if task.status == SchedulerStatus.PENDING:
            return True
        if task.status == SchedulerStatus.BLOCKED:
            return task.block is None or task.block.reason not in STICKY_BLOCK_REASONS
        return False

    def route_completed(self, task_id: str, auto_pass: bool) -> OperationResult:
        """``completed -> done`` (auto-pass) or ``completed -> verification``."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.COMPLETED)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            target = SchedulerStatus.DONE if auto_pass else SchedulerStatus.VERIFICATION
            task.set_status(target)
            logger.info(f"Task {task_id} -> {target.value}")
            return OperationResult.success(task, f"Task {task_id} is {target.value}")

    def approve_verification(self, task_id: str) -> OperationResult:
        """``verification -> done``."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.VERIFICATION)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.set_status(SchedulerStatus.DONE)
            logger.info(f"Verification passed: {task_id}")
            return OperationResult.success(task, f"Task {task_id} verified")

    def reject_verification(self, task_id: str, reason: str) -> OperationResult:
        """``verification -> investigation``."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.VERIFICATION)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.set_status(SchedulerStatus.INVESTIGATION)
            task.error = reason
            logger.warning(f"Verification failed for {task_id}: {reason}")
            return OperationResult.success(task, f"Task {task_id} needs investigation")

    def mark_investigation(self, task_id: str, reason: str) -> OperationResult:
        """Send a running, completed or verifying task to investigation."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(
                    task,
                    SchedulerStatus.RUNNING,
                    SchedulerStatus.COMPLETED,
                    SchedulerStatus.VERIFICATION,
                )
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.set_status(SchedulerStatus.INVESTIGATION)
            task.error = reason
            logger.warning(f"Task {task_id} under investigation: {reason}")
            return OperationResult.success(task, f"Task {task_id} needs investigation")

    # =========================================================================
    # FAILURE AND RETRY
    # =========================================================================

    def fail_task(self, task_id: str, error: str) -> OperationResult:
        """
        ``running|investigation -> failed`` and block every waiting dependent.

        Dependents that are pending or ready are blocked transitively,
        breadth first. Direct dependents get ``dependency-failed``, deeper
        ones ``dependency-blocked``.
        """
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(
                    task, SchedulerStatus.RUNNING, SchedulerStatus.INVESTIGATION
                )
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.set_status(SchedulerStatus.FAILED)
            task.error = error
            task.completed_at = self._clock()
            self._emit("task-failed", task_id=task_id, error=error)
            logger.error(f"Failed task: {task_id} - {error}")

            blocked = self._cascade_failure(task_id)
            message = f"Task {task_id} failed"
            if blocked:
                message += f"; blocked: {', '.join(blocked)}"
            return OperationResult.success(task, message)

    def _cascade_failure(self, failed_id: str) -> list[str]:
        blocked: list[str] = []
        queue: deque[str] = deque([failed_id])
        visited = {failed_id}

        while queue:
            current = queue.popleft()
            reason = (
                BlockReason.DEPENDENCY_FAILED
                if current == failed_id
                else BlockReason.DEPENDENCY_BLOCKED
            )
            for dependent_id in self._graph.get_dependents(current):
                if dependent_id in visited:
                    continue
                visited.add(dependent_id)

                dependent = self._tasks.get(dependent_id)
                if dependent is None or dependent.status not in (
                    SchedulerStatus.PENDING,
                    SchedulerStatus.READY,
                ):
                    continue

                self._block(dependent, reason, current)
                blocked.append(dependent_id)
                queue.append(dependent_id)

        if blocked:
            logger.warning(
                f"Failure of {failed_id} blocked {len(blocked)} tasks: {blocked}"
            )
        return blocked

    def retry_task(self, task_id: str) -> OperationResult:
        """
        ``failed -> ready`` (or ``pending``) and release tasks it blocked.

        A blocked dependent is released only when none of its other
        dependencies is still failed or blocked.
        """
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.FAILED)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.error = None
            task.started_at = None
            task.completed_at = None
            task.set_status(
                SchedulerStatus.PENDING if task.waiting_on else SchedulerStatus.READY
            )
            if task.status == SchedulerStatus.READY:
                self._emit("task-ready", task_id=task_id)

            released = self._release_failure_blocks(task_id)
            logger.info(f"Retrying task {task_id}; released: {released}")
            return OperationResult.success(task, f"Task {task_id} queued for retry")

    def _release_failure_blocks(self, root_id: str) -> list[str]:
        released: list[str] = []
        queue: deque[str] = deque([root_id])

        while queue:
            current = queue.popleft()
            for dependent_id in self._graph.get_dependents(current):
                dependent = self._tasks.get(dependent_id)
                if (
                    dependent is None
                    or dependent.status != SchedulerStatus.BLOCKED
                    or dependent.block is None
                    or dependent.block.reason not in _FAILURE_BLOCKS
                ):
                    continue
                if self._has_broken_dependency(dependent):
                    continue

                dependent.block = None
                dependent.set_status(
                    SchedulerStatus.PENDING
                    if dependent.waiting_on
                    else SchedulerStatus.READY
                )
                released.append(dependent_id)
                queue.append(dependent_id)

        return released

    def _has_broken_dependency(self, task: ScheduledTask) -> bool:
        for dep_id in task.depends_on:
            dep = self._tasks.get(dep_id)
            if dep is None:
                continue
            if dep.status == SchedulerStatus.FAILED:
                return True
            if (
                dep.status == SchedulerStatus.BLOCKED
                and dep.block is not None
                and dep.block.reason in _FAILURE_BLOCKS
            ):
                return True
        return False

    # =========================================================================
    # EXTERNAL BLOCKS
    # =========================================================================

    def request_feedback(self, task_id: str, question: str) -> OperationResult:
        """``ready|running -> blocked_awaiting_feedback``."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(
                    task, SchedulerStatus.READY, SchedulerStatus.RUNNING
                )
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.question = question
            self._block(task, BlockReason.AWAITING_FEEDBACK)
            logger.info(f"Task {task_id} awaiting feedback: {question}")
            return OperationResult.success(task, f"Task {task_id} awaiting feedback")

    def unlock_task(self, task_id: str, answer: str | None = None) -> OperationResult:
        """
        ``blocked_awaiting_feedback -> ready`` once a clarification arrives.

        No dependency has to complete for this transition.
        """
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(task, SchedulerStatus.BLOCKED_AWAITING_FEEDBACK)
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            if answer is not None:
                task.metadata["answer"] = answer
            task.question = None
            task.block = None
            task.set_status(SchedulerStatus.READY)
            self._emit("task-unlocked", task_id=task_id)
            self._emit("task-ready", task_id=task_id)
            logger.info(f"Unlocked task: {task_id}")
            return OperationResult.success(task, f"Task {task_id} unlocked")

    def add_manual_hold(self, task_id: str) -> OperationResult:
        """Hold a pending or ready task until explicitly released."""
        with self._lock:
            try:
                task = self._require(task_id)
                self._require_status(
                    task, SchedulerStatus.PENDING, SchedulerStatus.READY
                )
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            self._block(task, BlockReason.MANUAL_HOLD)
            logger.info(f"Added manual hold to {task_id}")
            return OperationResult.success(task, f"Task {task_id} on hold")

    def remove_manual_hold(self, task_id: str) -> OperationResult:
        """Release a manual hold; the task returns to ready or pending."""
        with self._lock:
            try:
                task = self._require(task_id)
                if task.block is None or task.block.reason != BlockReason.MANUAL_HOLD:
                    raise StateError(task_id, task.status.value, "on manual hold")
            except PlannerError as e:
                return self._failed(e, self._tasks.get(task_id))

            task.block = None
            task.set_status(
                SchedulerStatus.PENDING if task.waiting_on else SchedulerStatus.READY
            )
            logger.info(f"Removed manual hold from {task_id}")
            return OperationResult.success(task, f"Task {task_id} released")

    def clear(self) -> None:
        """Drop every task (plan reset)."""
        with self._lock:
            self._tasks.clear()
            self._graph.clear()
            self._seq = 0
            logger.info("Cleared all scheduled tasks")

    def _check_queue_empty(self) -> None:
        active = (
            SchedulerStatus.PENDING,
            SchedulerStatus.READY,
            SchedulerStatus.RUNNING,
        )
        if not any(t.status in active for t in self._tasks.values()):
            self._emit("queue-empty")
