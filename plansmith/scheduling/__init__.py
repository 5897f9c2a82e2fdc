"""Scheduling - task lifecycle, cascading unblock and completion reports."""

from plansmith.scheduling.completion import (
    CompletionReport,
    CompletionResponse,
    check_report,
    handle_report_task_done,
    parse_report_payload,
    validate_report,
)
from plansmith.scheduling.escalation import (
    effective_priority,
    filter_by_priority,
    priority_summary,
    should_preempt,
    sort_by_priority,
)
from plansmith.scheduling.models import (
    BlockInfo,
    BlockReason,
    OperationResult,
    QueueStats,
    ScheduledTask,
    SchedulerConfig,
    SchedulerStatus,
)
from plansmith.scheduling.scheduler import TaskScheduler

__all__ = [
    # Models
    "BlockInfo",
    "BlockReason",
    "OperationResult",
    "QueueStats",
    "ScheduledTask",
    "SchedulerConfig",
    "SchedulerStatus",
    # Scheduler
    "TaskScheduler",
    # Escalation
    "effective_priority",
    "filter_by_priority",
    "priority_summary",
    "should_preempt",
    "sort_by_priority",
    # Completion
    "CompletionReport",
    "CompletionResponse",
    "check_report",
    "handle_report_task_done",
    "parse_report_payload",
    "validate_report",
]
