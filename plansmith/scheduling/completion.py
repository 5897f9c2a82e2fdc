"""Completion-report boundary.

A worker reports a finished task with a :class:`CompletionReport`; the
handler validates it, completes the task in the scheduler (unblocking
dependents), and routes it to ``done`` or ``verification``. Every outcome,
including unexpected errors, comes back as a :class:`CompletionResponse`.
"""

from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field

from plansmith.core.errors import InvalidReportError
from plansmith.scheduling.models import SchedulerConfig, SchedulerStatus
from plansmith.scheduling.scheduler import TaskScheduler

MIN_SUMMARY_LENGTH = 10

NextStep = Literal["verification", "done", "investigation", "retry"]


class CompletionReport(BaseModel):
    """What a worker sends when it believes a task is finished."""

    task_id: str = ""
    modified_files: list[str] = Field(default_factory=list)
    summary: str = ""
    confidence: int | None = Field(default=None, ge=0, le=100)
    issues: list[str] | None = None
    actual_minutes: int | None = Field(default=None, ge=0)


class CompletionResponse(BaseModel):
    """Handler verdict returned to the worker."""

    accepted: bool
    next_step: NextStep
    message: str
    new_status: str


def check_report(report: CompletionReport, config: SchedulerConfig) -> None:
    """
    Check a report for required content.

    Args:
        report: Report to check.
        config: Supplies ``require_modified_files``.

    Raises:
        InvalidReportError: On the first missing piece.
    """
    if not report.task_id:
        raise InvalidReportError("Task ID is required")

    if config.require_modified_files and not report.modified_files:
        raise InvalidReportError("Modified files list is required")

    if len(report.summary) < MIN_SUMMARY_LENGTH:
        raise InvalidReportError(
            f"Summary must be at least {MIN_SUMMARY_LENGTH} characters"
        )


def validate_report(report: CompletionReport, config: SchedulerConfig) -> str | None:
    """Return the first validation error message, or None if the report is valid."""
    try:
        check_report(report, config)
    except InvalidReportError as e:
        return e.message
    return None


def parse_report_payload(params: Any) -> CompletionReport | None:
    """
    Build a report from a loosely typed payload.

    Accepts both ``taskId`` and ``task_id`` style keys. Fields of the wrong
    type are treated as absent; a missing or non-string task id yields None.

    Example:
        >>> parse_report_payload({"taskId": "F-1.1", "summary": "Added the endpoint"})
        CompletionReport(task_id='F-1.1', ...)
    """
    if not isinstance(params, dict):
        return None

    def pick(camel: str, snake: str) -> Any:
        return params.get(camel, params.get(snake))

    task_id = pick("taskId", "task_id")
    if not isinstance(task_id, str):
        return None

    files = pick("modifiedFiles", "modified_files")
    summary = params.get("summary")
    confidence = params.get("confidence")
    issues = params.get("issues")
    actual = pick("actualMinutes", "actual_minutes")

    def is_number(value: Any) -> bool:
        return isinstance(value, int | float) and not isinstance(value, bool)

    return CompletionReport(
        task_id=task_id,
        modified_files=[str(f) for f in files] if isinstance(files, list) else [],
        summary=summary if isinstance(summary, str) else "",
        confidence=max(0, min(100, round(confidence))) if is_number(confidence) else None,
        issues=[str(i) for i in issues] if isinstance(issues, list) else None,
        actual_minutes=max(0, round(actual)) if is_number(actual) else None,
    )


def handle_report_task_done(
    scheduler: TaskScheduler,
    report: CompletionReport,
    config: SchedulerConfig | None = None,
) -> CompletionResponse:
    """
    Process a completion report.

    Invalid reports and reports for unknown or non-running tasks are
    rejected without any state change. Accepted reports complete the task,
    which unblocks its dependents, then route it to ``done`` when the
    reported confidence meets the auto-pass threshold, else to
    ``verification``.

    Args:
        scheduler: Scheduler owning the task.
        report: Worker's report.
        config: Overrides the scheduler's own configuration.

    Returns:
        CompletionResponse describing the outcome.
    """
    cfg = config or scheduler.config
    logger.info(f"Processing completion for task {report.task_id or '<missing>'}")

    try:
        with scheduler.lock:
            error = validate_report(report, cfg)
            if error:
                logger.warning(f"Completion report rejected: {error}")
                task = scheduler.get_task(report.task_id) if report.task_id else None
                return CompletionResponse(
                    accepted=False,
                    next_step="retry",
                    message=error,
                    new_status=task.status.value if task else "unknown",
                )

            task = scheduler.get_task(report.task_id)
            if task is None:
                return CompletionResponse(
                    accepted=False,
                    next_step="retry",
                    message=f"Task {report.task_id} not found",
                    new_status="unknown",
                )

            if task.status != SchedulerStatus.RUNNING:
                return CompletionResponse(
                    accepted=False,
                    next_step="retry",
                    message=(
                        f"Task {report.task_id} is not running "
                        f"(status: {task.status.value})"
                    ),
                    new_status=task.status.value,
                )

            completion = scheduler.complete_task(
                report.task_id,
                result={
                    "modified_files": report.modified_files,
                    "summary": report.summary,
                    "confidence": report.confidence,
                    "issues": report.issues,
                },
                actual_minutes=report.actual_minutes,
            )
            if not completion.ok:
                return CompletionResponse(
                    accepted=False,
                    next_step="retry",
                    message=completion.message,
                    new_status=task.status.value,
                )

            auto_pass = (
                report.confidence is not None
                and report.confidence >= cfg.min_confidence_for_auto_pass
            )
            scheduler.route_completed(report.task_id, auto_pass=auto_pass)

            if auto_pass:
                logger.info(
                    f"High confidence ({report.confidence}%), auto-passing "
                    f"{report.task_id}"
                )
                return CompletionResponse(
                    accepted=True,
                    next_step="done",
                    message=(
                        f"Task {report.task_id} completed with high confidence. "
                        "Auto-passed."
                    ),
                    new_status=SchedulerStatus.DONE.value,
                )

            return CompletionResponse(
                accepted=True,
                next_step="verification",
                message=f"Task {report.task_id} completed. Pending verification.",
                new_status=SchedulerStatus.VERIFICATION.value,
            )

    except Exception as e:
        logger.error(f"Error processing completion for {report.task_id}: {e}")
        task = scheduler.get_task(report.task_id) if report.task_id else None
        return CompletionResponse(
            accepted=False,
            next_step="investigation",
            message=f"Error processing completion: {e}",
            new_status=task.status.value if task else "unknown",
        )
