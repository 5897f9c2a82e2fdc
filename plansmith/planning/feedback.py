"""Estimate calibration from completion feedback.

The calibrator keeps an append-only history of estimated vs. actual
effort, pruned by age, and turns it into:

- a bounded calibration multiplier for future estimates,
- queued plan adjustments raised by individual outliers,
- aggregate analysis with recommendations and an accuracy trend.
"""

from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from plansmith.planning.models import AtomicTask

CALIBRATION_MIN = 0.6
CALIBRATION_MAX = 1.5
SEVERE_OVERRUN_RATIO = 2.0
BLOCKER_MINUTES_THRESHOLD = 30
TREND_MIN_RECORDS = 10
TREND_BAND = 0.1

# =============================================================================
# MODELS
# =============================================================================


class BlockerType(str, Enum):
    """Classified cause of lost time."""

    DEPENDENCY = "dependency"
    UNCLEAR = "unclear"
    TECHNICAL = "technical"
    EXTERNAL = "external"
    OTHER = "other"


class BlockerFeedback(BaseModel):
    """One blocker hit while working on a task."""

    type: BlockerType = BlockerType.OTHER
    description: str = ""
    resolution: str = ""
    time_lost_minutes: int = Field(default=0, ge=0)


class FeedbackInput(BaseModel):
    """What a caller reports after finishing (or abandoning) a task."""

    task_id: str = Field(..., min_length=1)
    estimated_minutes: int
    actual_minutes: int = Field(..., ge=0)
    completed: bool = True
    blockers: list[BlockerFeedback] = Field(default_factory=list)
    positives: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)


class TaskFeedback(FeedbackInput):
    """Recorded feedback with derived accuracy and timestamp."""

    accuracy_ratio: float
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Treat timestamps without a timezone as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PlanAdjustment(BaseModel):
    """Suggested change to future planning."""

    type: Literal["estimate", "dependency"]
    affected_tasks: list[str] = Field(default_factory=list)
    suggestion: str
    confidence: float = Field(ge=0.0, le=1.0)
    data_points: int = Field(default=1, ge=0)


class FeedbackAnalysis(BaseModel):
    """Aggregate view of the feedback history."""

    total_tasks: int = 0
    avg_accuracy: float = 1.0
    blockers_by_type: dict[str, int] = Field(default_factory=dict)
    overrun_count: int = 0
    underrun_count: int = 0
    inaccurate_count: int = 0
    suggested_calibration: float = 1.0
    recommendations: list[str] = Field(default_factory=list)


class ImprovementStats(BaseModel):
    """Trend of estimate accuracy between older and newer feedback."""

    trend: Literal["improving", "stable", "declining"] = "stable"
    recent_accuracy: float = 1.0
    sample_size: int = 0


class FeedbackConfig(BaseModel):
    """Calibrator tuning."""

    model_config = ConfigDict(frozen=True)

    min_data_points: int = Field(default=5, ge=1)
    accuracy_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    history_retention_days: int = Field(default=30, ge=1)
    min_duration_minutes: int = Field(default=15, ge=1)
    max_duration_minutes: int = Field(default=60, ge=1)

    @model_validator(mode="after")
    def validate_duration_bounds(self) -> "FeedbackConfig":
        """Ensure the estimate window is not inverted."""
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError(
                "min_duration_minutes must not exceed max_duration_minutes"
            )
        return self


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _accuracy_score(ratio: float) -> float:
    """Map an actual/estimate ratio onto 0..1, where 1.0 is a perfect estimate."""
    if ratio <= 0:
        return 0.0
    return min(ratio, 1 / ratio)


# =============================================================================
# CALIBRATOR
# =============================================================================


class FeedbackCalibrator:
    """
    Learn from estimate-vs-actual outcomes.

    Example:
        >>> calibrator = FeedbackCalibrator()
        >>> calibrator.record_feedback(
        ...     FeedbackInput(task_id="F-1.1", estimated_minutes=30, actual_minutes=90)
        ... ).accuracy_ratio
        3.0
        >>> calibrator.get_pending_adjustments()[0].type
        'estimate'
    """

    def __init__(
        self,
        config: FeedbackConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or FeedbackConfig()
        self._clock = clock
        self._history: list[TaskFeedback] = []
        self._adjustments: list[PlanAdjustment] = []

    @property
    def history_size(self) -> int:
        return len(self._history)

    def record_feedback(self, feedback: FeedbackInput) -> TaskFeedback:
        """
        Record one outcome and queue any adjustment it warrants.

        Args:
            feedback: Reported outcome.

        Returns:
            The stored TaskFeedback.
        """
        ratio = (
            feedback.actual_minutes / feedback.estimated_minutes
            if feedback.estimated_minutes > 0
            else 1.0
        )
        record = TaskFeedback(
            **feedback.model_dump(),
            accuracy_ratio=ratio,
            timestamp=self._clock(),
        )

        self._history.append(record)
        self._prune()
        self._check_for_adjustments(record)

        logger.info(
            f"Recorded feedback for {record.task_id}: "
            f"{record.actual_minutes}/{record.estimated_minutes} min "
            f"({round(ratio * 100)}% of estimate)"
        )
        return record

    def _check_for_adjustments(self, record: TaskFeedback) -> None:
        if record.accuracy_ratio > SEVERE_OVERRUN_RATIO:
            self._adjustments.append(
                PlanAdjustment(
                    type="estimate",
                    affected_tasks=[record.task_id],
                    suggestion=(
                        f"Task {record.task_id} took "
                        f"{round(record.accuracy_ratio * 100)}% of estimate - "
                        "revisit estimates for similar tasks"
                    ),
                    confidence=0.8,
                    data_points=1,
                )
            )

        lost = sum(b.time_lost_minutes for b in record.blockers)
        if lost > BLOCKER_MINUTES_THRESHOLD:
            self._adjustments.append(
                PlanAdjustment(
                    type="dependency",
                    affected_tasks=[record.task_id],
                    suggestion=(
                        f"{lost} min lost to blockers on {record.task_id} - "
                        "add buffer for similar tasks"
                    ),
                    confidence=0.6,
                    data_points=1,
                )
            )

    def _prune(self) -> None:
        cutoff = self._clock() - timedelta(days=self.config.history_retention_days)
        before = len(self._history)
        self._history = [f for f in self._history if f.timestamp >= cutoff]
        if len(self._history) != before:
            logger.debug(f"Pruned {before - len(self._history)} old feedback records")

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    def calculate_calibration(self) -> float:
        """Mean accuracy ratio clamped to 0.6..1.5, or 1.0 without enough data."""
        if len(self._history) < self.config.min_data_points:
            return 1.0

        mean = sum(f.accuracy_ratio for f in self._history) / len(self._history)
        return round(max(CALIBRATION_MIN, min(CALIBRATION_MAX, mean)), 2)

    def analyze_feedback(self) -> FeedbackAnalysis:
        """Aggregate the whole history."""
        if not self._history:
            return FeedbackAnalysis(
                recommendations=["Not enough data - collect more feedback"]
            )

        total = len(self._history)
        avg = sum(f.accuracy_ratio for f in self._history) / total
        overruns = sum(1 for f in self._history if f.accuracy_ratio > 1.1)
        underruns = sum(1 for f in self._history if f.accuracy_ratio < 0.9)
        inaccurate = sum(
            1
            for f in self._history
            if _accuracy_score(f.accuracy_ratio) < self.config.accuracy_threshold
        )
        blockers = Counter(
            b.type.value for f in self._history for b in f.blockers
        )

        return FeedbackAnalysis(
            total_tasks=total,
            avg_accuracy=avg,
            blockers_by_type=dict(blockers),
            overrun_count=overruns,
            underrun_count=underruns,
            inaccurate_count=inaccurate,
            suggested_calibration=self.calculate_calibration(),
            recommendations=self._recommendations(avg, blockers, overruns, total),
        )

    @staticmethod
    def _recommendations(
        avg: float,
        blockers: Counter,
        overruns: int,
        total: int,
    ) -> list[str]:
        recommendations: list[str] = []

        if avg > 1.3:
            recommendations.append(
                "Tasks consistently take longer than estimated - "
                "consider increasing base estimates"
            )
        elif avg < 0.7:
            recommendations.append(
                "Tasks often complete faster than estimated - "
                "consider decreasing estimates"
            )

        if blockers[BlockerType.UNCLEAR.value] >= 3:
            recommendations.append(
                "Many tasks blocked by unclear requirements - "
                "improve upfront clarification"
            )
        if blockers[BlockerType.DEPENDENCY.value] >= 3:
            recommendations.append(
                "Dependency blockers common - review task ordering and dependencies"
            )

        if overruns > total * 0.5:
            recommendations.append(
                "Over 50% of tasks overrun - consider smaller task decomposition"
            )

        return recommendations

    def get_improvement_stats(self) -> ImprovementStats:
        """
        Compare the older and newer halves of the history.

        A half counts as better when its mean ratio is closer to 1.0 by more
        than 0.1. Fewer than 10 records always report ``stable``.
        """
        total = len(self._history)
        if total < TREND_MIN_RECORDS:
            return ImprovementStats(sample_size=total)

        midpoint = total // 2
        first = self._history[:midpoint]
        second = self._history[midpoint:]

        first_avg = sum(f.accuracy_ratio for f in first) / len(first)
        second_avg = sum(f.accuracy_ratio for f in second) / len(second)
        first_distance = abs(1 - first_avg)
        second_distance = abs(1 - second_avg)

        if second_distance < first_distance - TREND_BAND:
            trend = "improving"
        elif second_distance > first_distance + TREND_BAND:
            trend = "declining"
        else:
            trend = "stable"

        return ImprovementStats(
            trend=trend,
            recent_accuracy=second_avg,
            sample_size=total,
        )

    # =========================================================================
    # ADJUSTMENTS
    # =========================================================================

    def suggest_adjustments(self, tasks: Sequence[AtomicTask]) -> list[PlanAdjustment]:
        """
        Suggestions for a fresh batch of tasks, based on the whole history.

        Args:
            tasks: Newly planned tasks.

        Returns:
            Estimate suggestion (if calibration differs from 1.0) followed by
            one dependency suggestion per frequent blocker type.
        """
        analysis = self.analyze_feedback()
        suggestions: list[PlanAdjustment] = []

        if (
            analysis.total_tasks >= self.config.min_data_points
            and analysis.suggested_calibration != 1.0
        ):
            suggestions.append(
                PlanAdjustment(
                    type="estimate",
                    affected_tasks=[task.id for task in tasks],
                    suggestion=(
                        f"Multiply estimates by "
                        f"{analysis.suggested_calibration:.2f} based on "
                        "historical data"
                    ),
                    confidence=min(0.9, analysis.total_tasks / 20),
                    data_points=analysis.total_tasks,
                )
            )

        frequent = sorted(
            analysis.blockers_by_type.items(),
            key=lambda item: item[1],
            reverse=True,
        )
        for blocker_type, count in frequent:
            if count < 3:
                continue
            suggestions.append(
                PlanAdjustment(
                    type="dependency",
                    suggestion=(
                        f'Consider adding buffer for "{blocker_type}" blockers '
                        f"(occurred {count} times)"
                    ),
                    confidence=min(0.9, count / 20),
                    data_points=count,
                )
            )

        return suggestions

    def apply_calibration(self, tasks: Sequence[AtomicTask]) -> list[AtomicTask]:
        """
        Copies of ``tasks`` with calibrated, clamped estimates.

        The input tasks are not modified. With a calibration of exactly 1.0
        the copies carry the original estimates.
        """
        calibration = self.calculate_calibration()
        adjusted: list[AtomicTask] = []
        for task in tasks:
            minutes = int(task.estimate_minutes * calibration + 0.5)
            minutes = max(
                self.config.min_duration_minutes,
                min(self.config.max_duration_minutes, minutes),
            )
            adjusted.append(task.model_copy(update={"estimate_minutes": minutes}, deep=True))
        return adjusted

    def get_pending_adjustments(self) -> list[PlanAdjustment]:
        """Queued adjustments (a copy; mutating it does not affect the queue)."""
        return [adj.model_copy(deep=True) for adj in self._adjustments]

    def apply_adjustment(self, adjustment: PlanAdjustment) -> bool:
        """
        Remove a queued adjustment once it has been acted upon.

        Returns:
            True if a matching adjustment was queued.
        """
        try:
            self._adjustments.remove(adjustment)
        except ValueError:
            logger.debug(f"Adjustment not queued: {adjustment.suggestion}")
            return False

        logger.info(f"Applied adjustment: {adjustment.type} - {adjustment.suggestion}")
        return True

    # =========================================================================
    # HISTORY
    # =========================================================================

    def export_history(self) -> list[TaskFeedback]:
        """Deep copy of the history."""
        return [record.model_copy(deep=True) for record in self._history]

    def import_history(self, history: Sequence[TaskFeedback]) -> None:
        """Replace the history with copies of ``history``, then prune."""
        self._history = [record.model_copy(deep=True) for record in history]
        self._prune()
        logger.info(f"Imported {len(history)} feedback records")

    def clear_history(self) -> None:
        """Drop all history and queued adjustments."""
        self._history = []
        self._adjustments = []
        logger.info("Feedback history cleared")
