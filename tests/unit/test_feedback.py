"""Unit tests for the feedback calibrator."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from plansmith.planning.feedback import (
    BlockerFeedback,
    BlockerType,
    FeedbackCalibrator,
    FeedbackConfig,
    FeedbackInput,
    TaskFeedback,
)
from plansmith.planning.models import AtomicTask


def feedback(
    task_id: str = "T-1",
    estimated: int = 30,
    actual: int = 30,
    blockers: list[BlockerFeedback] | None = None,
) -> FeedbackInput:
    return FeedbackInput(
        task_id=task_id,
        estimated_minutes=estimated,
        actual_minutes=actual,
        blockers=blockers or [],
    )


@pytest.fixture
def calibrator(clock) -> FeedbackCalibrator:
    return FeedbackCalibrator(clock=clock)


class TestRecordFeedback:
    """Tests for recording outcomes."""

    def test_accuracy_ratio(self, calibrator: FeedbackCalibrator, clock) -> None:
        """Test the stored ratio and timestamp."""
        record = calibrator.record_feedback(feedback(estimated=30, actual=45))

        assert record.accuracy_ratio == 1.5
        assert record.timestamp == clock.now
        assert calibrator.history_size == 1

    def test_zero_estimate(self, calibrator: FeedbackCalibrator) -> None:
        """Test that a zero estimate counts as accurate."""
        assert calibrator.record_feedback(feedback(estimated=0, actual=20)).accuracy_ratio == 1.0

    def test_severe_overrun_queues_adjustment(self, calibrator: FeedbackCalibrator) -> None:
        """Test a task taking three times its estimate."""
        calibrator.record_feedback(feedback(estimated=30, actual=90))

        adjustments = calibrator.get_pending_adjustments()
        assert len(adjustments) == 1
        assert adjustments[0].type == "estimate"
        assert adjustments[0].confidence == 0.8
        assert adjustments[0].affected_tasks == ["T-1"]

    def test_exact_double_is_not_severe(self, calibrator: FeedbackCalibrator) -> None:
        """Test that the overrun threshold is strict."""
        calibrator.record_feedback(feedback(estimated=30, actual=60))
        assert calibrator.get_pending_adjustments() == []

    def test_blocker_time_queues_adjustment(self, calibrator: FeedbackCalibrator) -> None:
        """Test lost time above the blocker threshold."""
        calibrator.record_feedback(
            feedback(
                blockers=[
                    BlockerFeedback(type=BlockerType.EXTERNAL, time_lost_minutes=20),
                    BlockerFeedback(type=BlockerType.UNCLEAR, time_lost_minutes=11),
                ]
            )
        )

        adjustments = calibrator.get_pending_adjustments()
        assert [a.type for a in adjustments] == ["dependency"]
        assert adjustments[0].confidence == 0.6

    def test_blocker_threshold_is_strict(self, calibrator: FeedbackCalibrator) -> None:
        """Test exactly thirty lost minutes."""
        calibrator.record_feedback(
            feedback(blockers=[BlockerFeedback(time_lost_minutes=30)])
        )
        assert calibrator.get_pending_adjustments() == []

    def test_old_records_are_pruned(self, calibrator: FeedbackCalibrator, clock) -> None:
        """Test the retention window."""
        calibrator.record_feedback(feedback(task_id="old"))
        clock.advance(days=31)
        calibrator.record_feedback(feedback(task_id="new"))

        assert [r.task_id for r in calibrator.export_history()] == ["new"]


class TestCalibration:
    """Tests for the estimate multiplier."""

    def test_not_enough_data(self, calibrator: FeedbackCalibrator) -> None:
        """Test the neutral multiplier below min_data_points."""
        for _ in range(4):
            calibrator.record_feedback(feedback(actual=90))
        assert calibrator.calculate_calibration() == 1.0

    def test_upper_bound(self, calibrator: FeedbackCalibrator) -> None:
        """Test clamping large overruns."""
        for _ in range(5):
            calibrator.record_feedback(feedback(actual=90))
        assert calibrator.calculate_calibration() == 1.5

    def test_lower_bound(self, calibrator: FeedbackCalibrator) -> None:
        """Test clamping large underruns."""
        for _ in range(5):
            calibrator.record_feedback(feedback(estimated=40, actual=10))
        assert calibrator.calculate_calibration() == 0.6

    def test_mean_is_rounded(self, calibrator: FeedbackCalibrator) -> None:
        """Test rounding to two decimals."""
        for actual in (30, 30, 30, 40, 40):
            calibrator.record_feedback(feedback(estimated=30, actual=actual))
        assert calibrator.calculate_calibration() == 1.13

    def test_apply_calibration_copies(self, calibrator: FeedbackCalibrator) -> None:
        """Test calibrated copies leave the originals alone."""
        for _ in range(5):
            calibrator.record_feedback(feedback(estimated=30, actual=36))
        tasks = [
            AtomicTask(id="A", title="A", estimate_minutes=30),
            AtomicTask(id="B", title="B", estimate_minutes=55),
        ]

        adjusted = calibrator.apply_calibration(tasks)

        assert [t.estimate_minutes for t in adjusted] == [36, 60]
        assert [t.estimate_minutes for t in tasks] == [30, 55]
        assert adjusted[0] is not tasks[0]

    def test_apply_calibration_clamps_to_config(self, clock) -> None:
        """Test the configured duration window."""
        calibrator = FeedbackCalibrator(
            FeedbackConfig(min_data_points=1, min_duration_minutes=20), clock=clock
        )
        calibrator.record_feedback(feedback(estimated=40, actual=24))

        adjusted = calibrator.apply_calibration(
            [AtomicTask(id="A", title="A", estimate_minutes=15)]
        )
        assert adjusted[0].estimate_minutes == 20

    def test_inverted_duration_window(self) -> None:
        """Test that min above max is rejected."""
        with pytest.raises(ValidationError):
            FeedbackConfig(min_duration_minutes=60, max_duration_minutes=15)


class TestAnalysis:
    """Tests for aggregate analysis."""

    def test_empty_history(self, calibrator: FeedbackCalibrator) -> None:
        """Test analysis without data."""
        analysis = calibrator.analyze_feedback()

        assert analysis.total_tasks == 0
        assert analysis.recommendations == ["Not enough data - collect more feedback"]

    def test_overruns_and_blockers(self, calibrator: FeedbackCalibrator) -> None:
        """Test counts and recommendations."""
        unclear = BlockerFeedback(type=BlockerType.UNCLEAR, time_lost_minutes=5)
        for _ in range(3):
            calibrator.record_feedback(feedback(actual=60, blockers=[unclear]))
        calibrator.record_feedback(feedback(actual=15))

        analysis = calibrator.analyze_feedback()

        assert analysis.total_tasks == 4
        assert analysis.overrun_count == 3
        assert analysis.underrun_count == 1
        assert analysis.blockers_by_type == {"unclear": 3}
        assert analysis.avg_accuracy == pytest.approx(1.625)
        assert analysis.inaccurate_count == 4
        assert any("longer than estimated" in r for r in analysis.recommendations)
        assert any("unclear requirements" in r for r in analysis.recommendations)
        assert any("Over 50%" in r for r in analysis.recommendations)

    @pytest.mark.parametrize(
        "threshold,expected",
        [
            (0.8, 1),
            (0.6, 0),
            (0.9, 2),
        ],
    )
    def test_accuracy_threshold(self, clock, threshold: float, expected: int) -> None:
        """Test flagging records outside the accuracy tolerance."""
        calibrator = FeedbackCalibrator(FeedbackConfig(accuracy_threshold=threshold), clock=clock)
        calibrator.record_feedback(feedback(task_id="A", actual=36))
        calibrator.record_feedback(feedback(task_id="B", actual=45))

        assert calibrator.analyze_feedback().inaccurate_count == expected

    def test_improvement_needs_ten_records(self, calibrator: FeedbackCalibrator) -> None:
        """Test the stable default on small histories."""
        for _ in range(9):
            calibrator.record_feedback(feedback(actual=90))

        stats = calibrator.get_improvement_stats()
        assert stats.trend == "stable"
        assert stats.sample_size == 9

    def test_improving_trend(self, calibrator: FeedbackCalibrator) -> None:
        """Test newer estimates landing closer to actuals."""
        for _ in range(5):
            calibrator.record_feedback(feedback(actual=60))
        for _ in range(5):
            calibrator.record_feedback(feedback(actual=30))

        stats = calibrator.get_improvement_stats()
        assert stats.trend == "improving"
        assert stats.recent_accuracy == 1.0

    def test_declining_trend(self, calibrator: FeedbackCalibrator) -> None:
        """Test newer estimates drifting away from actuals."""
        for _ in range(5):
            calibrator.record_feedback(feedback(actual=30))
        for _ in range(5):
            calibrator.record_feedback(feedback(actual=60))

        assert calibrator.get_improvement_stats().trend == "declining"


class TestAdjustments:
    """Tests for suggestions and the adjustment queue."""

    def test_suggest_adjustments(self, calibrator: FeedbackCalibrator) -> None:
        """Test estimate and blocker suggestions for new tasks."""
        dependency = BlockerFeedback(type=BlockerType.DEPENDENCY, time_lost_minutes=5)
        for _ in range(5):
            calibrator.record_feedback(feedback(actual=45, blockers=[dependency]))
        tasks = [AtomicTask(id="N-1", title="New"), AtomicTask(id="N-2", title="Newer")]

        suggestions = calibrator.suggest_adjustments(tasks)

        assert [s.type for s in suggestions] == ["estimate", "dependency"]
        assert suggestions[0].affected_tasks == ["N-1", "N-2"]
        assert "1.50" in suggestions[0].suggestion
        assert suggestions[0].confidence == 0.25
        assert suggestions[1].data_points == 5

    def test_no_suggestions_without_data(self, calibrator: FeedbackCalibrator) -> None:
        """Test an empty history."""
        assert calibrator.suggest_adjustments([AtomicTask(id="N-1", title="New")]) == []

    def test_apply_adjustment(self, calibrator: FeedbackCalibrator) -> None:
        """Test removing a queued adjustment once."""
        calibrator.record_feedback(feedback(actual=90))
        adjustment = calibrator.get_pending_adjustments()[0]

        assert calibrator.apply_adjustment(adjustment)
        assert not calibrator.apply_adjustment(adjustment)
        assert calibrator.get_pending_adjustments() == []

    def test_pending_adjustments_are_copies(self, calibrator: FeedbackCalibrator) -> None:
        """Test that callers cannot mutate the queue."""
        calibrator.record_feedback(feedback(actual=90))
        calibrator.get_pending_adjustments()[0].affected_tasks.append("X")

        assert calibrator.get_pending_adjustments()[0].affected_tasks == ["T-1"]


class TestHistory:
    """Tests for export, import and clearing."""

    def test_export_import_roundtrip(self, calibrator: FeedbackCalibrator, clock) -> None:
        """Test moving history between calibrators."""
        calibrator.record_feedback(feedback(task_id="A"))
        calibrator.record_feedback(feedback(task_id="B"))

        other = FeedbackCalibrator(clock=clock)
        other.import_history(calibrator.export_history())

        assert other.history_size == 2

    def test_import_prunes_expired(self, calibrator: FeedbackCalibrator, clock) -> None:
        """Test that imported records outside retention are dropped."""
        calibrator.record_feedback(feedback(task_id="A"))
        exported = calibrator.export_history()

        clock.advance(days=40)
        calibrator.import_history(exported)

        assert calibrator.history_size == 0

    def test_import_timestamp_without_timezone(
        self,
        calibrator: FeedbackCalibrator,
        clock,
    ) -> None:
        """Test that persisted records without a timezone are read as UTC."""
        stored = TaskFeedback.model_validate(
            {
                "task_id": "A",
                "estimated_minutes": 30,
                "actual_minutes": 45,
                "accuracy_ratio": 1.5,
                "timestamp": "2023-12-31T12:00:00",
            }
        )
        expired = TaskFeedback(
            task_id="B",
            estimated_minutes=30,
            actual_minutes=30,
            accuracy_ratio=1.0,
            timestamp=clock.now.replace(tzinfo=None) - timedelta(days=31),
        )

        calibrator.import_history([stored, expired])

        history = calibrator.export_history()
        assert [f.task_id for f in history] == ["A"]
        assert history[0].timestamp == datetime(2023, 12, 31, 12, 0, tzinfo=timezone.utc)

    def test_clear_history(self, calibrator: FeedbackCalibrator) -> None:
        """Test dropping history and queued adjustments."""
        calibrator.record_feedback(feedback(actual=90))
        calibrator.clear_history()

        assert calibrator.history_size == 0
        assert calibrator.get_pending_adjustments() == []
