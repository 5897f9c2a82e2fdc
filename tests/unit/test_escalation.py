"""Unit tests for priority ordering and escalation."""

from datetime import datetime, timedelta, timezone

import pytest

from plansmith.planning.models import PriorityLevel
from plansmith.scheduling.escalation import (
    effective_priority,
    filter_by_priority,
    priority_counts,
    priority_summary,
    should_preempt,
    sort_by_priority,
)
from plansmith.scheduling.models import ScheduledTask

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def scheduled(task_id: str, priority: PriorityLevel, hours_ago: float = 0, seq: int = 0) -> ScheduledTask:
    return ScheduledTask(
        id=task_id,
        priority=priority,
        created_at=CREATED - timedelta(hours=hours_ago),
        seq=seq,
    )


class TestEffectivePriority:
    """Tests for waiting-time escalation."""

    @pytest.mark.parametrize(
        ("level", "hours", "expected"),
        [
            (PriorityLevel.P2, 0, PriorityLevel.P2),
            (PriorityLevel.P2, 24, PriorityLevel.P2),
            (PriorityLevel.P2, 25, PriorityLevel.P1),
            (PriorityLevel.P3, 47, PriorityLevel.P2),
            (PriorityLevel.P1, 49, PriorityLevel.P0),
            (PriorityLevel.P3, 49, PriorityLevel.P0),
            (PriorityLevel.P0, 100, PriorityLevel.P0),
        ],
    )
    def test_escalation(self, level: PriorityLevel, hours: float, expected: PriorityLevel) -> None:
        """Test the one-tier and forced-P0 thresholds."""
        now = CREATED + timedelta(hours=hours)
        assert effective_priority(level, CREATED, now) == expected

    def test_custom_thresholds(self) -> None:
        """Test configurable windows."""
        now = CREATED + timedelta(hours=2)
        assert effective_priority(
            PriorityLevel.P3, CREATED, now, escalation_hours=1, force_p0_hours=1.5
        ) == PriorityLevel.P0


class TestOrdering:
    """Tests for sorting and filtering."""

    def test_sort_by_priority_then_fifo(self) -> None:
        """Test tier order, then creation time."""
        tasks = [
            scheduled("low", PriorityLevel.P3, seq=0),
            scheduled("late-high", PriorityLevel.P1, hours_ago=1, seq=1),
            scheduled("early-high", PriorityLevel.P1, hours_ago=2, seq=2),
        ]
        assert [t.id for t in sort_by_priority(tasks)] == ["early-high", "late-high", "low"]

    def test_sort_with_escalation(self) -> None:
        """Test that an old P1 overtakes a fresh P0 tier-mate after 48h."""
        now = CREATED + timedelta(hours=49)
        tasks = [
            scheduled("fresh-p0", PriorityLevel.P0, hours_ago=-48, seq=1),
            scheduled("old-p1", PriorityLevel.P1, seq=0),
        ]
        assert [t.id for t in sort_by_priority(tasks, now)] == ["old-p1", "fresh-p0"]

    def test_filter_by_priority(self) -> None:
        """Test level filters."""
        tasks = [scheduled(level.value, level) for level in PriorityLevel]

        assert [t.id for t in filter_by_priority(tasks, max_priority=PriorityLevel.P1)] == [
            "P0",
            "P1",
        ]
        assert [t.id for t in filter_by_priority(tasks, min_priority=PriorityLevel.P2)] == [
            "P2",
            "P3",
        ]
        assert [
            t.id
            for t in filter_by_priority(
                tasks, include=[PriorityLevel.P1, PriorityLevel.P3], exclude=[PriorityLevel.P3]
            )
        ] == ["P1"]


class TestPreemption:
    """Tests for preemption rules."""

    def test_only_p0_preempts_low_work(self) -> None:
        """Test the preemption matrix edges."""
        p0 = scheduled("a", PriorityLevel.P0)

        assert should_preempt(p0, scheduled("b", PriorityLevel.P2))
        assert should_preempt(p0, scheduled("c", PriorityLevel.P3))
        assert not should_preempt(p0, scheduled("d", PriorityLevel.P1))
        assert not should_preempt(scheduled("e", PriorityLevel.P1), scheduled("f", PriorityLevel.P3))


class TestSummary:
    """Tests for priority counting."""

    def test_counts_and_summary(self) -> None:
        """Test per-level counts and the text summary."""
        tasks = [
            scheduled("a", PriorityLevel.P0),
            scheduled("b", PriorityLevel.P0),
            scheduled("c", PriorityLevel.P2),
        ]

        counts = priority_counts(tasks)
        assert counts[PriorityLevel.P0] == 2
        assert counts[PriorityLevel.P1] == 0

        summary = priority_summary(tasks)
        assert "P0: 2" in summary
        assert "Total: 3" in summary
