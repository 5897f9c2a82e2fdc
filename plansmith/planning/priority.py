"""Task priority scoring.

Each task gets a 0-100 score from a weighted sum of factors and is
classified P0-P3 by fixed thresholds. Factors not supplied by the caller
are inferred: dependents from ``blocks``, impact and risk from keyword
rule tables over the title and description.
"""

import math
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from plansmith.planning.critical_path import CriticalPathAnalyzer
from plansmith.planning.graph import DependencyGraph
from plansmith.planning.models import (
    PRIORITY_DESCRIPTIONS,
    AtomicTask,
    PriorityFactors,
    PriorityLevel,
    PriorityResult,
    PriorityStatistics,
)

# =============================================================================
# KEYWORD RULES
# =============================================================================


class KeywordRule(NamedTuple):
    """Adds ``delta`` once if any of ``keywords`` occurs in the text."""

    keywords: tuple[str, ...]
    delta: int


BASELINE_LEVEL = 2

IMPACT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(("user",), 1),
    KeywordRule(("critical",), 2),
    KeywordRule(("blocking",), 1),
    KeywordRule(("crash", "error"), 1),
    KeywordRule(("security",), 2),
    KeywordRule(("internal",), -1),
    KeywordRule(("refactor",), -1),
    KeywordRule(("cleanup",), -1),
)

RISK_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(("database",), 1),
    KeywordRule(("migration",), 2),
    KeywordRule(("security",), 1),
    KeywordRule(("auth",), 1),
    KeywordRule(("production",), 1),
    KeywordRule(("breaking",), 1),
    KeywordRule(("test",), -1),
    KeywordRule(("document",), -1),
    KeywordRule(("style", "css"), -1),
)


def score_keywords(
    text: str,
    rules: Sequence[KeywordRule],
    baseline: int = BASELINE_LEVEL,
) -> int:
    """
    Apply a rule table to text and clamp the result to 1..5.

    Args:
        text: Text to scan (matched case-insensitively as substrings).
        rules: Ordered rule table.
        baseline: Starting level.

    Returns:
        Level between 1 and 5.

    Example:
        >>> score_keywords("Fix security hole", IMPACT_RULES)
        4
    """
    lowered = text.lower()
    level = baseline
    for rule in rules:
        if any(keyword in lowered for keyword in rule.keywords):
            level += rule.delta
    return max(1, min(5, level))


# =============================================================================
# ENGINE
# =============================================================================


class PriorityConfig(BaseModel):
    """Scoring weights. Defaults reproduce the nominal point ranges."""

    model_config = ConfigDict(frozen=True)

    dependency_weight: float = Field(default=0.25, ge=0.0)
    critical_path_weight: float = Field(default=0.2, ge=0.0)
    user_impact_weight: float = Field(default=0.2, ge=0.0)
    technical_risk_weight: float = Field(default=0.15, ge=0.0)
    deadline_weight: float = Field(default=0.2, ge=0.0)
    quick_win_boost: bool = True


class PriorityEngine:
    """
    Score and rank tasks.

    Example:
        >>> engine = PriorityEngine()
        >>> result = engine.assign_priority(
        ...     task,
        ...     {"is_on_critical_path": True, "has_deadline": True, "dependent_count": 5},
        ... )
        >>> result.priority
        <PriorityLevel.P0: 'P0'>
    """

    def __init__(
        self,
        config: PriorityConfig | None = None,
        analyzer: CriticalPathAnalyzer | None = None,
    ) -> None:
        self.config = config or PriorityConfig()
        self.analyzer = analyzer or CriticalPathAnalyzer()

    def assign_priority(
        self,
        task: AtomicTask,
        factors: PriorityFactors | Mapping[str, Any] | None = None,
    ) -> PriorityResult:
        """
        Score a single task.

        Args:
            task: Task to score.
            factors: Complete factors, or a partial mapping of overrides.
                Missing factors are inferred from the task.

        Returns:
            PriorityResult with level, score, factors and reasons.
        """
        full = factors if isinstance(factors, PriorityFactors) else self.infer_factors(task, factors)
        score = self.calculate_score(full)
        priority = self.score_to_priority(score)
        reasons = self.generate_reasons(full, priority)

        logger.debug(f"Task {task.id} -> {priority.value} (score: {score})")

        return PriorityResult(
            priority=priority,
            score=score,
            factors=full,
            reasons=reasons,
        )

    def assign_batch(
        self,
        tasks: Sequence[AtomicTask],
        graph: DependencyGraph | None = None,
    ) -> dict[str, PriorityResult]:
        """
        Score every task against shared dependent counts and critical path.

        Both shared values are computed once for the whole set.

        Args:
            tasks: Tasks to score.
            graph: Dependency graph (built from the tasks if omitted).

        Returns:
            Mapping of task id to PriorityResult, in input order.
        """
        logger.info(f"Assigning priorities to {len(tasks)} tasks")

        if graph is None:
            graph = DependencyGraph.from_tasks(tasks)

        task_ids = {task.id for task in tasks}
        dependent_counts = {
            task.id: sum(1 for d in graph.get_dependents(task.id) if d in task_ids)
            for task in tasks
        }
        critical = self.analyzer.critical_task_ids(tasks, graph)

        return {
            task.id: self.assign_priority(
                task,
                {
                    "dependent_count": dependent_counts[task.id],
                    "is_on_critical_path": task.id in critical,
                    "estimate_minutes": task.estimate_minutes,
                },
            )
            for task in tasks
        }

    def apply_priorities(
        self,
        tasks: Sequence[AtomicTask],
        graph: DependencyGraph | None = None,
    ) -> dict[str, PriorityResult]:
        """Batch-score tasks and write the levels back onto them."""
        results = self.assign_batch(tasks, graph)
        for task in tasks:
            task.priority = results[task.id].priority
        return results

    def reorder_by_priority(self, tasks: Sequence[AtomicTask]) -> list[AtomicTask]:
        """New list sorted by score, highest first; ties keep input order."""
        results = self.assign_batch(tasks)
        return sorted(tasks, key=lambda t: results[t.id].score, reverse=True)

    def get_statistics(self, tasks: Sequence[AtomicTask]) -> PriorityStatistics:
        """Count tasks per level and average their scores."""
        results = self.assign_batch(tasks)
        counts = {level: 0 for level in PriorityLevel}
        for result in results.values():
            counts[result.priority] += 1

        average = (
            round(sum(r.score for r in results.values()) / len(results), 2)
            if results
            else 0.0
        )

        return PriorityStatistics(
            p0=counts[PriorityLevel.P0],
            p1=counts[PriorityLevel.P1],
            p2=counts[PriorityLevel.P2],
            p3=counts[PriorityLevel.P3],
            average_score=average,
        )

    # =========================================================================
    # SCORING
    # =========================================================================

    def infer_factors(
        self,
        task: AtomicTask,
        provided: Mapping[str, Any] | None = None,
    ) -> PriorityFactors:
        """Fill in missing factors from the task text and fields."""
        provided = dict(provided or {})
        text = f"{task.title} {task.description}".lower()

        inferred: dict[str, Any] = {
            "dependent_count": len(task.blocks),
            "is_on_critical_path": False,
            "blocks_milestone": "milestone" in text,
            "user_impact": score_keywords(text, IMPACT_RULES),
            "technical_risk": score_keywords(text, RISK_RULES),
            "is_bug_fix": "fix" in text or "bug" in text,
            "has_deadline": "deadline" in text,
            "estimate_minutes": task.estimate_minutes or 30,
        }
        inferred.update(provided)
        return PriorityFactors(**inferred)

    def calculate_score(self, factors: PriorityFactors) -> int:
        """Weighted score clamped to 0..100 and rounded half up."""
        cfg = self.config
        score = 0.0

        score += min(25, factors.dependent_count * 5) * (cfg.dependency_weight / 0.25)

        if factors.is_on_critical_path:
            score += 20 * (cfg.critical_path_weight / 0.2)
        if factors.blocks_milestone:
            score += 15

        score += (factors.user_impact / 5) * 20 * (cfg.user_impact_weight / 0.2)
        score += (factors.technical_risk / 5) * 15 * (cfg.technical_risk_weight / 0.15)

        if factors.has_deadline:
            score += 20 * (cfg.deadline_weight / 0.2)
        if factors.is_bug_fix:
            score += 10

        if (
            cfg.quick_win_boost
            and factors.estimate_minutes <= 20
            and factors.user_impact >= 3
        ):
            score += 10

        return int(math.floor(max(0.0, min(100.0, score)) + 0.5))

    @staticmethod
    def score_to_priority(score: int) -> PriorityLevel:
        if score >= 70:
            return PriorityLevel.P0
        if score >= 50:
            return PriorityLevel.P1
        if score >= 30:
            return PriorityLevel.P2
        return PriorityLevel.P3

    @staticmethod
    def generate_reasons(
        factors: PriorityFactors,
        priority: PriorityLevel,
    ) -> list[str]:
        """Human-readable reasons, in a fixed rule order."""
        reasons: list[str] = []

        if factors.dependent_count >= 3:
            reasons.append(f"Blocks {factors.dependent_count} other tasks")
        if factors.is_on_critical_path:
            reasons.append("On critical path")
        if factors.blocks_milestone:
            reasons.append("Blocks milestone")
        if factors.is_bug_fix:
            reasons.append("Bug fix")
        if factors.has_deadline:
            reasons.append("Has deadline")
        if factors.user_impact >= 4:
            reasons.append("High user impact")
        if factors.technical_risk >= 4:
            reasons.append("High technical risk")
        if factors.estimate_minutes <= 20 and priority != PriorityLevel.P3:
            reasons.append("Quick win")

        if not reasons:
            reasons.append(PRIORITY_DESCRIPTIONS[priority])

        return reasons
