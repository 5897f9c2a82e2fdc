"""Planning context - one plan's components behind a single lock.

Each plan gets its own decomposer, priority engine, scheduler and
calibrator. Nothing is shared through module globals, so independent
plans (and tests) never see each other's state.
"""

from collections.abc import Callable
from datetime import datetime, timezone

import anyio
from loguru import logger

from plansmith.core.config import Settings, get_settings
from plansmith.planning.critical_path import CriticalPathAnalyzer
from plansmith.planning.decomposer import TaskDecomposer
from plansmith.planning.feedback import FeedbackCalibrator, FeedbackInput
from plansmith.planning.generation import AnthropicTextGenerator, TextGenerator
from plansmith.planning.models import DecompositionResult, Feature, PriorityResult
from plansmith.planning.priority import PriorityEngine
from plansmith.scheduling.completion import (
    CompletionReport,
    CompletionResponse,
    handle_report_task_done,
)
from plansmith.scheduling.scheduler import TaskScheduler


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanningContext:
    """
    Caller-owned registry for one plan.

    Planning and completion handling run under an ``anyio.Lock`` so a
    decomposition in flight never interleaves with queue mutations of the
    same plan.

    Example:
        >>> context = PlanningContext.from_settings(get_settings())
        >>> result = await context.plan_feature(
        ...     Feature(id="F-1", description="Password reset by email")
        ... )
        >>> task = context.scheduler.claim_next_task()
    """

    def __init__(
        self,
        decomposer: TaskDecomposer,
        priority_engine: PriorityEngine | None = None,
        scheduler: TaskScheduler | None = None,
        calibrator: FeedbackCalibrator | None = None,
        analyzer: CriticalPathAnalyzer | None = None,
    ) -> None:
        self.analyzer = analyzer or decomposer.analyzer
        self.decomposer = decomposer
        self.priority_engine = priority_engine or PriorityEngine(analyzer=self.analyzer)
        self.scheduler = scheduler or TaskScheduler()
        self.calibrator = calibrator or FeedbackCalibrator()
        self.priorities: dict[str, PriorityResult] = {}
        self._lock = anyio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        generator: TextGenerator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "PlanningContext":
        """
        Build a context wired from settings.

        Args:
            settings: Settings (cached environment settings if omitted).
            generator: Text generator (Anthropic generator if omitted).
            clock: Time source shared by scheduler and calibrator.

        Returns:
            New, independent PlanningContext.
        """
        settings = settings or get_settings()
        if generator is None:
            generator = AnthropicTextGenerator(
                api_key=settings.anthropic_api_key,
                model=settings.generation_model,
                max_tokens=settings.generation_max_tokens,
            )

        analyzer = CriticalPathAnalyzer()
        return cls(
            decomposer=TaskDecomposer(
                generator, settings.decomposition_config(), analyzer
            ),
            priority_engine=PriorityEngine(settings.priority_config(), analyzer),
            scheduler=TaskScheduler(settings.scheduler_config(), clock=clock),
            calibrator=FeedbackCalibrator(settings.feedback_config(), clock=clock),
            analyzer=analyzer,
        )

    async def plan_feature(
        self,
        feature: Feature,
        context: str | None = None,
        use_calibration: bool = True,
    ) -> DecompositionResult:
        """
        Decompose a feature, rank its tasks and queue them.

        Args:
            feature: Feature to plan.
            context: Extra prompt context.
            use_calibration: Apply the calibrator's multiplier to estimates.

        Returns:
            The DecompositionResult, with priorities written onto its tasks.
        """
        async with self._lock:
            calibration = None
            if use_calibration:
                factor = self.calibrator.calculate_calibration()
                if factor != 1.0:
                    calibration = factor
                    logger.info(f"Applying estimate calibration x{factor}")

            result = await self.decomposer.decompose(feature, context, calibration)

            if result.cycles:
                logger.error(
                    f"Plan for {feature.id} has {len(result.cycles)} dependency "
                    "cycles; affected tasks will not be scheduled"
                )

            self.priorities.update(
                self.priority_engine.apply_priorities(
                    result.tasks, result.dependency_graph
                )
            )
            self.scheduler.load_plan(result)

            logger.info(
                f"Planned {feature.id}: {len(result.tasks)} tasks, "
                f"critical path {result.critical_path}"
            )
            return result

    async def record_completion(self, report: CompletionReport) -> CompletionResponse:
        """
        Handle a completion report and feed accepted effort to the calibrator.

        Args:
            report: Worker's completion report.

        Returns:
            CompletionResponse from the completion handler.
        """
        async with self._lock:
            response = handle_report_task_done(self.scheduler, report)

            if response.accepted and report.actual_minutes is not None:
                task = self.scheduler.get_task(report.task_id)
                estimated = task.estimate_minutes if task and task.estimate_minutes else 0
                self.calibrator.record_feedback(
                    FeedbackInput(
                        task_id=report.task_id,
                        estimated_minutes=estimated,
                        actual_minutes=report.actual_minutes,
                        completed=True,
                    )
                )

            return response
