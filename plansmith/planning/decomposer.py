"""Feature decomposition into atomic tasks.

The decomposer asks a :class:`TextGenerator` for a plan written in a small
block grammar, parses it, resolves ordinal ``DEPENDS_ON`` references into
task ids, and always returns a usable result: if generation fails or yields
nothing parsable, a single fallback task is returned instead.

Block grammar (one block per task, keywords case-insensitive)::

    TASK: <title>
    DESCRIPTION: <text>
    ESTIMATE: <minutes>
    DEPENDS_ON: <task numbers, or "none">
    PRIORITY: P0|P1|P2|P3
    ACCEPTANCE_CRITERIA:
    - <criterion>
    FILES: <comma separated paths>
    PATTERNS: <comma separated patterns>
"""

import re

import anyio
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from plansmith.core.errors import GenerationFailure
from plansmith.planning.critical_path import CriticalPathAnalyzer
from plansmith.planning.cycles import detect_cycles
from plansmith.planning.generation import GenerationOptions, TextGenerator
from plansmith.planning.graph import DependencyGraph
from plansmith.planning.models import (
    AtomicTask,
    DecompositionResult,
    Feature,
    PriorityLevel,
    TaskStatus,
    link_blocks,
)

FALLBACK_ESTIMATE_MINUTES = 30
FALLBACK_CRITERIA = (
    "Feature is implemented as described",
    "All tests pass",
    "Code follows existing patterns",
)

_BLOCK_SPLIT = re.compile(r"(?=TASK:)", re.IGNORECASE)
_TITLE = re.compile(r"TASK:[ \t]*(.+?)[ \t]*(?:\n|DESCRIPTION:|$)", re.IGNORECASE)
_DESCRIPTION = re.compile(
    r"DESCRIPTION:[ \t]*(.+?)[ \t]*(?:\n|ESTIMATE:|$)",
    re.IGNORECASE | re.DOTALL,
)
_ESTIMATE = re.compile(r"ESTIMATE:\s*(\d+)", re.IGNORECASE)
_DEPENDS = re.compile(r"DEPENDS_ON:[ \t]*(.+?)(?:\n|PRIORITY:|$)", re.IGNORECASE)
_PRIORITY = re.compile(r"PRIORITY:\s*(P[0-3])", re.IGNORECASE)
_CRITERIA = re.compile(
    r"ACCEPTANCE_CRITERIA:(.*?)(?=FILES:|PATTERNS:|$)",
    re.IGNORECASE | re.DOTALL,
)
_FILES = re.compile(r"FILES:\s*(.+?)(?:\n|PATTERNS:|$)", re.IGNORECASE | re.DOTALL)
_PATTERNS = re.compile(r"PATTERNS:\s*(.+?)$", re.IGNORECASE | re.DOTALL)
_CHECKBOX = re.compile(r"^\[[ xX]?\]\s*")


class DecompositionConfig(BaseModel):
    """Decomposer tuning."""

    model_config = ConfigDict(frozen=True)

    min_duration_minutes: int = Field(default=15, ge=1)
    max_duration_minutes: int = Field(default=60, ge=1)
    max_subtasks: int = Field(default=20, ge=1)
    min_acceptance_criteria: int = Field(default=3, ge=0)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    timeout_seconds: float | None = Field(default=120.0)

    @model_validator(mode="after")
    def validate_duration_bounds(self) -> "DecompositionConfig":
        """Ensure the estimate window is not inverted."""
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError(
                "min_duration_minutes must not exceed max_duration_minutes"
            )
        return self


class TaskDecomposer:
    """
    Break a feature into atomic, dependency-ordered tasks.

    Example:
        >>> decomposer = TaskDecomposer(generator)
        >>> result = await decomposer.decompose(
        ...     Feature(id="F-1", description="User login with OAuth")
        ... )
        >>> [t.id for t in result.tasks]
        ['F-1.1', 'F-1.2', 'F-1.3']
    """

    def __init__(
        self,
        generator: TextGenerator,
        config: DecompositionConfig | None = None,
        analyzer: CriticalPathAnalyzer | None = None,
    ) -> None:
        """
        Initialize the decomposer.

        Args:
            generator: Text-generation collaborator.
            config: Duration bounds and limits (defaults if omitted).
            analyzer: Critical path analyzer to reuse.
        """
        self.generator = generator
        self.config = config or DecompositionConfig()
        self.analyzer = analyzer or CriticalPathAnalyzer()

    @property
    def system_prompt(self) -> str:
        return (
            "You are a project decomposition expert. Your job is to break "
            "features into small, testable, atomic tasks.\n\n"
            "Rules:\n"
            f"1. Each task must be {self.config.min_duration_minutes}-"
            f"{self.config.max_duration_minutes} minutes of work\n"
            "2. Each task must be independently testable\n"
            "3. Each task must have clear acceptance criteria\n"
            "4. Tasks should be ordered by dependencies\n"
            "5. Each task should have a single concern\n\n"
            "Focus on making tasks concrete and actionable, not abstract."
        )

    async def decompose(
        self,
        feature: Feature,
        context: str | None = None,
        calibration: float | None = None,
    ) -> DecompositionResult:
        """
        Decompose a feature. Never raises for generation problems.

        Args:
            feature: Feature to decompose.
            context: Extra context for the prompt (existing patterns, etc.).
            calibration: Optional estimate multiplier from feedback history.

        Returns:
            DecompositionResult with tasks, graph, critical path and total.
        """
        logger.info(f"Decomposing feature: {feature.id}")

        used_fallback = False
        try:
            tasks = await self._generate_tasks(feature, context, calibration)
        except Exception as e:
            logger.warning(f"Task generation failed for {feature.id}: {e}")
            tasks = [self.create_fallback_task(feature)]
            used_fallback = True

        graph = DependencyGraph.from_tasks(tasks)

        cycles = detect_cycles(graph)
        if cycles:
            logger.error(
                f"Decomposition of {feature.id} contains {len(cycles)} "
                f"dependency cycles: {cycles}"
            )

        critical_path = self.analyzer.find_critical_path(tasks, graph)
        total = sum(task.estimate_minutes for task in tasks)

        logger.info(
            f"Generated {len(tasks)} tasks for {feature.id}, "
            f"total estimate: {total} min"
        )

        return DecompositionResult(
            feature=feature,
            tasks=tasks,
            dependency_graph=graph,
            critical_path=critical_path,
            total_estimate_minutes=total,
            used_fallback=used_fallback,
            cycles=cycles,
        )

    async def _generate_tasks(
        self,
        feature: Feature,
        context: str | None,
        calibration: float | None,
    ) -> list[AtomicTask]:
        prompt = self.build_prompt(feature, context)
        options = GenerationOptions(
            system_prompt=self.system_prompt,
            temperature=self.config.temperature,
        )

        with anyio.fail_after(self.config.timeout_seconds):
            response = await self.generator.generate(prompt, options)

        tasks = self.parse_response(response.content, feature, calibration)
        if not tasks:
            raise GenerationFailure("Response contained no parsable task blocks")
        return tasks

    def build_prompt(self, feature: Feature, context: str | None = None) -> str:
        """Build the decomposition prompt for a feature."""
        low = self.config.min_duration_minutes
        high = self.config.max_duration_minutes

        prompt = (
            f"Break down this feature into atomic tasks ({low}-{high} minutes each):\n\n"
            f"Feature ID: {feature.id}\n"
            f"Feature: {feature.description}\n"
            f"UI-Related: {'Yes' if feature.is_ui else 'No'}"
        )

        if context:
            prompt += f"\n\nContext:\n{context}"

        prompt += (
            "\n\nFor each task, provide:\n"
            "TASK: [task title]\n"
            "DESCRIPTION: [what needs to be done]\n"
            f"ESTIMATE: [minutes, between {low}-{high}]\n"
            'DEPENDS_ON: [task numbers that must complete first, or "none"]\n'
            "PRIORITY: [P0|P1|P2|P3]\n"
            "ACCEPTANCE_CRITERIA:\n"
            "- [criterion 1]\n"
            "- [criterion 2]\n"
            "- [criterion 3]\n"
            "FILES: [files to create/modify]\n"
            "PATTERNS: [existing patterns to follow]\n\n"
            f"Generate at least 3 tasks, maximum {self.config.max_subtasks}."
        )
        return prompt

    # =========================================================================
    # PARSING
    # =========================================================================

    def parse_response(
        self,
        text: str,
        feature: Feature,
        calibration: float | None = None,
    ) -> list[AtomicTask]:
        """
        Parse generated text into tasks with resolved dependencies.

        Blocks without a title are skipped and do not consume a task number.
        Ordinal references that do not match a parsed task are dropped.

        Args:
            text: Generated text.
            feature: Feature the tasks belong to.
            calibration: Optional estimate multiplier.

        Returns:
            Parsed tasks (possibly empty).
        """
        tasks: list[AtomicTask] = []
        ordinals: dict[int, str] = {}

        for block in _BLOCK_SPLIT.split(text):
            if not block.strip() or not re.search("TASK:", block, re.IGNORECASE):
                continue

            task = self._parse_block(block, feature, len(tasks) + 1, calibration)
            if task is None:
                continue

            tasks.append(task)
            ordinals[len(tasks)] = task.id

            if len(tasks) >= self.config.max_subtasks:
                logger.debug(f"Reached max_subtasks ({self.config.max_subtasks})")
                break

        for task in tasks:
            resolved: list[str] = []
            for ref in task.depends_on:
                dep_id = ordinals.get(int(ref))
                if dep_id is None:
                    logger.warning(
                        f"Dropping dangling dependency {ref!r} on task {task.id}"
                    )
                    continue
                resolved.append(dep_id)
            task.depends_on = list(dict.fromkeys(resolved))

        link_blocks(tasks)

        for task in tasks:
            task.status = TaskStatus.PENDING if task.depends_on else TaskStatus.READY

        return tasks

    def _parse_block(
        self,
        block: str,
        feature: Feature,
        number: int,
        calibration: float | None,
    ) -> AtomicTask | None:
        title_match = _TITLE.search(block)
        title = title_match.group(1).strip() if title_match else ""
        if not title:
            return None

        desc_match = _DESCRIPTION.search(block)
        description = desc_match.group(1).strip() if desc_match else ""

        estimate_match = _ESTIMATE.search(block)
        estimate = (
            int(estimate_match.group(1))
            if estimate_match
            else FALLBACK_ESTIMATE_MINUTES
        )
        if calibration is not None:
            estimate = int(estimate * calibration + 0.5)
        estimate = self.clamp_estimate(estimate)

        priority_match = _PRIORITY.search(block)
        priority = (
            PriorityLevel(priority_match.group(1).upper())
            if priority_match
            else PriorityLevel.P1
        )

        criteria = self._parse_criteria(block)
        while len(criteria) < self.config.min_acceptance_criteria:
            criteria.append(f"Verify task {number} is complete")

        return AtomicTask(
            id=f"{feature.id}.{number}",
            feature_id=feature.id,
            title=title,
            description=description or title,
            estimate_minutes=estimate,
            depends_on=self._parse_ordinals(block),
            acceptance_criteria=criteria,
            files=self._parse_list(_FILES.search(block)),
            patterns=self._parse_list(_PATTERNS.search(block)),
            priority=priority,
            is_ui=feature.is_ui,
        )

    def clamp_estimate(self, minutes: int) -> int:
        """Clamp an estimate into the configured duration window."""
        return max(
            self.config.min_duration_minutes,
            min(self.config.max_duration_minutes, minutes),
        )

    @staticmethod
    def _parse_ordinals(block: str) -> list[str]:
        match = _DEPENDS.search(block)
        raw = match.group(1).strip().lower() if match else "none"
        if raw == "none":
            return []

        refs: list[str] = []
        for part in re.split(r"[,\s]+", raw):
            number = re.match(r"\d+", part)
            if number:
                refs.append(str(int(number.group(0))))
        return refs

    @staticmethod
    def _parse_criteria(block: str) -> list[str]:
        match = _CRITERIA.search(block)
        if not match:
            return []

        criteria: list[str] = []
        for line in match.group(1).splitlines():
            stripped = line.strip()
            if stripped.startswith("- "):
                criterion = _CHECKBOX.sub("", stripped[2:]).strip()
                if criterion:
                    criteria.append(criterion)
        return criteria

    @staticmethod
    def _parse_list(match: re.Match[str] | None) -> list[str]:
        if not match:
            return []
        items = (item.strip() for item in re.split(r"[,\n]", match.group(1)))
        return [item for item in items if item and not item.startswith("-")]

    # =========================================================================
    # FALLBACK AND CHECKS
    # =========================================================================

    def create_fallback_task(self, feature: Feature) -> AtomicTask:
        """Single ready task standing in for a failed decomposition."""
        return AtomicTask(
            id=f"{feature.id}.1",
            feature_id=feature.id,
            title=f"Implement: {feature.description[:50]}",
            description=feature.description,
            estimate_minutes=FALLBACK_ESTIMATE_MINUTES,
            acceptance_criteria=list(FALLBACK_CRITERIA),
            priority=PriorityLevel.P1,
            is_ui=feature.is_ui,
            status=TaskStatus.READY,
        )

    @staticmethod
    def detect_circular_dependencies(tasks: list[AtomicTask]) -> list[list[str]]:
        """Detect cycles in an arbitrary task set (detection only)."""
        return detect_cycles(DependencyGraph.from_tasks(tasks))
