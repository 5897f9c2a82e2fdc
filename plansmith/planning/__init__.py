"""Planning - turning features into ranked, dependency-ordered tasks.

This package provides the planning pipeline:
- Dependency graph primitive and cycle tooling
- Critical path analysis (longest-duration chain)
- Feature decomposition through a text-generation collaborator
- Priority scoring and ranking
- Estimate calibration from completion feedback
"""

from plansmith.planning.critical_path import CriticalPathAnalyzer, CriticalPathResult
from plansmith.planning.cycles import (
    CycleAnalysis,
    analyze_cycles,
    detect_cycles,
    find_minimum_cycle_breakers,
    format_cycle_report,
    would_create_cycle,
)
from plansmith.planning.decomposer import DecompositionConfig, TaskDecomposer
from plansmith.planning.feedback import (
    BlockerFeedback,
    BlockerType,
    FeedbackAnalysis,
    FeedbackCalibrator,
    FeedbackConfig,
    FeedbackInput,
    ImprovementStats,
    PlanAdjustment,
    TaskFeedback,
)
from plansmith.planning.generation import (
    AnthropicTextGenerator,
    GenerationOptions,
    GenerationResponse,
    OfflineTextGenerator,
    TextGenerator,
)
from plansmith.planning.graph import DependencyGraph, parallel_levels, topological_sort
from plansmith.planning.models import (
    PRIORITY_DESCRIPTIONS,
    AtomicTask,
    DecompositionResult,
    Feature,
    PriorityFactors,
    PriorityLevel,
    PriorityResult,
    PriorityStatistics,
    TaskStatus,
    link_blocks,
)
from plansmith.planning.priority import PriorityConfig, PriorityEngine

__all__ = [
    # Models
    "AtomicTask",
    "DecompositionResult",
    "Feature",
    "PRIORITY_DESCRIPTIONS",
    "PriorityFactors",
    "PriorityLevel",
    "PriorityResult",
    "PriorityStatistics",
    "TaskStatus",
    "link_blocks",
    # Graph
    "DependencyGraph",
    "parallel_levels",
    "topological_sort",
    # Cycles
    "CycleAnalysis",
    "analyze_cycles",
    "detect_cycles",
    "find_minimum_cycle_breakers",
    "format_cycle_report",
    "would_create_cycle",
    # Critical path
    "CriticalPathAnalyzer",
    "CriticalPathResult",
    # Generation
    "AnthropicTextGenerator",
    "GenerationOptions",
    "GenerationResponse",
    "OfflineTextGenerator",
    "TextGenerator",
    # Decomposition
    "DecompositionConfig",
    "TaskDecomposer",
    # Priority
    "PriorityConfig",
    "PriorityEngine",
    # Feedback
    "BlockerFeedback",
    "BlockerType",
    "FeedbackAnalysis",
    "FeedbackCalibrator",
    "FeedbackConfig",
    "FeedbackInput",
    "ImprovementStats",
    "PlanAdjustment",
    "TaskFeedback",
]
