"""
Plansmith - Task planning and scheduling engine.

Turns feature-level requirements into dependency-ordered graphs of small,
independently executable tasks, ranks them, schedules their execution and
learns from completion feedback.
"""

__version__ = "0.1.0"
__author__ = "Plansmith Team"

from plansmith.core.context import PlanningContext

__all__ = ["PlanningContext", "__version__"]
