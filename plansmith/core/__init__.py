"""Core module - configuration, logging, errors, and the planning context."""

from plansmith.core.config import Settings, get_settings
from plansmith.core.errors import (
    CycleError,
    GenerationFailure,
    InvalidReportError,
    NotFoundError,
    PlannerError,
    StateError,
)
from plansmith.core.logging import configure_logging

__all__ = [
    "CycleError",
    "GenerationFailure",
    "InvalidReportError",
    "NotFoundError",
    "PlannerError",
    "Settings",
    "StateError",
    "configure_logging",
    "get_settings",
]
