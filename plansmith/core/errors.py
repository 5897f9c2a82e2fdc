"""Error taxonomy for the planning engine.

Component boundaries report these conditions as data (result objects)
rather than raising them; the exceptions are used internally and by the
explicitly strict helpers.
"""


class PlannerError(Exception):
    """Base exception for planning engine errors."""

    code = "planner_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidReportError(PlannerError):
    """A completion report is missing required content."""

    code = "validation_error"


class NotFoundError(PlannerError):
    """An unknown task id was referenced."""

    code = "not_found"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class StateError(PlannerError):
    """A task is not in the state required for a transition."""

    code = "invalid_state"

    def __init__(self, task_id: str, status: str, expected: str) -> None:
        super().__init__(
            f"Task {task_id} is not {expected} (status: {status})"
        )
        self.task_id = task_id
        self.status = status


class GenerationFailure(PlannerError):
    """The text generation collaborator failed or returned unusable output."""

    code = "generation_failure"


class CycleError(PlannerError):
    """Circular dependencies were found where they are not allowed."""

    code = "circular_dependency"

    def __init__(self, cycles: list[list[str]]) -> None:
        first = " -> ".join(cycles[0]) if cycles else ""
        super().__init__(f"Circular dependency detected: {first}")
        self.cycles = cycles
