"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment
os.environ.setdefault("PLANSMITH_LOG_LEVEL", "DEBUG")
os.environ.pop("PLANSMITH_ANTHROPIC_API_KEY", None)


class FakeClock:
    """Controllable time source for schedulers and calibrators."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


SAMPLE_RESPONSE = """TASK: Create reset token model
DESCRIPTION: Add a table for password reset tokens
ESTIMATE: 30
DEPENDS_ON: none
PRIORITY: P1
ACCEPTANCE_CRITERIA:
- Token has an expiry time
- Token can be used once
- Migration runs cleanly
FILES: models/reset_token.py
PATTERNS: Repository pattern

TASK: Add reset request endpoint
DESCRIPTION: POST endpoint that emails a reset link
ESTIMATE: 45
DEPENDS_ON: 1
PRIORITY: P0
ACCEPTANCE_CRITERIA:
- Returns 202 for known and unknown emails
- Sends the reset email
- Requests are rate limited
FILES: api/reset.py, templates/reset_email.html
PATTERNS: Existing auth routes
"""


@pytest.fixture
def mock_settings() -> Generator:
    """Clear the settings cache around a test."""
    from plansmith.core.config import clear_settings_cache

    clear_settings_cache()

    yield

    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def sample_feature():
    """Provide a sample feature."""
    from plansmith.planning.models import Feature

    return Feature(id="F-1", description="Users can reset their password by email")


@pytest.fixture
def sample_response() -> str:
    """Provide generator output in the block grammar."""
    return SAMPLE_RESPONSE


@pytest.fixture
def mock_generator(sample_response: str) -> MagicMock:
    """Provide a text generator returning the sample response."""
    from plansmith.planning.generation import GenerationResponse

    generator = MagicMock()
    generator.generate = AsyncMock(
        return_value=GenerationResponse(content=sample_response)
    )
    return generator


@pytest.fixture
def failing_generator() -> MagicMock:
    """Provide a text generator that always raises."""
    from plansmith.core.errors import GenerationFailure

    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=GenerationFailure("service unavailable"))
    return generator


@pytest.fixture
def sample_tasks() -> list:
    """Provide a diamond-shaped task set: 1 -> (2, 3) -> 4."""
    from plansmith.planning.models import AtomicTask, link_blocks

    tasks = [
        AtomicTask(
            id="F-1.1",
            feature_id="F-1",
            title="Create reset token model",
            estimate_minutes=30,
        ),
        AtomicTask(
            id="F-1.2",
            feature_id="F-1",
            title="Add reset request endpoint",
            estimate_minutes=45,
            depends_on=["F-1.1"],
        ),
        AtomicTask(
            id="F-1.3",
            feature_id="F-1",
            title="Write reset email template",
            estimate_minutes=20,
            depends_on=["F-1.1"],
        ),
        AtomicTask(
            id="F-1.4",
            feature_id="F-1",
            title="Add reset confirmation page",
            estimate_minutes=40,
            depends_on=["F-1.2", "F-1.3"],
        ),
    ]
    link_blocks(tasks)
    return tasks


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
