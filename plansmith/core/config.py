"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from plansmith.planning.decomposer import DecompositionConfig
    from plansmith.planning.feedback import FeedbackConfig
    from plansmith.planning.priority import PriorityConfig
    from plansmith.scheduling.models import SchedulerConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PLANSMITH_",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_dir: Path | None = Field(
        default=None,
        description="Directory for rotating log files (stderr only if unset)",
    )

    # Text generation
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Anthropic API key for task generation",
    )
    generation_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used for feature decomposition",
    )
    generation_max_tokens: int = Field(
        default=4000,
        ge=256,
        description="Maximum tokens per generation call",
    )
    generation_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for decomposition",
    )
    generation_timeout_seconds: float | None = Field(
        default=120.0,
        ge=1.0,
        description="Timeout for a single generation call (None disables it)",
    )

    # Decomposition
    min_duration_minutes: int = Field(
        default=15,
        ge=1,
        description="Minimum estimate for a generated task",
    )
    max_duration_minutes: int = Field(
        default=60,
        ge=1,
        description="Maximum estimate for a generated task",
    )
    max_subtasks: int = Field(
        default=20,
        ge=1,
        description="Maximum tasks accepted from a single decomposition",
    )
    min_acceptance_criteria: int = Field(
        default=3,
        ge=0,
        description="Acceptance criteria each task is padded to",
    )

    # Priority weights
    dependency_weight: float = Field(default=0.25, ge=0.0)
    critical_path_weight: float = Field(default=0.2, ge=0.0)
    user_impact_weight: float = Field(default=0.2, ge=0.0)
    technical_risk_weight: float = Field(default=0.15, ge=0.0)
    deadline_weight: float = Field(default=0.2, ge=0.0)
    quick_win_boost: bool = Field(
        default=True,
        description="Give small, high-impact tasks a score bonus",
    )

    # Scheduler
    min_confidence_for_auto_pass: int = Field(
        default=95,
        ge=0,
        le=100,
        description="Self-reported confidence that skips verification",
    )
    require_modified_files: bool = Field(
        default=True,
        description="Reject completion reports without modified files",
    )
    max_concurrent: int = Field(
        default=3,
        ge=1,
        description="Maximum tasks running at once",
    )
    escalation_hours: float = Field(
        default=24.0,
        gt=0,
        description="Waiting time after which a task is promoted one tier",
    )
    force_p0_hours: float = Field(
        default=48.0,
        gt=0,
        description="Waiting time after which a task is forced to P0",
    )
    block_on_cycles: bool = Field(
        default=True,
        description="Block tasks that participate in a dependency cycle",
    )

    # Feedback
    min_data_points: int = Field(
        default=5,
        ge=1,
        description="Feedback records needed before calibrating",
    )
    accuracy_threshold: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Accuracy score below which a feedback record counts as inaccurate",
    )
    history_retention_days: int = Field(
        default=30,
        ge=1,
        description="Days of feedback history kept",
    )

    @model_validator(mode="after")
    def validate_duration_bounds(self) -> "Settings":
        """Ensure the estimate window is not inverted."""
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError(
                "min_duration_minutes must not exceed max_duration_minutes"
            )
        return self

    def decomposition_config(self) -> "DecompositionConfig":
        """Build the decomposer configuration."""
        from plansmith.planning.decomposer import DecompositionConfig

        return DecompositionConfig(
            min_duration_minutes=self.min_duration_minutes,
            max_duration_minutes=self.max_duration_minutes,
            max_subtasks=self.max_subtasks,
            min_acceptance_criteria=self.min_acceptance_criteria,
            temperature=self.generation_temperature,
            timeout_seconds=self.generation_timeout_seconds,
        )

    def priority_config(self) -> "PriorityConfig":
        """Build the priority engine configuration."""
        from plansmith.planning.priority import PriorityConfig

        return PriorityConfig(
            dependency_weight=self.dependency_weight,
            critical_path_weight=self.critical_path_weight,
            user_impact_weight=self.user_impact_weight,
            technical_risk_weight=self.technical_risk_weight,
            deadline_weight=self.deadline_weight,
            quick_win_boost=self.quick_win_boost,
        )

    def scheduler_config(self) -> "SchedulerConfig":
        """Build the scheduler configuration."""
        from plansmith.scheduling.models import SchedulerConfig

        return SchedulerConfig(
            min_confidence_for_auto_pass=self.min_confidence_for_auto_pass,
            require_modified_files=self.require_modified_files,
            max_concurrent=self.max_concurrent,
            escalation_hours=self.escalation_hours,
            force_p0_hours=self.force_p0_hours,
            block_on_cycles=self.block_on_cycles,
        )

    def feedback_config(self) -> "FeedbackConfig":
        """Build the feedback calibrator configuration."""
        from plansmith.planning.feedback import FeedbackConfig

        return FeedbackConfig(
            min_data_points=self.min_data_points,
            accuracy_threshold=self.accuracy_threshold,
            history_retention_days=self.history_retention_days,
            min_duration_minutes=self.min_duration_minutes,
            max_duration_minutes=self.max_duration_minutes,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.max_subtasks
        20
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
