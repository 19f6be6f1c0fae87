"""Configuration settings for the project graveyard analysis service."""

from typing import Literal

from pydantic_settings import BaseSettings

DetectionMode = Literal["heuristic", "ai", "hybrid"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 15432
    db_name: str = "graveyard"
    db_user: str = "graveyard"
    db_password: str = "graveyard"

    # Redis
    redis_url: str = "redis://localhost:16379/0"
    analysis_lock_enabled: bool = False
    analysis_lock_ttl: int = 120

    # Completion service
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com"
    completion_model: str = "claude-sonnet-4-20250514"
    completion_timeout: float = 30.0
    completion_retries: int = 1

    # Detection
    detection_mode: DetectionMode = "heuristic"
    min_pattern_confidence: float = 0.6
    min_projects_for_analysis: int = 2
    estimated_metadata_weight: float = 1.0

    # Prompt context bounds
    coaching_recent_projects: int = 5
    post_mortem_history_limit: int = 3
    prompt_pattern_limit: int = 5

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "GRAVEYARD_"
        env_file = ".env"


# Global settings instance
settings = Settings()
