"""
Application configuration using Pydantic Settings.

All values can be overridden through environment variables or a local .env
file. Tests build their own Settings instances with short timeouts.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ScriptForge settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./scriptforge_dev.db"

    # AI / research collaborators
    ANTHROPIC_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    TAVILY_API_KEY: Optional[str] = None
    DEFAULT_MODEL: str = "claude-3-5-haiku"

    # Script length targets
    WORDS_PER_MINUTE: int = 130
    MIN_LENGTH_RATIO: float = 0.8
    DEFAULT_TARGET_DURATION_SECONDS: int = 300
    MAX_TARGET_DURATION_SECONDS: int = 3600

    # Orchestrator
    STAGE_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 10.0
    WORKFLOW_TIMEOUT_SECONDS: float = 900.0

    # Progress tracker
    PROGRESS_TTL_SECONDS: float = 3600.0
    PROGRESS_UNDELIVERED_TTL_SECONDS: float = 86400.0
    PROGRESS_MAX_ENTRIES: int = 10_000
    WS_POLL_INTERVAL_SECONDS: float = 0.5

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
