"""Runtime settings loaded from the environment."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class EngineSettings(BaseSettings):
    """Engine settings loaded from environment (``ENGAGEMENT_*``)."""

    environment: str = "development"

    # Record store
    storage_backend: str = "memory"
    database_url: str = "sqlite:///engagement.db"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    class Config:
        env_prefix = "ENGAGEMENT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> EngineSettings:
    """Get cached settings instance."""
    return EngineSettings()
