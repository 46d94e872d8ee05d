"""
Configuration settings for the OmniTruth Feed API.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    app_name: str = "OmniTruth Feed API"
    app_version: str = "0.1.0"
    debug: bool = False

    # Database (in-memory SQLite keeps the store session-scoped)
    database_url: str = "sqlite://"

    # Consensus Configuration
    max_vote_impact: float = 10.0     # Crowd-score points moved by a credibility-100 vote
    neutral_crowd_score: int = 50     # Starting crowd score for every new post

    # Analysis collaborator (OpenAI-compatible Gemini endpoint)
    llm_api_key: Optional[str] = None
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    llm_model: str = "gemini-2.5-flash"
    analysis_timeout_seconds: float = 60.0

    # Feed ingestion
    feed_refresh_interval_minutes: int = 0  # 0 disables periodic refresh
    refresh_on_startup: bool = True

    # CORS
    allowed_origins: str = "http://localhost:8000,http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "OT_"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
