"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Experiment Tracker"
    debug: bool = False

    # Database - optional so the service can still boot without it
    database_url: Optional[str] = None

    # GrowthBook REST API
    growthbook_api_url: str = "https://api.growthbook.io/api/v1"
    growthbook_api_key: Optional[str] = None
    growthbook_timeout_seconds: float = 10.0

    # CORS
    frontend_url: str = "http://localhost:5173"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
