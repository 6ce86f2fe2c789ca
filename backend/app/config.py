"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "VariantLab"
    debug: bool = False

    # Database
    database_url: str

    # Redis (per-test evaluation lock)
    redis_url: str = "redis://localhost:6379/0"

    # OpenAI (AI analysis endpoint) - leave empty to disable
    openai_api_key: str = ""
    analysis_model: str = "gpt-4o-mini"

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Autonomous optimization
    evaluation_window: str = "1m"  # analytics window the engine reads from
    evaluation_lock_ttl_seconds: int = 30  # safety net if a worker dies mid-evaluation
    evaluate_after_ingestion: bool = True

    # Seed the demo test on startup when the database is empty
    seed_demo_data: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
