"""Configuration for the reconciliation FastAPI service."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    # Postgres
    DATABASE_URL: str
    DATABASE_SSL_REQUIRED: bool = True

    # OpenAI (embeddings degrade to exact-title matching without a key)
    OPENAI_API_KEY: str | None = None

    # Auth
    WORKER_API_KEY: str


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
