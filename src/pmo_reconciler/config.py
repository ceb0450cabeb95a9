"""
Configuration management for the reconciliation engine.

Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Config:
    """Configuration settings loaded from environment."""

    # OpenAI
    OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
    OPENAI_CHAT_MODEL: str = os.getenv('OPENAI_CHAT_MODEL', 'gpt-4.1-mini')
    OPENAI_EMBEDDING_MODEL: str = os.getenv('OPENAI_EMBEDDING_MODEL', 'text-embedding-3-small')
    OPENAI_EMBEDDING_DIMENSIONS: int = int(os.getenv('OPENAI_EMBEDDING_DIMENSIONS', '1536'))
    OPENAI_TIMEOUT_SECONDS: float = float(os.getenv('OPENAI_TIMEOUT_SECONDS', '120'))

    # Postgres
    DATABASE_URL: str = os.getenv('DATABASE_URL', '')

    # Reconciliation
    SIMILARITY_THRESHOLD: float = float(os.getenv('SIMILARITY_THRESHOLD', '0.85'))

    # Review locks
    LOCK_TTL_MINUTES: int = int(os.getenv('LOCK_TTL_MINUTES', '30'))

    # Ingestion
    MIN_TRANSCRIPT_CHARS: int = int(os.getenv('MIN_TRANSCRIPT_CHARS', '50'))
    DEFAULT_MEETING_CATEGORY: str = os.getenv('DEFAULT_MEETING_CATEGORY', 'Project')

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_JSON: bool = os.getenv('LOG_JSON', 'false').lower() in ('1', 'true', 'yes')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not cls.OPENAI_API_KEY:
            missing.append('OPENAI_API_KEY')
        if not cls.DATABASE_URL:
            missing.append('DATABASE_URL')
        return missing


# Singleton config instance
config = Config()
