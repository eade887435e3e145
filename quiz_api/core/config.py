from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Base
    APP_ENV: str = "dev"  # dev | staging | prod
    APP_NAME: str = "QUIZ SESSION API"
    APP_VERSION: str = "0.1.0"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Security (routes opérateur uniquement)
    API_KEY: str = "change_me"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Store
    STORE_BACKEND: str = "redis"  # redis | memory
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_TIMEOUT_SECONDS: float = 10.0
    SESSION_KEY_PREFIX: str = "quiz:session:"

    # Sessions
    SESSION_TIMEOUT_MINUTES: int = 30
    COMPLETED_TTL_MINUTES: int = 120
    DEFAULT_LANGUAGE: str = "python"

    # Génération (OpenAI)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    GENERATION_TIMEOUT_SECONDS: float = 20.0

    # Retrieval
    REFERENCE_PATH: str = "./reference"
    RETRIEVAL_TOP_K: int = 2
    RETRIEVAL_THRESHOLD: float = 0.5
    CONTEXT_MAX_CHARS: int = 800

    # Reaper
    REAPER_ENABLED: bool = True
    REAPER_INTERVAL_SECONDS: int = 900  # 15 min
    STATS_HOUR_UTC: int = 2

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
