"""Application settings loaded from environment variables and `.env`."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration.

    Every field can be overridden by an environment variable of the same name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./chat.db"

    # Auth
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_DAYS: int = 7

    # Generative model provider
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TITLE_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT: Optional[float] = None

    # Chat limits
    MESSAGE_MAX_CHARS: int = 4000
    TITLE_FALLBACK_CHARS: int = 50

    # HTTP
    CORS_ORIGINS: list[str] = ["*"]

    LOG_LEVEL: str = "INFO"


settings = Settings()
