"""
Configuration for the Sentinel pipeline.
Loads environment variables and provides configuration settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # FastAPI
    API_TITLE: str = "Sentinel AML Pipeline API"
    API_VERSION: str = "0.1.0"
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # CORS - stored as string in env, parsed to list
    cors_origins_str: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        alias="CORS_ORIGINS",
    )

    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Parse CORS_ORIGINS from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # Supabase
    SUPABASE_URL: Optional[str] = Field(default=None)
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = Field(default=None)

    # Groq API (transaction scoring)
    GROQ_API_KEY: Optional[str] = Field(default=None)
    GROQ_MODEL: str = Field(default="openai/gpt-oss-20b")
    LLM_TEMPERATURE: float = Field(default=0.1)
    LLM_MAX_TOKENS: int = Field(default=800)

    # Tavily API (regulatory discovery + extraction)
    TAVILY_API_KEY: Optional[str] = Field(default=None)
    TAVILY_API_URL: str = Field(default="https://api.tavily.com")

    # Pipeline
    REGULATORY_THRESHOLD: float = Field(default=0.65, ge=0.0, le=1.0)
    REQUEST_TIMEOUT: int = Field(default=20)  # seconds
    PDF_TIMEOUT: int = Field(default=45)  # seconds
    PORTAL_DETAIL_CONCURRENCY: int = Field(default=4, ge=1)

    # Batch monitor
    MONITOR_CSV_PATH: str = Field(default="data/transactions_mock.csv")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
