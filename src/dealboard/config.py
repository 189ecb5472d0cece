"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database -- a non-empty DATABASE_URL selects PostgreSQL, otherwise SQLite
    DATABASE_URL: str = ""
    SQLITE_PATH: str = "./opportunities.db"
    DATABASE_FALLBACK_TO_SQLITE: bool = True

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Salesforce
    SALESFORCE_LOGIN_URL: str = "https://login.salesforce.com"
    SALESFORCE_USERNAME: str = ""
    SALESFORCE_PASSWORD: str = ""
    SALESFORCE_SECURITY_TOKEN: str = ""
    SALESFORCE_API_VERSION: str = "58.0"
    SALESFORCE_TIMEOUT: float = 30.0
    SALESFORCE_QUERY_LIMIT: int = 1000

    # Exclusion policy (comma-separated owner name fragments)
    SOURCE_EXCLUDED_OWNERS: str = "Roxy"
    VIEW_EXCLUDED_OWNERS: str = "Roxy,Rachel"

    # Sync
    ACTIVITY_BATCH_SIZE: int = 50
    SYNC_FETCH_TIMEOUT: float = 120.0
    SYNC_MERGE_TIMEOUT: float = 300.0
    SYNC_ISOLATE_RECORD_FAILURES: bool = True

    # Preferences
    DEFAULT_USER_ID: str = "default"

    @property
    def source_excluded_owners(self) -> list[str]:
        return _split_csv(self.SOURCE_EXCLUDED_OWNERS)

    @property
    def view_excluded_owners(self) -> list[str]:
        return _split_csv(self.VIEW_EXCLUDED_OWNERS)

    @property
    def cors_origins(self) -> list[str]:
        if self.CORS_ALLOWED_ORIGINS == "*":
            return ["*"]
        return _split_csv(self.CORS_ALLOWED_ORIGINS)

    @property
    def uses_postgres(self) -> bool:
        """True when DATABASE_URL is configured (PostgreSQL backend)."""
        return bool(self.DATABASE_URL.strip())


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
