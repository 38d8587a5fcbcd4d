"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CRM call boundary
    CRM_CALL_TIMEOUT_SECONDS: float = 10.0
    CRM_MAX_ATTEMPTS: int = 3
    CRM_RETRY_MIN_WAIT: float = 1.0
    CRM_RETRY_MAX_WAIT: float = 10.0

    # Generic child-record sets (instant messenger style by default)
    MULTISET_REMOTE_ENTITY: str = "Im"
    # Sub-field -> {"remote_name", "type"} as JSON; unset uses the IM schema
    MULTISET_SCHEMA: dict[str, dict[str, str]] | None = None

    # Attachments live on Activities
    ATTACHMENT_ENTITY_TABLE: str = "civicrm_activity"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
