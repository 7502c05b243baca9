"""
Configuration and settings for the CRM service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from crm.errors import ConfigurationError


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api", validation_alias="CRM_API_PREFIX")
    log_level: str = Field(default="INFO", validation_alias="CRM_LOG_LEVEL")

    # Hosted Supabase project
    supabase_url: Optional[str] = Field(default=None, validation_alias="SUPABASE_URL")
    supabase_key: Optional[str] = Field(default=None, validation_alias="SUPABASE_KEY")
    auth_redirect_url: str = Field(
        default="http://localhost:8000/auth/callback",
        validation_alias="CRM_AUTH_REDIRECT_URL",
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="CRM_USE_IN_MEMORY_BACKENDS"
    )
    local_database_url: str = Field(
        default="sqlite+pysqlite:///:memory:",
        validation_alias="CRM_LOCAL_DATABASE_URL",
    )
    require_email_confirmation: bool = Field(
        default=True, validation_alias="CRM_REQUIRE_EMAIL_CONFIRMATION"
    )

    def require_remote_backend(self) -> tuple[str, str]:
        """Return (url, key) for the hosted project or fail startup."""
        if not self.supabase_url or not self.supabase_key:
            raise ConfigurationError(
                "Missing Supabase configuration. Set SUPABASE_URL and "
                "SUPABASE_KEY, or CRM_USE_IN_MEMORY_BACKENDS=true for local runs."
            )
        return self.supabase_url, self.supabase_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
