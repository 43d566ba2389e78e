"""
Klio - Configuration and settings.

KlioSettings holds the Supabase credentials used by the route layer and the
client-side sync knobs used by the onboarding engine.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class KlioSettings(BaseSettings):
    """
    Application settings, loaded from the environment and `.env`.

    Supabase fields are only needed by the API server; the onboarding
    client can run with just `api_base_url`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""

    # Application
    klio_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Onboarding client
    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 10.0
    sync_max_attempts: int = 3
    sync_backoff_base_ms: int = 200
    sync_debounce_ms: int = 300

    @property
    def is_development(self) -> bool:
        return self.klio_env == "development"

    @property
    def is_production(self) -> bool:
        return self.klio_env == "production"


@lru_cache
def get_settings() -> KlioSettings:
    """Get cached settings instance."""
    return KlioSettings()


# Convenience singleton - lazy loaded
class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: KlioSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
