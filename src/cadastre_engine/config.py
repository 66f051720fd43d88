"""Engine configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RuleConfig


class Settings(BaseSettings):
    """Settings loaded from ``CADASTRE_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(env_prefix="CADASTRE_", env_file=".env", case_sensitive=True)

    APP_NAME: str = "Cadastre Validation Engine"
    LOG_LEVEL: str = "INFO"

    # Upstream (Geometry Provider / Persistence Gateway) calls
    UPSTREAM_TIMEOUT_SECONDS: float = 5.0

    # Pipeline
    NEARBY_SEARCH_RADIUS_M: float = 1000.0
    PARALLEL_RULES: bool = False

    # Per-rule overrides, e.g. CADASTRE_RULES='{"buffer_water": {"threshold": 50}}'
    RULES: dict[str, RuleConfig] = {}


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
