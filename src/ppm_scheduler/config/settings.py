from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    database_url: str = "sqlite:///./data/ppm.db"
    app_name: str = "ppm-scheduler"
    debug: bool = False
    log_level: str = "INFO"
    horizon_months: int = 12
    max_occurrences: int = 100
    extension_threshold_months: int = 3  # extend once the last WO is this close

    model_config = {"env_prefix": "PPM_", "env_file": ".env"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
