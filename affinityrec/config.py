"""Service configuration.

Values are read from the environment (and a local ``.env`` file when present).
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"

    # Collaborators
    CATALOG_CSV_PATH: Optional[str] = None
    AFFINITY_SNAPSHOT_PATH: Optional[str] = None

    # Recommendation requests
    DEFAULT_MAX_RESULTS: int = 20
    MAX_RESULTS_LIMIT: int = 100
    RECOMMENDATION_TIMEOUT_SECONDS: float = 5.0

    # Behavior learning window
    INTERACTION_WINDOW_SIZE: int = 1000
    INTERACTION_WINDOW_DAYS: int = 30

    # Users kept in the profile cache and learner windows
    MAX_CACHED_USERS: int = 10000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
