"""Settings for the workshop scheduler, read from the environment or ``.env``."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WORKSHOP_", env_file=".env", env_file_encoding="utf-8"
    )

    project_name: str = "Workshop Scheduler"
    api_prefix: str = ""
    log_level: str = "INFO"
    # Load a couple of machines, operators and tasks at startup
    seed_demo_data: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
