"""Application settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "webconsole"
    tasks_dir: Path = Path("tasks")
    token_timeout_s: int = Field(default=600, ge=1)
    token_check_period_s: float = Field(default=60.0, gt=0)
    host: str = "0.0.0.0"
    port: int = Field(default=8090, ge=1, le=65535)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="WEBCONSOLE_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
