"""Process configuration from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    superfilter_env: str = "development"
    superfilter_log_level: str = "info"

    # Defaults for the SLIC generator when not given on the command line
    superfilter_default_k: int = 500
    superfilter_default_m: float = 10.0

    # Guard against runaway processing; 0 disables it
    superfilter_max_increments: int = 0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
