from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # API (state endpoint + task control)
    api_host: str = "127.0.0.1"
    api_port: int = 8090

    # Tasks launched at startup (YAML, optional)
    tasks_file: str = ""

    # SIGTERM -> SIGKILL escalation when a task is killed
    kill_grace_seconds: float = 3.0

    # Logging
    log_level: str = "INFO"


settings = Settings()
