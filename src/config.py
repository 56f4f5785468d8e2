"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Lunara"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Adaptive engine ---
    state_path: str = ""  # JSON snapshot file; empty keeps state in memory only
    default_persona: str = "emma"
    adaptive_config_path: str = ""  # override for adaptive_config.yaml

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:8081"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "LUNARA_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
