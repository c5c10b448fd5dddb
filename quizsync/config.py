from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "QuizSync API"

    mongo_connection_string: str = "mongodb://localhost:27017"
    mongo_database: str = "quizsync"
    redis_url: str = "redis://127.0.0.1:6379"

    tick_interval_seconds: float = 1.0
    default_time_limit: int = 20
    min_players_to_start: int = 1
    pin_length: int = 6
    max_nickname_length: int = 20

    bus_retry_attempts: int = 3
    bus_retry_delay_seconds: float = 1.0

    cors_origins: List[str] = ["http://localhost:3000", "http://localhost"]

    model_config = SettingsConfigDict(env_file=".env")


_settings = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
