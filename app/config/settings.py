from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "TutorAssign"
    debug: bool = False
    backend_api_url: str = "http://localhost:3001/api"
    backend_timeout_seconds: float = 10.0
    redis_url: str = "redis://localhost:6379/0"
    session_backend: Literal["memory", "redis"] = "memory"
    session_ttl_seconds: int = Field(1800, gt=0)
    travel_buffer_minutes: int = Field(60, ge=0)
    schedule_timezone: str = "Asia/Singapore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
