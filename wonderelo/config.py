"""Settings from the environment and an optional .env file; existing variables win."""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv(override=False)

DEFAULT_TIMEZONE = "Europe/Bratislava"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    timezone: str
    api_url: str
    anon_key: str
    poll_interval: float
    poll_max_attempts: int
    http_timeout: float
    allow_test_time: bool
    log_level: str


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("WONDERELO_DATABASE_URL", "sqlite:///./wonderelo.db"),
        timezone=os.getenv("WONDERELO_TIMEZONE", DEFAULT_TIMEZONE),
        api_url=os.getenv("WONDERELO_API_URL", "http://127.0.0.1:8000"),
        anon_key=os.getenv("WONDERELO_ANON_KEY", "public-anon-key"),
        poll_interval=float(os.getenv("WONDERELO_POLL_INTERVAL", "5")),
        poll_max_attempts=int(os.getenv("WONDERELO_POLL_MAX_ATTEMPTS", "60")),
        http_timeout=float(os.getenv("WONDERELO_HTTP_TIMEOUT", "10")),
        allow_test_time=_env_bool("WONDERELO_ALLOW_TEST_TIME", "1"),
        log_level=os.getenv("WONDERELO_LOG_LEVEL", "INFO").upper(),
    )
