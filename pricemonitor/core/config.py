"""Application configuration helpers.

Everything is read from the environment (optionally seeded from a `.env`
file). Invalid values fail fast with `ConfigError` so the process never
enters the dispatch loop with a broken setup.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Tuple, TypeVar

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

T = TypeVar("T", int, float)

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    stations: Tuple[str, ...] = ()
    database_url: str = ""
    database_user: str = "postgres"
    database_password: str = "password"
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "pricemonitor"
    pool_size: int = 5
    interval_seconds: float = 60.0
    flush_capacity: int = 1000
    flush_deadline_seconds: float = 30.0
    flush_fill_ratio: float = 0.8
    funnel_size: int = 1
    request_timeout: float = 10.0
    status_port: int = 0
    log_level: str = "INFO"

    @property
    def dsn(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"host={self.database_host} port={self.database_port} dbname={self.database_name} "
            f"user={self.database_user} password={self.database_password}"
        )


def _get_number(name: str, default: T, cast: Callable[[str], T], minimum: T, exclusive: bool = False) -> T:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum or (exclusive and value == minimum):
        bound = ">" if exclusive else ">="
        raise ConfigError(f"{name} must be {bound} {minimum}, got {value}")
    return value


def parse_station_list(raw: str) -> Tuple[str, ...]:
    """Split a comma-separated identifier list, dropping empty entries."""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _log_level_name() -> str:
    return os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"


def get_log_level() -> str:
    """Return LOG_LEVEL for the logging setup that runs before `get_settings`.

    Unknown names fall back to INFO here; `get_settings` rejects them.
    """
    load_dotenv()
    level = _log_level_name()
    return level if level in LOG_LEVELS else "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate and cache settings from environment variables."""
    load_dotenv()

    stations = parse_station_list(os.getenv("PRICEMONITOR_STATIONS", ""))
    if not stations:
        logger.warning("PRICEMONITOR_STATIONS is not set; not tracking any stations.")

    fill_ratio = _get_number("PRICEMONITOR_FLUSH_FILL_RATIO", 0.8, float, 0.0, exclusive=True)
    if fill_ratio > 1.0:
        raise ConfigError(f"PRICEMONITOR_FLUSH_FILL_RATIO must be <= 1, got {fill_ratio}")

    log_level = _log_level_name()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    return Settings(
        stations=stations,
        database_url=os.getenv("PRICEMONITOR_DATABASE_URL", ""),
        database_user=os.getenv("PRICEMONITOR_DATABASE_USER", "postgres"),
        database_password=os.getenv("PRICEMONITOR_DATABASE_PASSWORD", "password"),
        database_host=os.getenv("PRICEMONITOR_DATABASE_HOST", "localhost"),
        database_port=_get_number("PRICEMONITOR_DATABASE_PORT", 5432, int, 1),
        database_name=os.getenv("PRICEMONITOR_DATABASE_NAME", "pricemonitor"),
        pool_size=_get_number("PRICEMONITOR_POOL_SIZE", 5, int, 1),
        interval_seconds=_get_number("PRICEMONITOR_INTERVAL_SECONDS", 60.0, float, 0.0, exclusive=True),
        flush_capacity=_get_number("PRICEMONITOR_FLUSH_CAPACITY", 1000, int, 1),
        flush_deadline_seconds=_get_number("PRICEMONITOR_FLUSH_DEADLINE_SECONDS", 30.0, float, 0.0, exclusive=True),
        flush_fill_ratio=fill_ratio,
        funnel_size=_get_number("PRICEMONITOR_FUNNEL_SIZE", 1, int, 0),
        request_timeout=_get_number("PRICEMONITOR_REQUEST_TIMEOUT", 10.0, float, 0.0, exclusive=True),
        status_port=_get_number("PRICEMONITOR_STATUS_PORT", 0, int, 0),
        log_level=log_level,
    )
