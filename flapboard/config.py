"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./flapboard.db"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str = DEFAULT_REDIS_URL
    database_url: str = DEFAULT_DATABASE_URL
    ip_hash_secret: str = "dev-secret"
    identity_header: str = "X-User-Id"
    log_level: str = "INFO"
    runs_per_hour_user: int = 100
    runs_per_hour_ip: int = 500
    run_start_cooldown_seconds: int = 3
    run_token_ttl_seconds: int = 600
    leaderboard_cache_ttl_seconds: int = 10
    db_reset: bool = False


def load_settings() -> Settings:
    return Settings(
        redis_url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        ip_hash_secret=os.getenv("IP_HASH_SECRET", "dev-secret"),
        identity_header=os.getenv("IDENTITY_HEADER", "X-User-Id"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        runs_per_hour_user=_env_int("RUNS_PER_HOUR_USER", 100),
        runs_per_hour_ip=_env_int("RUNS_PER_HOUR_IP", 500),
        run_start_cooldown_seconds=_env_int("RUN_START_COOLDOWN_SECONDS", 3),
        run_token_ttl_seconds=_env_int("RUN_TOKEN_TTL_SECONDS", 600),
        leaderboard_cache_ttl_seconds=_env_int("LEADERBOARD_CACHE_TTL_SECONDS", 10),
        db_reset=_env_bool("DB_RESET", False),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
