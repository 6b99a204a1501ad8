# Runtime configuration read from environment variables.
# Values are resolved once per process; tests set the environment before importing the app.
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


DEFAULT_DEV_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


# Basic truthy parser for env flags (1, true, yes, on)
def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _to_int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


# Parse CORS origins from a comma-separated value.
# '*' cannot be combined with credentials, so it falls back to the localhost origins.
def _parse_cors_origins(env_value: Optional[str]) -> List[str]:
    if not env_value:
        return list(DEFAULT_DEV_ORIGINS)
    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    if "*" in origins:
        return list(DEFAULT_DEV_ORIGINS)
    return origins


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./data.db"
    jwt_secret: str = "dev-secret-change-me"
    jwt_ttl_seconds: int = 60 * 60 * 3
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_DEV_ORIGINS))
    log_level: str = "INFO"

    # Outbound LINE push messages; an empty token keeps delivery offline
    line_channel_access_token: str = ""
    line_push_url: str = "https://api.line.me/v2/bot/message/push"
    notify_timeout_seconds: int = 5

    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_window_seconds: int = 60
    rate_limit_login_per_window: int = 10
    rate_limit_register_per_window: int = 5
    rate_limit_write_per_window: int = 60

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def line_enabled(self) -> bool:
        return bool(self.line_channel_access_token)

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            database_url=env.get("DATABASE_URL", "sqlite:///./data.db"),
            jwt_secret=env.get("ROOMLEDGER_JWT_SECRET", "dev-secret-change-me"),
            jwt_ttl_seconds=_to_int(env.get("JWT_TTL_SECONDS"), 60 * 60 * 3),
            cors_origins=_parse_cors_origins(env.get("CORS_ORIGINS")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            line_channel_access_token=env.get("LINE_CHANNEL_ACCESS_TOKEN", "").strip(),
            line_push_url=env.get("LINE_PUSH_URL", "https://api.line.me/v2/bot/message/push"),
            notify_timeout_seconds=_to_int(env.get("NOTIFY_TIMEOUT_SECONDS"), 5),
            redis_enabled=_truthy(env.get("REDIS_ENABLED", "false")),
            redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
            rate_limit_window_seconds=_to_int(env.get("RATE_LIMIT_WINDOW_SECONDS"), 60),
            rate_limit_login_per_window=_to_int(env.get("RATE_LIMIT_LOGIN_PER_WINDOW"), 10),
            rate_limit_register_per_window=_to_int(env.get("RATE_LIMIT_REGISTER_PER_WINDOW"), 5),
            rate_limit_write_per_window=_to_int(env.get("RATE_LIMIT_WRITE_PER_WINDOW"), 60),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
