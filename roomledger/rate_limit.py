# Request budgets for login, registration and writes, counted in Redis.
# Each client IP gets one counter per endpoint group per fixed window; the window
# number is part of the key, so counters roll over without a reset step.
# When Redis is off or failing, requests are let through.
import logging
import time
from typing import Callable, Dict, Literal

import redis
from fastapi import Request

from .config import get_settings
from .errors import TooManyRequests
from .redis_client import get_redis, is_redis_enabled

logger = logging.getLogger("roomledger.rate_limit")

Budget = Literal["login", "register", "write"]


def _budgets() -> Dict[str, int]:
    settings = get_settings()
    return {
        "login": settings.rate_limit_login_per_window,
        "register": settings.rate_limit_register_per_window,
        "write": settings.rate_limit_write_per_window,
    }


def _caller(request: Request) -> str:
    # Forwarded headers are ignored; deploy behind a proxy that sets the peer address
    return request.client.host if request.client and request.client.host else "unknown"


def _count_hit(client: redis.Redis, key: str, window: int) -> int:
    pipe = client.pipeline()
    pipe.incr(key)
    pipe.expire(key, window * 2)
    hits, _ = pipe.execute()
    return int(hits)


def rate_limit(budget: Budget) -> Callable[[Request], None]:
    """
    FastAPI dependency enforcing the per-window budget for one endpoint group.

    Over budget raises TooManyRequests (429) carrying the budget, the window
    and the seconds until the next window opens.
    """
    if budget not in ("login", "register", "write"):
        raise ValueError(f"unknown rate limit budget: {budget}")

    def _dependency(request: Request) -> None:
        if not is_redis_enabled():
            return
        client = get_redis()
        if client is None:
            return

        window = get_settings().rate_limit_window_seconds
        limit = _budgets()[budget]
        now = int(time.time())
        bucket = now // window
        caller = _caller(request)
        key = f"roomledger:rl:{budget}:{caller}:{bucket}"
        try:
            hits = _count_hit(client, key, window)
        except redis.RedisError as exc:
            logger.warning("rate_limit.unavailable budget=%s caller=%s: %s", budget, caller, exc)
            return
        if hits > limit:
            raise TooManyRequests(
                "Too many requests",
                {
                    "budget": budget,
                    "limit": limit,
                    "window_seconds": window,
                    "retry_after": (bucket + 1) * window - now,
                },
            )

    return _dependency
