# Redis client helper: opt-in, fail-open access to a shared Redis connection.
# Used by the rate limiter; REDIS_ENABLED and REDIS_URL come from Settings.
import logging
from typing import Optional

import redis

from .config import get_settings

_logger = logging.getLogger("roomledger.redis")


def is_redis_enabled() -> bool:
    return get_settings().redis_enabled


# Cached client instance (if connected) and a one-shot initialization guard.
# Once initialization is attempted and fails, this process stays fail-open.
_client: Optional[redis.Redis] = None
_initialized = False


def get_redis() -> Optional[redis.Redis]:
    """
    Return a Redis client if enabled and reachable; otherwise return None.

    Connects lazily on first call and never raises; after a failed attempt every
    later call in this process also returns None.
    """
    global _client, _initialized
    if not is_redis_enabled():
        return None
    if _client is not None:
        return _client
    if _initialized:
        return None

    url = get_settings().redis_url
    try:
        client = redis.Redis.from_url(
            url,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            retry_on_timeout=False,
            health_check_interval=0,
        )
        # Ping to verify connectivity and credentials
        client.ping()
    except redis.RedisError as exc:
        _logger.warning("Redis unavailable (fail-open): %s", exc)
        _initialized = True
        return None
    _client = client
    _initialized = True
    _logger.info("Connected to Redis at %s", url)
    return _client
