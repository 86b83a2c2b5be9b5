# Redis client helper: opt-in, fail-open access to a shared Redis connection.
# Used by booking locks, the write rate limiter and cross-process snapshot fan-out.
import logging
import os
from typing import Optional

_logger = logging.getLogger("campusrent.redis")


# Basic truthy parser for env flags (1, true, yes, on)
def truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def is_redis_enabled() -> bool:
    return truthy(os.getenv("REDIS_ENABLED", "false"))


# Cached client and a one-shot initialization guard; a failed attempt stays fail-open
_client = None
_initialized = False


def get_redis():
    """
    Return a Redis client if enabled and reachable; otherwise None.

    Initialization is lazy. Any connection error is logged once and the
    process keeps running without Redis for its lifetime.
    """
    global _client, _initialized
    if not is_redis_enabled():
        return None
    if _client is not None:
        return _client
    if _initialized:
        return None

    url = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    try:
        import redis

        _client = redis.Redis.from_url(
            url,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            retry_on_timeout=False,
            health_check_interval=0,
        )
        _client.ping()
        _initialized = True
        _logger.info("Connected to Redis at %s", url)
        return _client
    except Exception as exc:
        _logger.warning("Redis unavailable (fail-open): %s", exc)
        _client = None
        _initialized = True
        return None


def reset_redis() -> None:
    """Forget the cached client so the next call re-reads REDIS_ENABLED/REDIS_URL."""
    global _client, _initialized
    _client = None
    _initialized = False


def redis_status() -> str:
    """'disabled', 'up' or 'down' for the health endpoint."""
    if not is_redis_enabled():
        return "disabled"
    r = get_redis()
    if r is None:
        return "down"
    try:
        r.ping()
        return "up"
    except Exception as exc:
        _logger.warning("Redis ping failed: %s", exc)
        return "down"
