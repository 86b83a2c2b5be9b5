# Redis-backed fixed-window rate limiter for auth and write endpoints.
# - Per-IP counters keyed rl:v1:ip:{ip}:{scope} with a TTL-based window.
# - Fail-open if Redis is unavailable so the API stays usable in dev or outages.
import os
import logging
from typing import Callable, Dict, Literal, Optional

from fastapi import Request, HTTPException, status

from .redis_client import get_redis, is_redis_enabled

logger = logging.getLogger("campusrent.rate_limit")

Scope = Literal["login", "signup", "write", "payment"]

# Per-scope caps per window, each overridable by RATE_LIMIT_<SCOPE>_PER_WINDOW
_DEFAULT_LIMITS: Dict[str, int] = {
    "login": 10,
    "signup": 5,
    "write": 30,
    # Every attempt holds a simulated gateway call for up to two seconds
    "payment": 6,
}


def _to_int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


def _window_seconds() -> int:
    return _to_int(os.getenv("RATE_LIMIT_WINDOW_SECONDS"), 60)


def _limit_for_scope(scope: Scope) -> int:
    return _to_int(os.getenv(f"RATE_LIMIT_{scope.upper()}_PER_WINDOW"), _DEFAULT_LIMITS[scope])


def _client_ip(request: Request) -> str:
    # Forwarded headers are not trusted here; configure the proxy to pass the real peer
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    FastAPI dependency factory enforcing a fixed-window cap for one scope.

    The first hit in a window sets the TTL; later hits share it. Over the cap
    the request gets 429 with retry_after. Disabled or unreachable Redis lets
    every request through.
    """
    window = _window_seconds()
    limit = _limit_for_scope(scope)

    def _dependency(request: Request) -> None:
        if not is_redis_enabled():
            return

        r = get_redis()
        if r is None:
            return

        ip = _client_ip(request)
        key = f"rl:v1:ip:{ip}:{scope}"
        try:
            current = r.incr(key, amount=1)
            if current == 1:
                r.expire(key, window)
            if current > limit:
                ttl = r.ttl(key)
                retry_after = ttl if isinstance(ttl, int) and ttl > 0 else window
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail={
                        "error": "rate_limited",
                        "scope": scope,
                        "limit": limit,
                        "window_seconds": window,
                        "retry_after": retry_after,
                    },
                )
        except HTTPException:
            raise
        except Exception as exc:
            logger.warning("rate_limit.fail_open", extra={"scope": scope, "ip": ip, "error": str(exc)})
            return

    return _dependency
