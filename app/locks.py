# Redis-backed locks that gate booking writes across processes.
# Fail open: if Redis is down the API keeps working and relies on conditional writes alone.
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

from .redis_client import get_redis

logger = logging.getLogger("campusrent.locks")

# Release only if the stored token is still ours
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


def booking_lock_key(item_id: int, renter_id: int) -> str:
    return f"lock:booking:item:{item_id}:renter:{renter_id}"


@contextmanager
def redis_try_lock(key: str, ttl_ms: int = 5000) -> Iterator[bool]:
    """
    Best-effort distributed lock implemented with Redis SET NX PX.

    Yields True when the lock is acquired or Redis is unavailable, False when
    another process holds it. Keep TTLs short; this guards a single check-then-insert:

        with redis_try_lock(booking_lock_key(item_id, renter_id)) as locked:
            if not locked:
                raise BusyError(...)
            # conflict check + insert
    """
    r = get_redis()
    if r is None:
        yield True
        return

    token = uuid4().hex
    acquired = False
    try:
        acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
    except Exception as exc:
        logger.warning("lock.acquire.failed", extra={"key": key, "error": str(exc)})
        acquired = False
        yield True
        return

    try:
        yield acquired
    finally:
        if acquired:
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception as exc:
                # The lock will expire by TTL
                logger.debug("lock.release.failed", extra={"key": key, "error": str(exc)})
