# Redis-backed guards test suite: the fixed-window rate limiter, the booking write lock, and health reporting.
# A small in-memory stand-in plays the Redis server; the code under test talks to it through get_redis().
from __future__ import annotations

from datetime import date
from typing import Dict, Optional, Tuple

from fastapi.testclient import TestClient

from app import locks, rate_limit, redis_client
from app.services.bookings import utc_today


class FakeRedis:
    def __init__(self) -> None:
        self.store: Dict[str, object] = {}

    def incr(self, key: str, amount: int = 1) -> int:
        self.store[key] = int(self.store.get(key, 0)) + amount
        return int(self.store[key])

    def expire(self, key: str, seconds: int) -> bool:
        return True

    def ttl(self, key: str) -> int:
        return 42

    def set(self, key: str, value: str, nx: bool = False, px: Optional[int] = None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def eval(self, script: str, numkeys: int, key: str, token: str) -> int:
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


def signup(client: TestClient, email: str, password: str, role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "password": password}
    if role:
        payload["role"] = role
    r = client.post("/auth/signup", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_login_rate_limited_after_window_cap(client: TestClient, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(rate_limit, "is_redis_enabled", lambda: True)
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)

    cap = rate_limit._limit_for_scope("login")
    for _ in range(cap):
        r = client.post("/auth/login", json={"email": "nobody@example.edu", "password": "changeme123"})
        assert r.status_code == 401
    r = client.post("/auth/login", json={"email": "nobody@example.edu", "password": "changeme123"})
    assert r.status_code == 429
    detail = r.json()["detail"]
    assert detail["error"] == "rate_limited"
    assert detail["scope"] == "login"
    assert detail["retry_after"] == 42


def test_rate_limiter_fails_open_on_redis_errors(client: TestClient, monkeypatch):
    class Broken(FakeRedis):
        def incr(self, key: str, amount: int = 1) -> int:
            raise ConnectionError("redis went away")

    monkeypatch.setattr(rate_limit, "is_redis_enabled", lambda: True)
    monkeypatch.setattr(rate_limit, "get_redis", lambda: Broken())

    r = client.post("/auth/login", json={"email": "nobody@example.edu", "password": "changeme123"})
    assert r.status_code == 401


def test_held_booking_lock_answers_busy(client: TestClient, monkeypatch):
    provider_token, _ = signup(client, "lender@example.edu", "changeme123", "provider")
    item = client.post(
        "/api/v1/items",
        headers=auth_headers(provider_token),
        json={"title": "Lamp", "price": 12, "category": "gadgets"},
    ).json()
    renter_token, renter = signup(client, "renter@example.edu", "changeme123", "renter")

    fake = FakeRedis()
    monkeypatch.setattr(locks, "get_redis", lambda: fake)
    year = utc_today().year + 1
    body = {"item_id": item["id"], "start_date": date(year, 6, 1).isoformat(), "end_date": date(year, 6, 2).isoformat()}

    # Another writer holds the (item, renter) lock
    key = locks.booking_lock_key(item["id"], renter["id"])
    fake.set(key, "someone-else")
    r = client.post("/api/v1/bookings", headers=auth_headers(renter_token), json=body)
    assert r.status_code == 429
    assert r.json()["detail"]["error"] == "busy"

    # Released: the booking goes through and our own lock is cleaned up
    del fake.store[key]
    r = client.post("/api/v1/bookings", headers=auth_headers(renter_token), json=body)
    assert r.status_code == 201, r.text
    assert key not in fake.store


def test_healthz_reports_redis_state(client: TestClient, monkeypatch):
    assert client.get("/healthz").json() == {"status": "ok", "redis": "disabled"}

    monkeypatch.setenv("REDIS_ENABLED", "true")
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    redis_client.reset_redis()
    try:
        assert client.get("/healthz").json() == {"status": "ok", "redis": "down"}
    finally:
        monkeypatch.undo()
        redis_client.reset_redis()
