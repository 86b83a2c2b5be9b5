# Notification trigger test suite: one notification per transition, addressed to the counterpart,
# best-effort creation, and the inbox endpoints.
from __future__ import annotations

from datetime import date
from typing import Tuple

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.db import SessionLocal
from app import models
from app.events import BookingEvent, bus
from app.services import notifications
from app.services.bookings import utc_today


def signup(client: TestClient, email: str, password: str, role: str | None = None, name: str = "") -> Tuple[str, dict]:
    payload = {"email": email, "password": password, "display_name": name}
    if role:
        payload["role"] = role
    r = client.post("/auth/signup", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def setup_booking(client: TestClient, suffix: str) -> Tuple[str, dict, str, dict, dict]:
    provider_token, provider = signup(client, f"lender-{suffix}@example.edu", "changeme123", "provider", "Pat")
    item = client.post(
        "/api/v1/items",
        headers=auth_headers(provider_token),
        json={"title": "Projector", "price": 120, "category": "gadgets"},
    ).json()
    renter_token, renter = signup(client, f"renter-{suffix}@example.edu", "changeme123", "renter", "Sam")
    year = utc_today().year + 1
    r = client.post(
        "/api/v1/bookings",
        headers=auth_headers(renter_token),
        json={"item_id": item["id"], "start_date": date(year, 6, 1).isoformat(), "end_date": date(year, 6, 2).isoformat()},
    )
    assert r.status_code == 201, r.text
    return renter_token, renter, provider_token, provider, r.json()


def inbox(user_id: int):
    db = SessionLocal()
    try:
        return (
            db.query(models.Notification)
            .filter(models.Notification.user_id == user_id)
            .order_by(models.Notification.id.asc())
            .all()
        )
    finally:
        db.close()


def test_booking_creation_does_not_notify(client: TestClient):
    _, renter, _, provider, _ = setup_booking(client, "create")
    assert inbox(provider["id"]) == []
    assert inbox(renter["id"]) == []


def test_each_transition_notifies_the_counterpart_once(client: TestClient, force_payment):
    renter_token, renter, provider_token, provider, booking = setup_booking(client, "flow")
    bid = booking["id"]

    force_payment(False)
    client.post(f"/api/v1/bookings/{bid}/pay", headers=auth_headers(renter_token), json={"method": "card"})
    # Failed attempts are not announced
    assert inbox(provider["id"]) == []

    force_payment(True)
    client.post(f"/api/v1/bookings/{bid}/pay", headers=auth_headers(renter_token), json={"method": "card"})
    client.post(f"/api/v1/bookings/{bid}/messages", headers=auth_headers(renter_token), json={"content": "hello"})
    client.post(f"/api/v1/bookings/{bid}/receipt", headers=auth_headers(renter_token))
    client.post(f"/api/v1/bookings/{bid}/return-request", headers=auth_headers(renter_token))
    client.post(f"/api/v1/bookings/{bid}/return-confirm", headers=auth_headers(provider_token))

    to_provider = inbox(provider["id"])
    assert [n.title for n in to_provider] == ["Payment received", "New chat message", "Item handed over", "Return requested"]
    assert [n.type for n in to_provider] == ["booking", "chat", "booking", "booking"]
    assert all(n.meta["bookingId"] == bid for n in to_provider)
    assert to_provider[0].meta["transactionId"] is not None

    to_renter = inbox(renter["id"])
    assert [n.title for n in to_renter] == ["Return confirmed"]
    assert "Projector" in to_renter[0].body


def test_approve_and_reject_notify_renter(client: TestClient):
    renter_token, renter, provider_token, _, booking = setup_booking(client, "decide")
    client.post(f"/api/v1/bookings/{booking['id']}/approve", headers=auth_headers(provider_token))
    notes = inbox(renter["id"])
    assert [n.title for n in notes] == ["Booking approved"]
    assert "Pat" in notes[0].body


# Best-effort: a failing notification store never undoes the transition
def test_notification_failure_does_not_roll_back_transition(client: TestClient, monkeypatch):
    renter_token, renter, provider_token, _, booking = setup_booking(client, "broken")

    def failing_create(*args, **kwargs):
        raise OperationalError("INSERT INTO notifications", {}, Exception("disk I/O error"))

    monkeypatch.setattr(notifications, "create_notification", failing_create)

    r = client.post(f"/api/v1/bookings/{booking['id']}/reject", headers=auth_headers(provider_token))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "cancelled"
    assert inbox(renter["id"]) == []


def test_failing_handler_is_isolated_from_other_handlers(client: TestClient):
    renter_token, renter, provider_token, _, booking = setup_booking(client, "isolated")

    def explode(db, event):
        raise RuntimeError("handler bug")

    # Registered first so it runs before the notification handler
    bus.clear()
    bus.subscribe(BookingEvent, explode)
    notifications.register(bus)

    r = client.post(f"/api/v1/bookings/{booking['id']}/approve", headers=auth_headers(provider_token))
    assert r.status_code == 200, r.text
    assert [n.title for n in inbox(renter["id"])] == ["Booking approved"]


def test_inbox_endpoints_and_mark_read(client: TestClient):
    renter_token, renter, provider_token, _, booking = setup_booking(client, "inbox")
    client.post(f"/api/v1/bookings/{booking['id']}/approve", headers=auth_headers(provider_token))

    r = client.get("/api/v1/notifications", headers=auth_headers(renter_token))
    assert r.status_code == 200
    items = r.json()
    assert len(items) == 1
    note = items[0]
    assert note["read"] is False
    assert note["metadata"]["bookingId"] == booking["id"]

    # Only the recipient may mark it read
    assert client.post(f"/api/v1/notifications/{note['id']}/read", headers=auth_headers(provider_token)).status_code == 403
    assert client.post("/api/v1/notifications/9999/read", headers=auth_headers(renter_token)).status_code == 404

    r = client.post(f"/api/v1/notifications/{note['id']}/read", headers=auth_headers(renter_token))
    assert r.status_code == 200
    assert r.json()["read"] is True
    # Idempotent
    assert client.post(f"/api/v1/notifications/{note['id']}/read", headers=auth_headers(renter_token)).json()["read"] is True

    unread = client.get("/api/v1/notifications?unread_only=true", headers=auth_headers(renter_token)).json()
    assert unread == []
