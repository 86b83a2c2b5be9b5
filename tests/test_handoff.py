# Handoff/return workflow test suite: guards before payment, the full happy path, and best-effort re-listing.
from __future__ import annotations

from datetime import date
from typing import Tuple

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.db import SessionLocal
from app import models
from app.services import handoff
from app.services.bookings import utc_today


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


def setup_booking(client: TestClient, suffix: str) -> Tuple[str, str, dict, dict]:
    """Returns (renter_token, provider_token, item, booking)."""
    provider_token, _ = signup(client, f"lender-{suffix}@example.edu", "changeme123", "provider")
    r = client.post(
        "/api/v1/items",
        headers=auth_headers(provider_token),
        json={"title": f"Bike {suffix}", "price": 100, "category": "gadgets"},
    )
    assert r.status_code == 201, r.text
    item = r.json()
    renter_token, _ = signup(client, f"renter-{suffix}@example.edu", "changeme123", "renter")
    year = utc_today().year + 1
    r = client.post(
        "/api/v1/bookings",
        headers=auth_headers(renter_token),
        json={"item_id": item["id"], "start_date": date(year, 6, 1).isoformat(), "end_date": date(year, 6, 3).isoformat()},
    )
    assert r.status_code == 201, r.text
    return renter_token, provider_token, item, r.json()


def post(client: TestClient, token: str, booking_id: int, action: str):
    return client.post(f"/api/v1/bookings/{booking_id}/{action}", headers=auth_headers(token))


def load_booking(booking_id: int) -> models.Booking:
    db = SessionLocal()
    try:
        return db.get(models.Booking, booking_id)
    finally:
        db.close()


# Receipt before payment success is refused and leaves the booking untouched
def test_confirm_receipt_before_payment_is_rejected(client: TestClient):
    renter_token, provider_token, _, booking = setup_booking(client, "early")
    before = load_booking(booking["id"])

    r = post(client, renter_token, booking["id"], "receipt")
    assert r.status_code == 400, r.text

    # Approval alone is not payment
    post(client, provider_token, booking["id"], "approve")
    r = post(client, renter_token, booking["id"], "receipt")
    assert r.status_code == 400, r.text

    after = load_booking(booking["id"])
    assert after.item_received is False
    assert after.status == "confirmed"
    assert after.version == before.version + 1


# Full happy path: create -> pay -> receive -> request return -> confirm return
def test_full_rental_lifecycle(client: TestClient, force_payment):
    force_payment(True)
    renter_token, provider_token, item, booking = setup_booking(client, "happy")

    r = client.post(
        f"/api/v1/bookings/{booking['id']}/pay",
        headers=auth_headers(renter_token),
        json={"method": "card"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["booking"]["status"] == "confirmed"

    # Only the renter confirms receipt
    assert post(client, provider_token, booking["id"], "receipt").status_code == 403
    r = post(client, renter_token, booking["id"], "receipt")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["booking"]["status"] == "active"
    assert body["booking"]["item_received"] is True
    assert body["warnings"] == []
    # Second receipt is refused
    assert post(client, renter_token, booking["id"], "receipt").status_code == 400

    # Provider cannot confirm a return nobody requested
    assert post(client, provider_token, booking["id"], "return-confirm").status_code == 400

    r = post(client, renter_token, booking["id"], "return-request")
    assert r.status_code == 200, r.text
    b = r.json()["booking"]
    assert b["return_requested"] is True
    assert b["return_requested_at"] is not None
    assert post(client, renter_token, booking["id"], "return-request").status_code == 400

    # Only the provider confirms the return
    assert post(client, renter_token, booking["id"], "return-confirm").status_code == 403
    r = post(client, provider_token, booking["id"], "return-confirm")
    assert r.status_code == 200, r.text
    body = r.json()
    b = body["booking"]
    assert b["status"] == "completed"
    assert b["item_returned"] is True
    assert b["return_confirmed"] is True
    assert b["return_confirmed_at"] is not None
    assert b["chat_enabled"] is False
    assert b["chat_open"] is False
    assert body["warnings"] == []

    assert client.get(f"/api/v1/items/{item['id']}").json()["available"] is True
    assert post(client, provider_token, booking["id"], "return-confirm").status_code == 400


def test_return_request_requires_receipt(client: TestClient, force_payment):
    force_payment(True)
    renter_token, _, _, booking = setup_booking(client, "noreceipt")
    client.post(f"/api/v1/bookings/{booking['id']}/pay", headers=auth_headers(renter_token), json={"method": "card"})

    r = post(client, renter_token, booking["id"], "return-request")
    assert r.status_code == 400
    assert load_booking(booking["id"]).return_requested is False


# Re-listing the item is best-effort: completion stands and a warning is returned
def test_confirm_return_survives_item_release_failure(client: TestClient, force_payment, monkeypatch):
    force_payment(True)
    renter_token, provider_token, item, booking = setup_booking(client, "relist")
    client.post(f"/api/v1/bookings/{booking['id']}/pay", headers=auth_headers(renter_token), json={"method": "card"})
    post(client, renter_token, booking["id"], "receipt")
    post(client, renter_token, booking["id"], "return-request")

    # Provider took the listing down meanwhile
    client.patch(
        f"/api/v1/items/{item['id']}/availability",
        headers=auth_headers(provider_token),
        json={"available": False},
    )

    def broken_get(self, entity, ident, *args, **kwargs):
        if entity is models.Item:
            raise OperationalError("SELECT items", {}, Exception("database is locked"))
        return original_get(self, entity, ident, *args, **kwargs)

    from sqlalchemy.orm import Session

    original_get = Session.get
    monkeypatch.setattr(Session, "get", broken_get)

    r = post(client, provider_token, booking["id"], "return-confirm")
    monkeypatch.undo()

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["booking"]["status"] == "completed"
    assert body["warnings"] == [handoff.ITEM_RELEASE_WARNING]
    assert client.get(f"/api/v1/items/{item['id']}").json()["available"] is False
