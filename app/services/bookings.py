# Booking entity manager: creation with conflict checks, provider decisions, and the
# conditional-update helper every later transition goes through.
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..errors import (
    BusyError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    StateError,
    TransientStoreError,
    ValidationError,
)
from ..events import BookingCreated, BookingStatusChanged, dispatch
from ..locks import booking_lock_key, redis_try_lock

logger = logging.getLogger("campusrent.bookings")

# Full lifecycle table. Only the pending -> * edges are provider decisions; the
# later edges belong to the handoff workflow, which adds its own flag guards.
ALLOWED_TRANSITIONS = {
    ("pending", "confirmed"),
    ("pending", "cancelled"),
    ("confirmed", "active"),
    ("active", "completed"),
}
PROVIDER_DECISIONS = {("pending", "confirmed"), ("pending", "cancelled")}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def day_count(start_date: date, end_date: date) -> int:
    """Inclusive day count: a same-day rental is one day."""
    return (end_date - start_date).days + 1


def compute_total_price(start_date: date, end_date: date, price_per_day: int) -> int:
    return day_count(start_date, end_date) * price_per_day


def commit_or_raise(db: Session, action: str) -> None:
    """Commit, or roll back and surface the store failure as retryable."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("store.write.failed", extra={"action": action, "error": str(exc)})
        raise TransientStoreError(f"Failed to {action}. Please try again.") from exc


def has_blocking_booking(db: Session, item_id: int, renter_id: int, today: Optional[date] = None) -> bool:
    """
    True if the renter already holds a pending/confirmed/active booking for the
    item that has not ended yet (end_date >= today).
    """
    today = today or utc_today()
    exists = (
        db.query(models.Booking.id)
        .filter(
            models.Booking.item_id == item_id,
            models.Booking.renter_id == renter_id,
            models.Booking.status.in_(models.BLOCKING_STATUSES),
            models.Booking.end_date >= today,
        )
        .first()
    )
    return exists is not None


def create_booking(
    db: Session,
    renter: models.User,
    item_id: int,
    start_date: Optional[date],
    end_date: Optional[date],
    today: Optional[date] = None,
) -> models.Booking:
    if start_date is None or end_date is None:
        raise ValidationError("start_date and end_date are required")

    item = db.get(models.Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    if item.owner_id == renter.id:
        raise ValidationError("You cannot book your own item")
    if not item.available:
        raise ValidationError("Item is not available")
    if not item.price or item.price <= 0:
        raise ValidationError("Item price must be positive")

    days = day_count(start_date, end_date)
    if days <= 0:
        raise ValidationError("end_date must not be before start_date")

    with redis_try_lock(booking_lock_key(item.id, renter.id), ttl_ms=5000) as locked:
        if not locked:
            raise BusyError({"error": "busy", "retry_after": 1})

        if has_blocking_booking(db, item.id, renter.id, today=today):
            raise ConflictError("You already have an upcoming booking for this item. Please wait until it ends.")

        owner = db.get(models.User, item.owner_id)
        obj = models.Booking(
            item_id=item.id,
            renter_id=renter.id,
            provider_id=item.owner_id,
            item_title=item.title,
            renter_name=renter.name,
            renter_email=renter.email,
            provider_name=item.provider_name or (owner.name if owner else None),
            start_date=start_date,
            end_date=end_date,
            total_price=days * item.price,
            status="pending",
            payment_status="pending",
            chat_enabled=False,
            item_received=False,
            return_requested=False,
            return_confirmed=False,
            item_returned=False,
            version=1,
        )
        db.add(obj)
        commit_or_raise(db, "create booking")
        db.refresh(obj)

    logger.info(
        "booking.created",
        extra={"booking_id": obj.id, "item_id": item.id, "renter_id": renter.id, "total_price": obj.total_price},
    )
    dispatch(db, BookingCreated(booking=obj, actor_id=renter.id))
    return obj


def get_booking(db: Session, booking_id: int) -> models.Booking:
    obj = db.get(models.Booking, booking_id)
    if not obj:
        raise NotFoundError("Booking not found")
    return obj


def get_booking_for_participant(db: Session, booking_id: int, user: models.User) -> models.Booking:
    obj = get_booking(db, booking_id)
    if user.id not in (obj.renter_id, obj.provider_id):
        raise PermissionDenied("Not a participant in this booking")
    return obj


def list_bookings(
    db: Session,
    user: models.User,
    as_role: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[models.Booking]:
    """Bookings where the user is renter (as_role='renter'), provider, or either when as_role is None."""
    q = db.query(models.Booking)
    if as_role == "renter":
        q = q.filter(models.Booking.renter_id == user.id)
    elif as_role == "provider":
        q = q.filter(models.Booking.provider_id == user.id)
    else:
        q = q.filter((models.Booking.renter_id == user.id) | (models.Booking.provider_id == user.id))
    return (
        q.order_by(models.Booking.created_at.desc(), models.Booking.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def conditional_update(db: Session, booking: models.Booking, values: Dict[str, Any], *criteria: Any) -> bool:
    """
    UPDATE the booking only if its version is unchanged and every extra
    criterion still holds. Bumps the version. Does not commit.

    Returns False when zero rows matched, i.e. someone else moved the booking first.
    """
    current_version = booking.version or 1
    payload = {getattr(models.Booking, k): v for k, v in values.items()}
    payload[models.Booking.version] = current_version + 1
    rows = (
        db.query(models.Booking)
        .filter(
            models.Booking.id == booking.id,
            models.Booking.version == current_version,
            *criteria,
        )
        .update(payload, synchronize_session=False)
    )
    return rows == 1


def set_booking_status(db: Session, booking_id: int, new_status: str, actor: models.User) -> models.Booking:
    """Provider approve (pending -> confirmed) or reject (pending -> cancelled)."""
    obj = get_booking(db, booking_id)
    if obj.provider_id != actor.id:
        raise PermissionDenied("Only the provider can approve or reject this booking")

    previous = obj.status
    edge = (previous, new_status)
    if edge not in ALLOWED_TRANSITIONS:
        raise StateError(f"Cannot move booking from {previous} to {new_status}")
    if edge not in PROVIDER_DECISIONS:
        raise StateError("Only pending bookings can be approved or rejected")

    try:
        updated = conditional_update(
            db,
            obj,
            {"status": new_status},
            models.Booking.status == previous,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise TransientStoreError("Unable to update booking status.") from exc
    if not updated:
        db.rollback()
        raise StateError("Booking changed in the meantime; reload and try again")
    commit_or_raise(db, "update booking status")
    db.refresh(obj)

    logger.info(
        "booking.status_changed",
        extra={"booking_id": obj.id, "from": previous, "to": new_status, "actor_id": actor.id},
    )
    dispatch(db, BookingStatusChanged(booking=obj, actor_id=actor.id, previous=previous, current=new_status))
    return obj
