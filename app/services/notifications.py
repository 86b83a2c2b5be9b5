# Notification trigger: turns committed booking/chat events into in-app notifications
# for the counterpart of whoever acted. Best-effort; never rolls back the transition.
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..errors import NotFoundError, PermissionDenied
from ..events import (
    BookingEvent,
    BookingStatusChanged,
    EventBus,
    ItemReceived,
    MessageSent,
    PaymentSettled,
    ReturnConfirmed,
    ReturnRequested,
)
from ..subscriptions import publish_notification

logger = logging.getLogger("campusrent.notifications")


def create_notification(
    db: Session,
    user_id: int,
    title: str,
    body: str,
    type: str = "system",
    metadata: Optional[Dict[str, Any]] = None,
) -> models.Notification:
    obj = models.Notification(
        user_id=user_id,
        title=title,
        body=body,
        type=type or "system",
        read=False,
        meta=metadata,
    )
    db.add(obj)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(obj)
    publish_notification(obj)
    return obj


def counterpart(booking: models.Booking, actor_id: int) -> int:
    return booking.provider_id if actor_id == booking.renter_id else booking.renter_id


def _item(booking: models.Booking) -> str:
    return booking.item_title or "the item"


def render(event: BookingEvent) -> Optional[Tuple[int, str, str, str, Dict[str, Any]]]:
    """(recipient, title, body, type, metadata) for an event, or None when it notifies nobody."""
    b = event.booking
    meta: Dict[str, Any] = {"bookingId": b.id, "renterId": b.renter_id, "providerId": b.provider_id}

    if isinstance(event, BookingStatusChanged):
        if event.current == "confirmed":
            title, body = "Booking approved", f"{b.provider_name or 'Your lender'} approved your booking for {_item(b)}."
        elif event.current == "cancelled":
            title, body = "Booking rejected", f"{b.provider_name or 'Your lender'} declined your booking for {_item(b)}."
        else:
            return None
        return counterpart(b, event.actor_id), title, body, "booking", meta

    if isinstance(event, PaymentSettled):
        # Failed attempts are reported to the payer directly, not through notifications
        if not event.succeeded:
            return None
        meta["transactionId"] = event.transaction_id
        meta["referenceId"] = event.reference_id
        body = f"{b.renter_name or 'Your renter'} paid {b.total_price} for {_item(b)}."
        return counterpart(b, event.actor_id), "Payment received", body, "booking", meta

    if isinstance(event, ItemReceived):
        body = f"{b.renter_name or 'Your renter'} confirmed they received {_item(b)}."
        return counterpart(b, event.actor_id), "Item handed over", body, "booking", meta

    if isinstance(event, ReturnRequested):
        body = f"{b.renter_name or 'Your renter'} marked {_item(b)} as ready for pickup."
        return counterpart(b, event.actor_id), "Return requested", body, "booking", meta

    if isinstance(event, ReturnConfirmed):
        body = f"{b.provider_name or 'Your lender'} confirmed the return of {_item(b)}."
        return counterpart(b, event.actor_id), "Return confirmed", body, "booking", meta

    if isinstance(event, MessageSent):
        recipient = event.message.receiver_id if event.message else counterpart(b, event.actor_id)
        if event.sender_name and b.item_title:
            body = f"{event.sender_name} sent a message about {b.item_title}."
        else:
            body = "You have a new message about your booking."
        return recipient, "New chat message", body, "chat", {"bookingId": b.id, "senderId": event.actor_id}

    return None


def on_booking_event(db: Session, event: BookingEvent) -> None:
    rendered = render(event)
    if rendered is None:
        return
    recipient, title, body, kind, meta = rendered
    try:
        create_notification(db, recipient, title, body, type=kind, metadata=meta)
    except SQLAlchemyError as exc:
        logger.warning(
            "notification.create.failed",
            extra={"event": event.name, "booking_id": event.booking.id, "user_id": recipient, "error": str(exc)},
        )


def register(bus: EventBus) -> None:
    bus.subscribe(BookingEvent, on_booking_event)


def list_notifications(
    db: Session,
    user: models.User,
    unread_only: bool = False,
    limit: int = 50,
) -> List[models.Notification]:
    q = db.query(models.Notification).filter(models.Notification.user_id == user.id)
    if unread_only:
        q = q.filter(models.Notification.read.is_(False))
    return q.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit).all()


def mark_read(db: Session, notification_id: int, user: models.User) -> models.Notification:
    obj = db.get(models.Notification, notification_id)
    if not obj:
        raise NotFoundError("Notification not found")
    if obj.user_id != user.id:
        raise PermissionDenied("Not your notification")
    if not obj.read:
        obj.read = True
        db.add(obj)
        db.commit()
        db.refresh(obj)
    return obj
