# Chat gate and booking-scoped messages.
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..errors import StateError
from ..events import MessageSent, dispatch
from .bookings import commit_or_raise, get_booking_for_participant

logger = logging.getLogger("campusrent.chat")

CLOSED_STATUSES = ("cancelled", "completed")
PREVIEW_LENGTH = 160


def chat_gate_open(chat_enabled: Optional[bool], status: str) -> bool:
    """Chat is open only while enabled AND the booking is not cancelled/completed."""
    return bool(chat_enabled) and status not in CLOSED_STATUSES


def is_chat_open(booking: models.Booking) -> bool:
    return chat_gate_open(booking.chat_enabled, booking.status)


def send_message(db: Session, booking_id: int, sender: models.User, content: str) -> models.Message:
    booking = get_booking_for_participant(db, booking_id, sender)
    if not is_chat_open(booking):
        raise StateError("Chat is not available for this booking")

    receiver_id = booking.provider_id if sender.id == booking.renter_id else booking.renter_id
    msg = models.Message(
        booking_id=booking.id,
        sender_id=sender.id,
        receiver_id=receiver_id,
        content=content,
        read=False,
    )
    db.add(msg)
    commit_or_raise(db, "send message")
    db.refresh(msg)

    # The booking's last-message cache is a convenience; a failed refresh keeps the message
    try:
        booking.last_message_preview = content[:PREVIEW_LENGTH]
        booking.last_message_at = datetime.now(timezone.utc)
        booking.last_message_sender_id = sender.id
        db.add(booking)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("chat.preview.failed", extra={"booking_id": booking.id, "error": str(exc)})

    logger.info("chat.message", extra={"booking_id": booking.id, "user_id": sender.id, "message_id": msg.id})
    dispatch(db, MessageSent(booking=booking, actor_id=sender.id, message=msg, sender_name=sender.name))
    return msg


def list_messages(
    db: Session,
    booking_id: int,
    user: models.User,
    since_id: Optional[int] = None,
    limit: int = 50,
) -> List[models.Message]:
    """History stays readable to both participants after the gate closes."""
    get_booking_for_participant(db, booking_id, user)
    q = db.query(models.Message).filter(models.Message.booking_id == booking_id)
    if since_id is not None:
        q = q.filter(models.Message.id > since_id)
    return q.order_by(models.Message.created_at.asc(), models.Message.id.asc()).limit(limit).all()
