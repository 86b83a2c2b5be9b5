# Handoff/return workflow: the post-payment transitions. Each operation checks its
# preconditions on the loaded row, then commits through one conditional UPDATE that
# re-asserts the same preconditions, so a concurrent change makes it fail cleanly.
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..errors import PermissionDenied, StateError, TransientStoreError
from ..events import ItemReceived, ReturnConfirmed, ReturnRequested, dispatch
from .bookings import commit_or_raise, conditional_update, get_booking

logger = logging.getLogger("campusrent.handoff")

ITEM_RELEASE_WARNING = "Booking completed, but the item could not be marked available again."


def _apply(db: Session, booking: models.Booking, values: dict, *criteria, action: str) -> None:
    try:
        updated = conditional_update(db, booking, values, *criteria)
    except SQLAlchemyError as exc:
        db.rollback()
        raise TransientStoreError(f"Could not {action}. Please try again.") from exc
    if not updated:
        db.rollback()
        raise StateError("Booking changed in the meantime; reload and try again")
    commit_or_raise(db, action)
    db.refresh(booking)


def confirm_receipt(db: Session, booking_id: int, actor: models.User) -> models.Booking:
    """Renter confirms the item was handed over: confirmed -> active."""
    booking = get_booking(db, booking_id)
    if booking.renter_id != actor.id:
        raise PermissionDenied("Only the renter can confirm receipt")
    if booking.payment_status != "success":
        raise StateError("Payment must succeed before the item can be received")
    if booking.item_received:
        raise StateError("Item already marked as received")
    if booking.status != "confirmed":
        raise StateError(f"Cannot confirm receipt for a {booking.status} booking")

    _apply(
        db,
        booking,
        {"item_received": True, "status": "active"},
        models.Booking.payment_status == "success",
        models.Booking.item_received.is_(False),
        models.Booking.status == "confirmed",
        action="confirm receipt",
    )
    logger.info("handoff.received", extra={"booking_id": booking.id, "actor_id": actor.id})
    dispatch(db, ItemReceived(booking=booking, actor_id=actor.id))
    return booking


def request_return(db: Session, booking_id: int, actor: models.User) -> models.Booking:
    """Renter marks the item ready for pickup."""
    booking = get_booking(db, booking_id)
    if booking.renter_id != actor.id:
        raise PermissionDenied("Only the renter can request a return")
    if not booking.item_received:
        raise StateError("The item has not been received yet")
    if booking.return_requested:
        raise StateError("Return already requested")
    if booking.status in ("cancelled", "completed"):
        raise StateError(f"Cannot request a return for a {booking.status} booking")

    _apply(
        db,
        booking,
        {"return_requested": True, "return_requested_at": datetime.now(timezone.utc)},
        models.Booking.item_received.is_(True),
        models.Booking.return_requested.is_(False),
        models.Booking.status.notin_(("cancelled", "completed")),
        action="request the return",
    )
    logger.info("handoff.return_requested", extra={"booking_id": booking.id, "actor_id": actor.id})
    dispatch(db, ReturnRequested(booking=booking, actor_id=actor.id))
    return booking


def confirm_return(db: Session, booking_id: int, actor: models.User) -> Tuple[models.Booking, List[str]]:
    """
    Provider confirms the item came back: the booking completes, chat closes,
    and the item is listed as available again.

    Re-listing is best-effort. If it fails the completion stands and the
    returned warnings say so.
    """
    booking = get_booking(db, booking_id)
    if booking.provider_id != actor.id:
        raise PermissionDenied("Only the provider can confirm the return")
    if not booking.return_requested:
        raise StateError("The renter has not requested a return")
    if booking.status == "completed":
        raise StateError("Booking already completed")

    _apply(
        db,
        booking,
        {
            "status": "completed",
            "return_confirmed": True,
            "item_returned": True,
            "return_confirmed_at": datetime.now(timezone.utc),
            "chat_enabled": False,
        },
        models.Booking.return_requested.is_(True),
        models.Booking.status != "completed",
        action="confirm the item return",
    )
    logger.info("handoff.return_confirmed", extra={"booking_id": booking.id, "actor_id": actor.id})

    warnings: List[str] = []
    if not release_item(db, booking.item_id):
        warnings.append(ITEM_RELEASE_WARNING)

    dispatch(db, ReturnConfirmed(booking=booking, actor_id=actor.id))
    return booking, warnings


def release_item(db: Session, item_id: int) -> bool:
    """Set the item available again; last write wins against the owner's manual toggle."""
    try:
        item = db.get(models.Item, item_id)
        if item is None:
            logger.warning("handoff.item_missing", extra={"item_id": item_id})
            return False
        item.available = True
        db.add(item)
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("handoff.item_release_failed", extra={"item_id": item_id, "error": str(exc)})
        return False
