# Booking chat endpoints.
# Sending is gated on the booking's chat state; history stays readable to participants.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from ..services import chat
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("campusrent.chat")


@router.get("/bookings/{booking_id}/messages", response_model=List[schemas.MessageRead])
def list_messages(
    booking_id: int,
    limit: int = Query(50, ge=1, le=100),
    since_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Message]:
    """
    Return chat history for a booking.

    Ordering:
    - Ascending by created_at, then id (stable)

    Pagination:
    - since_id: return messages with id strictly greater than this value
    """
    items = chat.list_messages(db, booking_id, user, since_id=since_id, limit=limit)
    logger.info(
        "messages.history",
        extra={
            "booking_id": booking_id,
            "since_id": since_id,
            "limit": limit,
            "count": len(items),
            "user_id": user.id,
        },
    )
    return items


@router.post(
    "/bookings/{booking_id}/messages",
    response_model=schemas.MessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def send_message(
    booking_id: int,
    payload: schemas.MessageCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Message:
    return chat.send_message(db, booking_id, user, payload.content)
