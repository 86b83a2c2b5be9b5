# Booking endpoints: create, list, provider decisions and the handoff/return workflow.
# Business rules live in app/services; handlers resolve the actor and shape responses.
from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from ..services import bookings as booking_service
from ..services import handoff
from .auth import get_current_user

router = APIRouter()


@router.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.create_booking(db, user, payload.item_id, payload.start_date, payload.end_date)


@router.get("/bookings/me", response_model=List[schemas.BookingRead])
def list_my_bookings(
    as_role: Optional[Literal["renter", "provider"]] = Query(None, alias="as"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Booking]:
    """Renter dashboard (?as=renter), provider dashboard (?as=provider), or both."""
    return booking_service.list_bookings(db, user, as_role=as_role, limit=limit, offset=offset)


@router.get("/bookings/{booking_id}", response_model=schemas.BookingRead)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.get_booking_for_participant(db, booking_id, user)


@router.post(
    "/bookings/{booking_id}/status",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def set_booking_status(
    booking_id: int,
    payload: schemas.BookingStatusUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.set_booking_status(db, booking_id, payload.status, user)


@router.post(
    "/bookings/{booking_id}/approve",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def approve_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.set_booking_status(db, booking_id, "confirmed", user)


@router.post(
    "/bookings/{booking_id}/reject",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def reject_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.set_booking_status(db, booking_id, "cancelled", user)


# Handoff / return workflow


@router.post(
    "/bookings/{booking_id}/receipt",
    response_model=schemas.HandoffResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_receipt(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.HandoffResponse:
    obj = handoff.confirm_receipt(db, booking_id, user)
    return schemas.HandoffResponse(booking=schemas.BookingRead.model_validate(obj))


@router.post(
    "/bookings/{booking_id}/return-request",
    response_model=schemas.HandoffResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def request_return(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.HandoffResponse:
    obj = handoff.request_return(db, booking_id, user)
    return schemas.HandoffResponse(booking=schemas.BookingRead.model_validate(obj))


@router.post(
    "/bookings/{booking_id}/return-confirm",
    response_model=schemas.HandoffResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_return(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.HandoffResponse:
    obj, warnings = handoff.confirm_return(db, booking_id, user)
    return schemas.HandoffResponse(booking=schemas.BookingRead.model_validate(obj), warnings=warnings)
