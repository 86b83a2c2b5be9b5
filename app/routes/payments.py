# Payment endpoints backed by the in-process simulator.
# A declined or errored attempt is a normal 200 response with status="failed";
# only precondition problems are HTTP errors.
from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import DomainError
from .. import models, schemas
from ..rate_limit import rate_limit
from ..services import ledger
from ..services.bookings import get_booking_for_participant
from ..services.payments import PaymentSimulator, get_payment_simulator
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("campusrent.payments")


def _log_attempt_error(task: "asyncio.Future") -> None:
    # The task is only awaited while the client is connected; surface its error either way
    if task.cancelled() or task.exception() is None:
        return
    exc = task.exception()
    if isinstance(exc, DomainError):
        logger.info("payment.attempt.rejected", extra={"error": type(exc).__name__, "detail": exc.detail})
        return
    logger.error("payment.attempt.errored", exc_info=(type(exc), exc, exc.__traceback__))


@router.post(
    "/bookings/{booking_id}/pay",
    response_model=schemas.PaymentResultRead,
    dependencies=[Depends(rate_limit("payment"))],
)
async def pay_for_booking(
    booking_id: int,
    payload: schemas.PaymentRequest,
    user: models.User = Depends(get_current_user),
    simulator: PaymentSimulator = Depends(get_payment_simulator),
) -> schemas.PaymentResultRead:
    """
    Run one simulated payment attempt for the renter's booking.

    The attempt runs as its own task on its own session and is shielded, so a
    client that disconnects mid-delay does not leave the booking half-settled.
    """
    logger.info(
        "payment.requested",
        extra={"booking_id": booking_id, "user_id": user.id, "method": payload.method},
    )
    task = asyncio.ensure_future(
        simulator.process_payment(booking_id, user.id, payload.method, amount=payload.amount)
    )
    task.add_done_callback(_log_attempt_error)
    result = await asyncio.shield(task)
    return schemas.PaymentResultRead(
        status=result.status,
        reference_id=result.reference_id,
        error=result.error,
        transaction_id=result.transaction_id,
        booking=schemas.BookingRead.model_validate(result.booking) if result.booking is not None else None,
    )


@router.get("/bookings/{booking_id}/transactions", response_model=List[schemas.TransactionRead])
def list_booking_transactions(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Transaction]:
    """Payment audit trail of one booking, newest first."""
    get_booking_for_participant(db, booking_id, user)
    return ledger.query_by_booking(db, booking_id)
