# Payment simulator: a fake gateway round-trip that writes one ledger row per attempt
# and moves the booking's payment state. No real gateway is contacted.
from __future__ import annotations

import asyncio
import logging
import os
import random
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..db import session_scope
from ..errors import ConflictError, PermissionDenied, StateError, TransientStoreError, ValidationError
from ..events import PaymentSettled, dispatch
from .bookings import conditional_update, get_booking
from .ledger import DEFAULT_REFERENCE_PREFIX, generate_reference_id, record_transaction, unique_reference_id

logger = logging.getLogger("campusrent.payments")

FAILED_MESSAGE = "Payment failed. Please try again."
RETRY_MESSAGE = "Something went wrong. Please retry."

PAYABLE_STATUSES = ("pending", "confirmed")
# Re-read and retry the booking write when only the version moved underneath us
_WRITE_ATTEMPTS = 3


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name)
        return float(raw) if raw is not None else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        raw = os.getenv(name)
        return int(raw) if raw is not None else default
    except ValueError:
        return default


@dataclass
class PaymentResult:
    status: str  # "success" | "failed"
    reference_id: str
    error: Optional[str] = None
    transaction_id: Optional[int] = None
    booking: Optional[models.Booking] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaymentSimulator:
    """
    Simulated gateway.

    Each attempt waits a uniformly random delay in [min_delay_ms, max_delay_ms]
    and then succeeds with probability success_rate, independently of earlier
    attempts. Defaults come from PAYMENT_SUCCESS_RATE (0.9),
    PAYMENT_MIN_DELAY_MS (1500), PAYMENT_MAX_DELAY_MS (2000) and
    PAYMENT_REFERENCE_PREFIX (RNT).

    Only one attempt per booking may be in flight in this process; a second
    concurrent call gets ConflictError.
    """

    def __init__(
        self,
        success_rate: Optional[float] = None,
        min_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        reference_prefix: Optional[str] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.success_rate = _env_float("PAYMENT_SUCCESS_RATE", 0.9) if success_rate is None else success_rate
        self.min_delay_ms = _env_int("PAYMENT_MIN_DELAY_MS", 1500) if min_delay_ms is None else min_delay_ms
        self.max_delay_ms = _env_int("PAYMENT_MAX_DELAY_MS", 2000) if max_delay_ms is None else max_delay_ms
        self.reference_prefix = reference_prefix or os.getenv("PAYMENT_REFERENCE_PREFIX", DEFAULT_REFERENCE_PREFIX)
        if not 0.0 <= self.success_rate <= 1.0:
            raise ValueError("success_rate must be within [0, 1]")
        if self.min_delay_ms < 0 or self.max_delay_ms < self.min_delay_ms:
            raise ValueError("delay bounds must satisfy 0 <= min_delay_ms <= max_delay_ms")
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep
        self._in_flight: Set[int] = set()
        self._guard = threading.Lock()

    def draw_delay_seconds(self) -> float:
        return self.rng.uniform(self.min_delay_ms, self.max_delay_ms) / 1000.0

    def draw_outcome(self) -> bool:
        return self.rng.random() < self.success_rate

    def in_flight(self, booking_id: int) -> bool:
        with self._guard:
            return booking_id in self._in_flight

    def _enter(self, booking_id: int) -> None:
        with self._guard:
            if booking_id in self._in_flight:
                raise ConflictError("A payment is already processing for this booking")
            self._in_flight.add(booking_id)

    def _leave(self, booking_id: int) -> None:
        with self._guard:
            self._in_flight.discard(booking_id)

    async def process_payment(
        self,
        booking_id: int,
        payer_id: int,
        method: str,
        amount: Optional[int] = None,
        db: Optional[Session] = None,
    ) -> PaymentResult:
        """
        Run one attempt end to end.

        Precondition failures raise before anything is written. Once past them
        the attempt always records a Transaction and returns a PaymentResult,
        except when a concurrent attempt already settled the booking
        (ConflictError, nothing written). Store errors come back as a failed
        result with RETRY_MESSAGE.

        Without a session the attempt opens its own, so it can finish after
        the requesting client has gone away.
        """
        self._enter(booking_id)
        try:
            with session_scope(db) as session:
                booking = get_booking(session, booking_id)
                charge = check_payable(booking, payer_id, method, amount)

                await self._sleep(self.draw_delay_seconds())
                succeeded = self.draw_outcome()
                return self._settle(session, booking_id, method, charge, succeeded)
        finally:
            self._leave(booking_id)

    def _settle(self, db: Session, booking_id: int, method: str, amount: int, succeeded: bool) -> PaymentResult:
        tx_status = "success" if succeeded else "failed"
        reference: Optional[str] = None

        try:
            reference = unique_reference_id(db, self.reference_prefix, self.rng)
            for _ in range(_WRITE_ATTEMPTS):
                db.expire_all()
                booking = get_booking(db, booking_id)
                if booking.payment_status == "success" or booking.status not in PAYABLE_STATUSES:
                    raise ConflictError("Booking was already paid or changed during payment")

                tx_id = record_transaction(
                    db,
                    {
                        "booking_id": booking.id,
                        "amount": amount,
                        "renter_id": booking.renter_id,
                        "provider_id": booking.provider_id,
                        "method": method,
                        "status": tx_status,
                        "reference_id": reference,
                        "item_title": booking.item_title,
                        "renter_name": booking.renter_name,
                        "provider_name": booking.provider_name,
                    },
                )
                if succeeded:
                    values = {
                        "payment_status": "success",
                        "status": "confirmed",
                        "payment_method": method,
                        "transaction_id": tx_id,
                        "chat_enabled": True,
                    }
                else:
                    values = {
                        "payment_status": "failed",
                        "status": "pending",
                        "payment_method": method,
                    }
                # A success can only commit while the booking is not already paid
                if conditional_update(
                    db,
                    booking,
                    values,
                    models.Booking.payment_status != "success",
                    models.Booking.status.in_(PAYABLE_STATUSES),
                ):
                    db.commit()
                    break
                db.rollback()
            else:
                raise ConflictError("Booking is being updated concurrently; please retry")
        except (SQLAlchemyError, TransientStoreError):
            db.rollback()
            if reference is None:
                # The lookup itself failed; the attempt still gets a code to show
                reference = generate_reference_id(self.reference_prefix, self.rng)
            logger.error(
                "payment.persist.failed",
                exc_info=True,
                extra={"booking_id": booking_id, "reference_id": reference, "outcome": tx_status},
            )
            return PaymentResult(status="failed", reference_id=reference, error=RETRY_MESSAGE)

        db.refresh(booking)
        logger.info(
            "payment.settled",
            extra={
                "booking_id": booking.id,
                "transaction_id": tx_id,
                "reference_id": reference,
                "outcome": tx_status,
                "method": method,
                "amount": amount,
            },
        )
        dispatch(
            db,
            PaymentSettled(
                booking=booking,
                actor_id=booking.renter_id,
                succeeded=succeeded,
                transaction_id=tx_id,
                reference_id=reference,
            ),
        )
        # Handlers commit on this session; reload so the result outlives it
        db.refresh(booking)
        return PaymentResult(
            status=tx_status,
            reference_id=reference,
            error=None if succeeded else FAILED_MESSAGE,
            transaction_id=tx_id,
            booking=booking,
        )


def check_payable(booking: models.Booking, payer_id: int, method: str, amount: Optional[int]) -> int:
    """Validate an attempt before anything is written; return the amount to charge."""
    if booking.renter_id != payer_id:
        raise PermissionDenied("Only the renter can pay for this booking")
    if booking.payment_status == "success":
        raise StateError("Booking already paid")
    if booking.status not in PAYABLE_STATUSES:
        raise StateError(f"Cannot pay for a {booking.status} booking")
    if method not in models.PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {method}")
    if amount is None:
        return booking.total_price
    if amount <= 0 or amount != booking.total_price:
        raise ValidationError("Amount does not match the booking total")
    return amount


_default_simulator: Optional[PaymentSimulator] = None
_default_lock = threading.Lock()


def get_payment_simulator() -> PaymentSimulator:
    """
    FastAPI dependency returning the process-wide simulator.

    One shared instance keeps the in-flight guard effective across requests.
    Tests swap it through app.dependency_overrides.
    """
    global _default_simulator
    with _default_lock:
        if _default_simulator is None:
            _default_simulator = PaymentSimulator()
        return _default_simulator
