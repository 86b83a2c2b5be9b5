# Typed domain events and an in-process dispatcher.
# Services dispatch one event per committed transition; notifications and live snapshots hang off it as handlers.
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Type

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("campusrent.events")


@dataclass(frozen=True)
class BookingEvent:
    """Base event. 'actor_id' is the user whose action caused the transition."""

    booking: models.Booking
    actor_id: int

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class BookingCreated(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingStatusChanged(BookingEvent):
    previous: str = ""
    current: str = ""


@dataclass(frozen=True)
class PaymentSettled(BookingEvent):
    succeeded: bool = False
    transaction_id: Optional[int] = None
    reference_id: str = ""


@dataclass(frozen=True)
class ItemReceived(BookingEvent):
    pass


@dataclass(frozen=True)
class ReturnRequested(BookingEvent):
    pass


@dataclass(frozen=True)
class ReturnConfirmed(BookingEvent):
    pass


@dataclass(frozen=True)
class MessageSent(BookingEvent):
    message: Optional[models.Message] = None
    sender_name: str = ""


Handler = Callable[[Session, BookingEvent], None]


@dataclass
class EventBus:
    """
    Synchronous dispatcher keyed by event class.

    Handlers registered for a base class also receive its subclasses. Each
    handler runs in isolation: an exception is logged and the remaining
    handlers still run, so a side effect can never undo the transition that
    triggered it.
    """

    _handlers: Dict[Type[BookingEvent], List[Handler]] = field(default_factory=dict)

    def subscribe(self, event_type: Type[BookingEvent], handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type[BookingEvent], handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def dispatch(self, db: Session, event: BookingEvent) -> int:
        """Run every matching handler; return how many completed without raising."""
        ok = 0
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    handler(db, event)
                    ok += 1
                except Exception as exc:
                    logger.warning(
                        "event.handler.failed",
                        extra={
                            "event": event.name,
                            "booking_id": event.booking.id,
                            "handler": getattr(handler, "__name__", repr(handler)),
                            "error": str(exc),
                        },
                    )
        return ok


# Process-wide bus; wired in main.py
bus = EventBus()


def dispatch(db: Session, event: BookingEvent) -> int:
    return bus.dispatch(db, event)
