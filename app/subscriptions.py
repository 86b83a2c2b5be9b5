# Live snapshot subscriptions: a per-topic fan-out of record snapshots to async consumers
# (the /ws/live feed). Optional Redis pub/sub carries snapshots across processes.
from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from sqlalchemy.orm import Session

from . import models, schemas
from .events import BookingEvent, EventBus
from .redis_client import get_redis, is_redis_enabled

logger = logging.getLogger("campusrent.live")

# Distinguishes our own Redis publications from other processes'
INSTANCE_ID = uuid4().hex
REDIS_CHANNEL_PREFIX = "live:"


def user_topic(user_id: int) -> str:
    return f"user:{user_id}"


def booking_topic(booking_id: int) -> str:
    return f"booking:{booking_id}"


class Subscription:
    """
    One consumer's view of one or more topics.

    Frames are queued on the consumer's event loop. When the queue is full the
    oldest frame is dropped, since a newer snapshot supersedes it.
    """

    def __init__(self, hub: "SnapshotHub", topics: Iterable[str], loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self.hub = hub
        self.topics = frozenset(topics)
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _offer(self, frame: Dict[str, Any]) -> None:
        if self.closed:
            return
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(frame)

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        self.hub.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class SnapshotHub:
    """Topic registry. subscribe() must run inside an event loop; publish() is safe from any thread."""

    def __init__(self, maxsize: int = 100) -> None:
        self.maxsize = maxsize
        self._subs: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, *topics: str, maxsize: Optional[int] = None) -> Subscription:
        if not topics:
            raise ValueError("subscribe() needs at least one topic")
        sub = Subscription(self, topics, asyncio.get_running_loop(), maxsize or self.maxsize)
        with self._lock:
            for topic in sub.topics:
                self._subs.setdefault(topic, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.closed = True
        with self._lock:
            for topic in sub.topics:
                subs = self._subs.get(topic)
                if subs is None:
                    continue
                subs.discard(sub)
                if not subs:
                    del self._subs[topic]

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subs.get(topic, ()))

    def deliver_local(self, topic: str, frame: Dict[str, Any]) -> int:
        """Queue the frame for every local subscriber of the topic; return how many were reached."""
        with self._lock:
            subs: List[Subscription] = list(self._subs.get(topic, ()))
        delivered = 0
        for sub in subs:
            try:
                sub.loop.call_soon_threadsafe(sub._offer, frame)
                delivered += 1
            except RuntimeError:
                # The consumer's loop is gone; drop the subscription
                self.unsubscribe(sub)
        return delivered

    def publish(self, topic: str, frame: Dict[str, Any]) -> int:
        delivered = self.deliver_local(topic, frame)
        _fan_out(topic, frame)
        return delivered


hub = SnapshotHub()


def booking_frame(topic: str, booking: models.Booking) -> Dict[str, Any]:
    frame = schemas.SnapshotFrame(topic=topic, kind="booking", data=schemas.BookingRead.model_validate(booking))
    return frame.model_dump(mode="json")


def notification_frame(topic: str, notification: models.Notification) -> Dict[str, Any]:
    data = schemas.NotificationRead.model_validate(notification)
    return schemas.SnapshotFrame(topic=topic, kind="notification", data=data).model_dump(mode="json")


def publish_booking(booking: models.Booking) -> int:
    """Push the booking's current state to its own topic and to both participants."""
    delivered = 0
    for topic in (booking_topic(booking.id), user_topic(booking.renter_id), user_topic(booking.provider_id)):
        if not hub.subscriber_count(topic) and not is_redis_enabled():
            continue
        delivered += hub.publish(topic, booking_frame(topic, booking))
    return delivered


def publish_notification(notification: models.Notification) -> int:
    topic = user_topic(notification.user_id)
    if not hub.subscriber_count(topic) and not is_redis_enabled():
        return 0
    return hub.publish(topic, notification_frame(topic, notification))


def on_booking_event(db: Session, event: BookingEvent) -> None:
    publish_booking(event.booking)


def register(bus: EventBus) -> None:
    bus.subscribe(BookingEvent, on_booking_event)


def _fan_out(topic: str, frame: Dict[str, Any]) -> None:
    if not is_redis_enabled():
        return
    try:
        r = get_redis()
        if r is not None:
            r.publish(REDIS_CHANNEL_PREFIX + topic, json.dumps({"origin": INSTANCE_ID, "frame": frame}))
    except Exception as exc:
        logger.warning("live.redis.publish_failed", extra={"topic": topic, "error": str(exc)})


def handle_redis_message(message: Dict[str, Any]) -> bool:
    """Deliver one pub/sub message from another process locally. Returns False if ignored."""
    if message.get("type") != "pmessage":
        return False
    channel = message.get("channel")
    data = message.get("data")
    if isinstance(channel, bytes):
        channel = channel.decode("utf-8")
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        payload = json.loads(data)
    except (TypeError, ValueError):
        return False
    if payload.get("origin") == INSTANCE_ID:
        return False
    topic = str(channel)[len(REDIS_CHANNEL_PREFIX):]
    hub.deliver_local(topic, payload.get("frame") or {})
    return True


def start_redis_subscriber() -> None:
    """
    Background thread relaying live:* publications from other processes into
    the local hub. Reconnects with exponential backoff; no-op when Redis is off.
    """
    if not is_redis_enabled():
        logger.info("live.redis.subscriber.disabled")
        return

    def _run() -> None:
        backoff = 0.5
        max_backoff = 5.0
        while True:
            try:
                r = get_redis()
                if r is None:
                    time.sleep(backoff)
                    backoff = min(max_backoff, backoff * 2)
                    continue
                pubsub = r.pubsub()
                pubsub.psubscribe(REDIS_CHANNEL_PREFIX + "*")
                logger.info("live.redis.subscriber.started")
                backoff = 0.5
                for message in pubsub.listen():
                    if message:
                        handle_redis_message(message)
            except Exception as exc:
                logger.warning("live.redis.subscriber.error", extra={"error": str(exc)})
                time.sleep(backoff)
                backoff = min(max_backoff, backoff * 2)

    t = threading.Thread(target=_run, name="live-redis-subscriber", daemon=True)
    t.start()
