from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..db import SessionLocal
from .. import models
from ..subscriptions import Subscription, booking_frame, booking_topic, hub, user_topic
from .auth import user_from_token  # reuse JWT verification from REST

router = APIRouter()
logger = logging.getLogger("campusrent.live")


def _get_token_from_ws(websocket: WebSocket) -> Optional[str]:
    # Prefer Authorization header if present
    auth = websocket.headers.get("authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    # Fallback to query param ?token= (browsers cannot set WS headers)
    return websocket.query_params.get("token") or None


def _authorize(db: Session, token: str, booking_id: Optional[int]) -> tuple[models.User, Optional[models.Booking]]:
    user = user_from_token(db, token)  # raises HTTPException(401) on failure
    if booking_id is None:
        return user, None
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        raise LookupError("Booking not found")
    if user.id not in (booking.renter_id, booking.provider_id):
        raise PermissionError("Not a participant in this booking")
    return user, booking


async def _pump(websocket: WebSocket, sub: Subscription) -> None:
    async for frame in sub:
        await websocket.send_text(json.dumps(frame))


@router.websocket("/live")
async def live_feed(websocket: WebSocket, booking_id: Optional[int] = None) -> None:
    """
    Live snapshot feed.
    - Auth: JWT required via Authorization: Bearer or ?token=
    - Always subscribed to user:{id}; ?booking_id= adds booking:{id} for participants
    - On connect with booking_id the current booking snapshot is sent first
    - Server -> Client: {"topic", "kind": "booking"|"notification", "data"}
    - Client -> Server: {"type": "ping"} answered with {"type": "pong"}; anything else is ignored
    """
    token = _get_token_from_ws(websocket)
    if not token:
        await websocket.close(code=1008)  # Policy violation
        return

    db: Session = SessionLocal()
    try:
        user, booking = _authorize(db, token, booking_id)
        topics: List[str] = [user_topic(user.id)]
        initial = None
        if booking is not None:
            topics.append(booking_topic(booking.id))
            initial = booking_frame(booking_topic(booking.id), booking)
        user_id = user.id
    except (HTTPException, LookupError, PermissionError):
        await websocket.close(code=1008)
        return
    finally:
        db.close()

    await websocket.accept()
    sub = hub.subscribe(*topics)
    logger.info("live.ws.connected", extra={"user_id": user_id, "topics": topics})

    pump: Optional[asyncio.Future] = None
    try:
        if initial is not None:
            await websocket.send_text(json.dumps(initial))
        pump = asyncio.ensure_future(_pump(websocket, sub))
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            try:
                payload = json.loads(raw)
            except ValueError:
                continue
            if isinstance(payload, dict) and payload.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    finally:
        sub.close()
        if pump is not None:
            pump.cancel()
        logger.info(
            "live.ws.disconnected",
            extra={"user_id": user_id, "topics": topics, "dropped": sub.dropped},
        )
