# Application entrypoint: configures middleware, event handlers, startup routines, and API routers.
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from .db import Base, engine
from .errors import install_error_handlers
from .events import bus
from .redis_client import redis_status
from . import subscriptions
from .services import notifications
from .routes.auth import router as auth_router
from .routes.items import router as items_router
from .routes.bookings import router as bookings_router
from .routes.payments import router as payments_router
from .routes.transactions import router as transactions_router
from .routes.notifications import router as notifications_router
from .routes.messages import router as messages_router
from .routes.live_ws import router as live_ws_router

logger = logging.getLogger("campusrent.app")


# Parse CORS origins from a comma-separated env var.
# Note: '*' cannot be used with allow_credentials=True; we fall back to explicit localhost origins for dev.
def _parse_cors_origins(env_value: str | None) -> list[str]:
    default_dev_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    if not env_value:
        return default_dev_origins

    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    # Map '*' to explicit localhost origins so credentialed requests remain allowed
    if "*" in origins:
        return default_dev_origins

    return origins


def register_event_handlers() -> None:
    """Wire side effects onto the booking event bus. Safe to call repeatedly."""
    bus.clear()
    notifications.register(bus)
    subscriptions.register(bus)


app = FastAPI(title="CampusRent API", version="0.1.0")
allow_list = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)
register_event_handlers()


@app.on_event("startup")
def on_startup() -> None:
    # For local SQLite, auto-create tables; production DBs rely on Alembic migrations.
    if os.getenv("DATABASE_URL", "sqlite:///./data.db").startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    # Relay live snapshots published by other processes (no-op without Redis)
    subscriptions.start_redis_subscriber()
    logger.info("app.started")


# Liveness endpoint for container orchestrators; Redis is optional so its state is informational
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok", "redis": redis_status()}


# Mount application routers (authentication, domain APIs, and the live WebSocket feed)
app.include_router(auth_router, prefix="", tags=["auth"])
app.include_router(items_router, prefix="/api/v1", tags=["items"])
app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(payments_router, prefix="/api/v1", tags=["payments"])
app.include_router(transactions_router, prefix="/api/v1", tags=["transactions"])
app.include_router(notifications_router, prefix="/api/v1", tags=["notifications"])
app.include_router(messages_router, prefix="/api/v1", tags=["messages"])
app.include_router(live_ws_router, prefix="/ws", tags=["live"])
