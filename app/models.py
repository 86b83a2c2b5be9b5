# SQLAlchemy ORM models for the rental marketplace (users, items, bookings, ledger, notifications, messages).
# Keep business logic out of models; state transitions live in app/services.
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import declarative_mixin

from .db import Base


# Booking status values and the ones that keep a renter from booking the same item again
BOOKING_STATUSES = ("pending", "confirmed", "active", "completed", "cancelled")
BLOCKING_STATUSES = ("pending", "confirmed", "active")
PAYMENT_STATUSES = ("pending", "success", "failed")
PAYMENT_METHODS = ("card", "upi", "wallet")
ITEM_CATEGORIES = ("clothes", "gadgets", "books", "accessories")
NOTIFICATION_TYPES = ("booking", "chat", "system")


@declarative_mixin
class TimestampMixin:
    """Common UTC-aware timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Student account.

    Roles:
    - provider: lists items for rent
    - renter: books items from providers
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, index=True)  # "provider" or "renter"
    display_name = Column(String(120), nullable=False, default="")
    university = Column(String(255), nullable=True)

    @property
    def name(self) -> str:
        return self.display_name or self.email


class Item(Base, TimestampMixin):
    """Rentable item listed by a provider."""
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_name = Column(String(120), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(20), nullable=False)
    price = Column(Integer, nullable=False)  # per day
    available = Column(Boolean, nullable=False, default=True)
    # Ordered image references; legacy rows may hold bare URL strings
    images = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_items_available_category", "available", "category"),
    )


class Booking(Base, TimestampMixin):
    """Rental agreement between a renter and an item's provider.

    Status transitions:
    pending -> confirmed -> active -> completed
       └── cancelled

    Snapshot names (item_title, renter_name, provider_name) are captured at
    creation and never refreshed. 'version' backs the conditional updates
    used by every transition.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    renter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    item_title = Column(String(255), nullable=True)
    renter_name = Column(String(255), nullable=True)
    renter_email = Column(String(255), nullable=True)
    provider_name = Column(String(255), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_price = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(20), nullable=True)
    transaction_id = Column(Integer, nullable=True)
    chat_enabled = Column(Boolean, nullable=False, default=False)
    item_received = Column(Boolean, nullable=False, default=False)
    return_requested = Column(Boolean, nullable=False, default=False)
    return_confirmed = Column(Boolean, nullable=False, default=False)
    item_returned = Column(Boolean, nullable=False, default=False)
    return_requested_at = Column(DateTime(timezone=True), nullable=True)
    return_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    last_message_preview = Column(String(160), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_sender_id = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # Conflict checks query by (item, renter); dashboards by renter/provider and status
    __table_args__ = (
        Index("ix_bookings_item_renter", "item_id", "renter_id"),
        Index("ix_bookings_status", "status"),
    )


class Transaction(Base):
    """Append-only record of a single payment attempt."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    renter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    method = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    reference_id = Column(String(32), nullable=False, unique=True)
    item_title = Column(String(255), nullable=True)
    renter_name = Column(String(255), nullable=True)
    provider_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Notification(Base):
    """In-app notification produced by a booking or chat transition."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    body = Column(String(1000), nullable=False)
    type = Column(String(20), nullable=False, default="system")
    read = Column(Boolean, nullable=False, default=False)
    # 'metadata' is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_created_at", "user_id", "created_at"),
    )


class Message(Base):
    """Chat message exchanged between the renter and provider of a booking."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(String(1000), nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Composite index to paginate messages per booking in chronological order
    __table_args__ = (
        Index("ix_messages_booking_created_at", "booking_id", "created_at"),
    )
