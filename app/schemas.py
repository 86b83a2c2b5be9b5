# Pydantic models (request/response DTOs) used by the API layer.
# Read models are the deserialization boundary: optional legacy fields get explicit defaults here.
from pydantic import AliasChoices, BaseModel, Field, ConfigDict, computed_field, field_validator, EmailStr
from typing import Any, List, Literal, Optional, Union
from datetime import date, datetime

from .services.chat import chat_gate_open


BookingStatus = Literal["pending", "confirmed", "active", "completed", "cancelled"]
PaymentStatus = Literal["pending", "success", "failed"]
PaymentMethod = Literal["card", "upi", "wallet"]
Category = Literal["clothes", "gadgets", "books", "accessories"]
NotificationType = Literal["booking", "chat", "system"]


# Items
class ImageRef(BaseModel):
    url: str = Field(..., min_length=1)
    thumb: Optional[str] = None


# Base attributes for an item listing (shared by create/read)
class ItemBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)
    category: Category
    price: int = Field(..., gt=0)
    images: List[ImageRef] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip()
        return v

    # Legacy listings stored bare URL strings; lift them to {url, thumb}
    @field_validator("images", mode="before")
    @classmethod
    def normalize_images(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [{"url": img} if isinstance(img, str) else img for img in v]
        return v


# Payload for listing a new item
class ItemCreate(ItemBase):
    pass


# Response shape when reading an item
class ItemRead(ItemBase):
    id: int
    owner_id: int
    provider_name: Optional[str] = None
    available: bool = True
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Provider toggles availability by hand
class AvailabilityUpdate(BaseModel):
    available: bool


# Bookings
# Dates are optional here so that missing dates surface as a domain validation error
class BookingCreate(BaseModel):
    item_id: int = Field(..., ge=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


_BOOKING_FLAGS = ("chat_enabled", "item_received", "return_requested", "return_confirmed", "item_returned")


# API response for a booking record
class BookingRead(BaseModel):
    id: int
    item_id: int
    renter_id: int
    provider_id: int
    item_title: Optional[str] = None
    renter_name: Optional[str] = None
    provider_name: Optional[str] = None
    start_date: date
    end_date: date
    total_price: int
    status: BookingStatus
    payment_status: PaymentStatus = "pending"
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[int] = None
    chat_enabled: bool = False
    item_received: bool = False
    return_requested: bool = False
    return_confirmed: bool = False
    item_returned: bool = False
    return_requested_at: Optional[datetime] = None
    return_confirmed_at: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_sender_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    # Older rows may carry NULL workflow flags; absent means false
    @field_validator(*_BOOKING_FLAGS, mode="before")
    @classmethod
    def default_flags(cls, v: Any) -> bool:
        return bool(v) if v is not None else False

    @field_validator("payment_status", mode="before")
    @classmethod
    def default_payment_status(cls, v: Any) -> Any:
        return v or "pending"

    @computed_field  # type: ignore[misc]
    @property
    def chat_open(self) -> bool:
        return chat_gate_open(self.chat_enabled, self.status)


# Provider decision on a pending booking
class BookingStatusUpdate(BaseModel):
    status: BookingStatus


# Handoff responses carry non-fatal warnings (e.g. the item could not be re-listed)
class HandoffResponse(BaseModel):
    booking: BookingRead
    warnings: List[str] = Field(default_factory=list)


# Payments
class PaymentRequest(BaseModel):
    method: PaymentMethod
    amount: Optional[int] = None


# Outcome of one simulated gateway round-trip
class PaymentResultRead(BaseModel):
    status: Literal["success", "failed"]
    reference_id: str
    error: Optional[str] = None
    transaction_id: Optional[int] = None
    booking: Optional[BookingRead] = None


class TransactionRead(BaseModel):
    id: int
    booking_id: int
    amount: int
    renter_id: int
    provider_id: int
    method: PaymentMethod
    status: PaymentStatus
    reference_id: str
    item_title: Optional[str] = None
    renter_name: Optional[str] = None
    provider_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Dashboard totals over a user's ledger rows
class LedgerSummary(BaseModel):
    role: Literal["provider", "renter"]
    success_count: int = 0
    failed_count: int = 0
    total_amount: int = 0


# Notifications
class NotificationRead(BaseModel):
    id: int
    user_id: int
    title: str
    body: str
    type: NotificationType = "system"
    read: bool = False
    metadata: Optional[dict] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, v: Any) -> Any:
        return v or "system"


# Authentication and user models

# User roles within the system
Role = Literal["provider", "renter"]


# Common user fields shared by create/read
class UserBase(BaseModel):
    email: EmailStr
    role: Role
    display_name: str = ""
    university: Optional[str] = None

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# Request payload for user registration
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Role = "renter"
    display_name: str = Field("", max_length=120)
    university: Optional[str] = Field(None, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# API response for a user record
class UserRead(UserBase):
    id: int

    model_config = ConfigDict(from_attributes=True)


# Request payload for logging in
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# OAuth2-style token response bundled with the current user profile
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# Messages
# API response for a chat message
class MessageRead(BaseModel):
    id: int
    booking_id: int
    sender_id: int
    receiver_id: int
    content: str
    read: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Request payload for sending a message
class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)

    # Trim surrounding whitespace before validation
    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip()
        return v


# Live feed frames pushed over /ws/live
class SnapshotFrame(BaseModel):
    topic: str
    kind: Literal["booking", "notification"]
    data: Union[BookingRead, NotificationRead]
