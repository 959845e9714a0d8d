"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Input policy (password strength, phone shape...) is enforced by the services,
so request models here only describe shape.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from shared.models.models import (
    AccountRole,
    BookingStatus,
    EventType,
    PaymentStatus,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── Account ───────────────────────────────────────────────────

class AccountResponse(BaseSchema):
    """Safe projection of an Account: no hash, no lockout bookkeeping."""
    id: uuid.UUID
    full_name: str
    email: EmailStr
    phone: str
    role: str
    last_login_at: Optional[datetime] = None
    created_at: datetime


class VendorProfileResponse(BaseSchema):
    id: uuid.UUID
    account_id: uuid.UUID
    business_name: str
    owner_name: str
    service_category: str
    city: str
    state: str
    is_active: bool


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    """Every field is optional here; missing ones are reported together by the service."""
    full_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = Field(None, max_length=128)
    phone: Optional[str] = Field(None, max_length=20)
    role: Optional[str] = None

    # Vendor-only
    business_name: Optional[str] = Field(None, max_length=255)
    owner_name: Optional[str] = Field(None, max_length=255)
    service_category: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=10)


class LoginRequest(BaseSchema):
    email: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordRequest(BaseSchema):
    current_password: str
    new_password: str = Field(..., max_length=128)
    confirm_password: str


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    account: AccountResponse


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    vendor_id: uuid.UUID
    event_date: datetime
    event_type: EventType
    guest_count: int = Field(..., ge=1, le=100000)
    venue: Optional[str] = Field(None, max_length=255)
    special_requests: Optional[str] = Field(None, max_length=2000)
    budget: Optional[Decimal] = Field(None, ge=0)


class BookingUpdateRequest(BaseSchema):
    """Omitting `status` updates only the non-status fields."""
    status: Optional[BookingStatus] = None
    vendor_response: Optional[str] = Field(None, max_length=2000)
    message: Optional[str] = Field(None, max_length=2000)
    completion_notes: Optional[str] = Field(None, max_length=2000)
    cancellation_reason: Optional[str] = Field(None, max_length=500)
    payment_status: Optional[PaymentStatus] = None
    payment_amount: Optional[Decimal] = Field(None, ge=0)
    expected_version: Optional[int] = Field(None, ge=1)


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingMessage(BaseSchema):
    message: str
    sender: str
    timestamp: datetime


class BookingResponse(BaseSchema):
    id: uuid.UUID
    customer_id: uuid.UUID
    vendor_id: uuid.UUID
    customer_name: str
    customer_email: str
    customer_phone: str
    vendor_name: str
    vendor_service: str
    event_date: datetime
    event_type: str
    guest_count: int
    venue: Optional[str]
    special_requests: Optional[str]
    budget: Optional[Decimal]
    status: str
    last_updated_by: str
    vendor_response: Optional[str]
    vendor_response_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    rejection_reason: Optional[str]
    rejected_at: Optional[datetime]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    completion_notes: Optional[str]
    completed_at: Optional[datetime]
    message_history: List[BookingMessage]
    payment_status: str
    payment_amount: Optional[Decimal]
    version: int
    created_at: datetime


class VendorBookingStats(BaseSchema):
    total: int
    by_status: Dict[str, int]
    acceptance_rate: float
    rejection_rate: float


class BookingUpdateResponse(BaseSchema):
    booking: BookingResponse
    stats: VendorBookingStats


# ── Admin ─────────────────────────────────────────────────────

class AdminVendorStatusRequest(BaseSchema):
    is_active: bool
    reason: Optional[str] = Field(None, max_length=500)


class AdminRoleChangeRequest(BaseSchema):
    role: AccountRole


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
