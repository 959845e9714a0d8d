"""
shared/models/models.py
All SQLAlchemy ORM models for the wedding-vendor marketplace.
Portable column types (Uuid, JSON) so the same models run on PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base
from shared.utils.security import utcnow


# ── Enumerations ──────────────────────────────────────────────

class AccountRole(str, PyEnum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


SELF_REGISTRABLE_ROLES = (AccountRole.CUSTOMER, AccountRole.VENDOR)


class ServiceCategory(str, PyEnum):
    VENUE = "Venue"
    CATERING = "Catering"
    PHOTOGRAPHY = "Photography"
    DJ = "DJ"
    DECOR = "Decor"
    MAKEUP = "Makeup"
    TRANSPORTATION = "Transportation"
    ENTERTAINMENT = "Entertainment"
    OTHER = "Other"


class EventType(str, PyEnum):
    WEDDING = "Wedding"
    RECEPTION = "Reception"
    ENGAGEMENT = "Engagement"
    SANGEET = "Sangeet"
    MEHENDI = "Mehendi"
    OTHER = "Other"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class UpdatedBy(str, PyEnum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    SYSTEM = "system"


class PaymentStatus(str, PyEnum):
    NOT_STARTED = "not_started"
    PARTIAL = "partial"
    COMPLETE = "complete"
    REFUNDED = "refunded"


class NotificationType(str, PyEnum):
    BOOKING_CREATED = "booking_created"
    STATUS_CHANGED = "status_changed"
    NEW_MESSAGE = "new_message"


def _enum(enum_cls):
    """Store enum values (not member names) so the DB reads like the API."""
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False)


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Models ────────────────────────────────────────────────────

class Account(TimestampMixin, Base):
    """A registered person. Password is stored only as a bcrypt hash."""
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    role: Mapped[AccountRole] = mapped_column(
        _enum(AccountRole), nullable=False, default=AccountRole.CUSTOMER
    )

    # Login bookkeeping
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_accounts_role", "role"),)

    def __repr__(self) -> str:
        return f"<Account {self.email} ({self.role})>"


class VendorProfile(TimestampMixin, Base):
    """Business details of a vendor account (one-to-one)."""
    __tablename__ = "vendor_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    service_category: Mapped[ServiceCategory] = mapped_column(
        _enum(ServiceCategory), nullable=False
    )
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(10), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_vendor_profiles_city_category", "city", "service_category"),
    )


class Booking(TimestampMixin, Base):
    """
    One service request between a customer and a vendor.
    Status transitions are owned by services/booking/state_machine.py.
    `version` is bumped on every write; a stale write raises StaleDataError.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendor_profiles.id"), nullable=False
    )

    # Snapshots taken at creation
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_service: Mapped[str] = mapped_column(String(50), nullable=False)

    # Event
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[EventType] = mapped_column(_enum(EventType), nullable=False)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False)
    venue: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    last_updated_by: Mapped[UpdatedBy] = mapped_column(
        _enum(UpdatedBy), nullable=False, default=UpdatedBy.CUSTOMER
    )
    vendor_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vendor_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Conversation after confirmation: [{"message", "sender", "timestamp"}]
    message_history: Mapped[List[dict]] = mapped_column(JSON, default=list, nullable=False)

    # Payment bookkeeping (no gateway integration)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.NOT_STARTED
    )
    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_bookings_customer_status", "customer_id", "status"),
        Index("ix_bookings_vendor_status", "vendor_id", "status"),
        Index("ix_bookings_event_date", "event_date"),
    )


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_booking_audit_logs_booking_id", "booking_id"),)


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_admin_audit_admin_id", "admin_id"),)


class Notification(TimestampMixin, Base):
    """In-app notification written by the notification worker."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (Index("ix_notifications_account_id_read", "account_id", "is_read"),)
