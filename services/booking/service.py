"""
services/booking/service.py
Booking Lifecycle Manager: creation, status changes through the state
machine, cancellation, reads, and per-vendor statistics.

Every write commits before its events are published, so a delivery
failure can never roll a booking back.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.booking.events import BookingEvent, BookingEventPublisher
from services.booking.state_machine import (
    Actor,
    can_cancel,
    can_mutate_booking,
    evaluate_transition,
    is_valid_transition,
    side_effects_for,
    updated_by_for,
)
from shared.errors import ErrorKind, ServiceError
from shared.models.models import (
    Account,
    AccountRole,
    Booking,
    BookingAuditLog,
    BookingStatus,
    EventType,
    NotificationType,
    PaymentStatus,
    UpdatedBy,
    VendorProfile,
)
from shared.utils.security import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

MESSAGE_SENDER = {
    AccountRole.CUSTOMER: "customer",
    AccountRole.VENDOR: "vendor",
    AccountRole.ADMIN: "system",
}


def _not_found() -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, "Booking not found")


def _forbidden(message: str = "Not authorized to access this booking") -> ServiceError:
    return ServiceError(ErrorKind.FORBIDDEN, message)


class BookingLifecycleManager:
    """Applies booking changes for an actor and emits the matching events."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: BookingEventPublisher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.publisher = publisher
        self.clock = clock

    async def resolve_actor(self, account: Account) -> Actor:
        """Build the Actor for an account; vendors carry their profile id."""
        vendor_profile_id = None
        if account.role == AccountRole.VENDOR:
            vendor_profile_id = await self.db.scalar(
                select(VendorProfile.id).where(VendorProfile.account_id == account.id)
            )
        return Actor(account_id=account.id, role=account.role, vendor_profile_id=vendor_profile_id)

    # ── Create ────────────────────────────────────────────────

    async def create_booking(
        self,
        actor: Actor,
        vendor_id: uuid.UUID,
        event_details: Dict[str, Any],
    ) -> Booking:
        """
        Create a `pending` booking for a customer.
        Customer and vendor details are copied onto the booking so later
        profile edits do not rewrite history.
        """
        if actor.role != AccountRole.CUSTOMER:
            raise _forbidden("Only customers can create bookings")

        customer = await self.db.get(Account, actor.account_id)
        if customer is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "Customer not found")

        vendor = await self.db.get(VendorProfile, vendor_id)
        if vendor is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "Vendor not found")
        if not vendor.is_active:
            raise ServiceError(ErrorKind.VALIDATION, "This vendor is not accepting bookings")

        now = self.clock()
        event_date = ensure_utc(event_details.get("event_date"))
        if event_date is None or event_date <= now:
            raise ServiceError(ErrorKind.VALIDATION, "Event date must be in the future")

        booking = Booking(
            customer_id=customer.id,
            vendor_id=vendor.id,
            customer_name=customer.full_name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            vendor_name=vendor.business_name,
            vendor_service=vendor.service_category.value,
            event_date=event_date,
            event_type=EventType(event_details["event_type"]),
            guest_count=event_details["guest_count"],
            venue=event_details.get("venue"),
            special_requests=event_details.get("special_requests"),
            budget=event_details.get("budget"),
            status=BookingStatus.PENDING,
            last_updated_by=UpdatedBy.CUSTOMER,
            message_history=[],
            payment_status=PaymentStatus.NOT_STARTED,
        )
        self.db.add(booking)
        await self.db.flush()

        self._log_transition(booking, None, BookingStatus.PENDING, actor)
        await self.db.commit()

        logger.info(f"Booking {booking.id} created by {actor.account_id} for vendor {vendor.id}")
        self.publisher.publish([
            BookingEvent(
                recipient_account_id=vendor.account_id,
                booking_id=booking.id,
                kind=NotificationType.BOOKING_CREATED,
                status=booking.status.value,
                text=f"New booking request from {customer.full_name}",
            )
        ])
        return booking

    # ── Update ────────────────────────────────────────────────

    async def update_status(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        new_status: Optional[BookingStatus] = None,
        *,
        vendor_response: Optional[str] = None,
        message: Optional[str] = None,
        completion_notes: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
        payment_amount: Optional[Decimal] = None,
        expected_version: Optional[int] = None,
    ) -> Booking:
        """
        Apply a status change and/or free-text and payment updates.

        Checks run in this order: existence, party membership, version,
        transition table, role permission. Nothing is written unless all pass.
        """
        booking = await self._get(booking_id)
        if not can_mutate_booking(actor, booking):
            raise _forbidden("Not authorized to update this booking")

        if expected_version is not None and expected_version != booking.version:
            raise ServiceError(
                ErrorKind.CONFLICT,
                "Booking was modified by someone else. Reload and try again",
                {"current_version": booking.version},
            )

        current = booking.status
        if new_status is not None:
            result = evaluate_transition(current, new_status, actor.role)
            if not result.allowed:
                kind = (
                    ErrorKind.INVALID_TRANSITION
                    if not is_valid_transition(current, new_status)
                    else ErrorKind.FORBIDDEN
                )
                raise ServiceError(kind, result.reason, {"current_status": current.value})

        now = self.clock()
        sender = MESSAGE_SENDER[actor.role]
        new_messages: List[str] = []

        if vendor_response:
            if actor.role == AccountRole.CUSTOMER or current == BookingStatus.CONFIRMED:
                new_messages.append(vendor_response)
            else:
                booking.vendor_response = vendor_response
                booking.vendor_response_at = now
        if message:
            new_messages.append(message)
        if new_messages:
            booking.message_history = [
                *(booking.message_history or []),
                *({"message": text, "sender": sender, "timestamp": now.isoformat()} for text in new_messages),
            ]

        if payment_status is not None:
            booking.payment_status = payment_status
        if payment_amount is not None:
            booking.payment_amount = payment_amount

        if new_status is not None:
            reason = {
                BookingStatus.REJECTED: vendor_response,
                BookingStatus.CANCELLED: cancellation_reason,
                BookingStatus.COMPLETED: completion_notes,
            }.get(new_status)
            booking.status = new_status
            for field, value in side_effects_for(new_status, now, reason).items():
                setattr(booking, field, value)
            self._log_transition(booking, current, new_status, actor, reason)

        booking.last_updated_by = updated_by_for(actor.role, new_status)
        await self._commit()

        events: List[BookingEvent] = []
        if new_status is not None:
            logger.info(
                f"Booking {booking.id}: {current.value} -> {new_status.value} by {actor.role.value} {actor.account_id}"
            )
            events = await self._events_for(
                booking, actor, NotificationType.STATUS_CHANGED,
                f"Booking status changed to {new_status.value}",
            )
        elif new_messages:
            events = await self._events_for(
                booking, actor, NotificationType.NEW_MESSAGE, new_messages[-1]
            )
        self.publisher.publish(events)
        return booking

    async def cancel_booking(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Booking:
        """Cancel a `pending` or `confirmed` booking as its customer or an admin."""
        booking = await self._get(booking_id)
        if not can_cancel(actor, booking):
            raise _forbidden("Only the customer who made this booking can cancel it")

        current = booking.status
        if current not in CANCELLABLE_STATUSES:
            raise ServiceError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot cancel a booking that is {current.value}",
                {"current_status": current.value},
            )

        now = self.clock()
        booking.status = BookingStatus.CANCELLED
        for field, value in side_effects_for(BookingStatus.CANCELLED, now, reason).items():
            setattr(booking, field, value)
        booking.last_updated_by = updated_by_for(actor.role, BookingStatus.CANCELLED)
        self._log_transition(booking, current, BookingStatus.CANCELLED, actor, reason)
        await self._commit()

        logger.info(f"Booking {booking.id}: {current.value} -> cancelled by {actor.role.value} {actor.account_id}")
        self.publisher.publish(
            await self._events_for(booking, actor, NotificationType.STATUS_CHANGED, "Booking was cancelled")
        )
        return booking

    # ── Reads ─────────────────────────────────────────────────

    async def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await self._get(booking_id)
        if not can_mutate_booking(actor, booking):
            raise _forbidden()
        return booking

    async def list_bookings(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> List[Booking]:
        """Customers see their bookings, vendors the ones made with them, admins all."""
        query = select(Booking)
        if actor.role == AccountRole.CUSTOMER:
            query = query.where(Booking.customer_id == actor.account_id)
        elif actor.role == AccountRole.VENDOR:
            if actor.vendor_profile_id is None:
                return []
            query = query.where(Booking.vendor_id == actor.vendor_profile_id)

        if status is not None:
            query = query.where(Booking.status == status)

        query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def vendor_stats(self, vendor_id: uuid.UUID) -> Dict[str, Any]:
        """Counts per status plus acceptance and rejection rate as a percent of all bookings."""
        result = await self.db.execute(
            select(Booking.status, func.count())
            .where(Booking.vendor_id == vendor_id)
            .group_by(Booking.status)
        )
        by_status = {status.value: 0 for status in BookingStatus}
        for status, count in result.all():
            by_status[BookingStatus(status).value] = count

        total = sum(by_status.values())

        def rate(count: int) -> float:
            return (count / total) * 100 if total else 0.0

        return {
            "total": total,
            "by_status": by_status,
            "acceptance_rate": rate(by_status[BookingStatus.CONFIRMED.value]),
            "rejection_rate": rate(by_status[BookingStatus.REJECTED.value]),
        }

    # ── Helpers ───────────────────────────────────────────────

    async def _get(self, booking_id: uuid.UUID) -> Booking:
        booking = await self.db.get(Booking, booking_id)
        if booking is None:
            raise _not_found()
        return booking

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ServiceError(
                ErrorKind.CONFLICT,
                "Booking was modified by someone else. Reload and try again",
            )

    def _log_transition(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> None:
        """Append an immutable audit log entry for a status change."""
        self.db.add(
            BookingAuditLog(
                booking_id=booking.id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                changed_by_id=actor.account_id,
                reason=reason,
            )
        )

    async def _events_for(
        self,
        booking: Booking,
        actor: Actor,
        kind: NotificationType,
        text: str,
    ) -> List[BookingEvent]:
        """One event per party other than the actor; admin changes reach both parties."""
        vendor_account_id = await self.db.scalar(
            select(VendorProfile.account_id).where(VendorProfile.id == booking.vendor_id)
        )
        recipients = []
        if actor.role != AccountRole.CUSTOMER:
            recipients.append(booking.customer_id)
        if actor.role != AccountRole.VENDOR and vendor_account_id is not None:
            recipients.append(vendor_account_id)

        return [
            BookingEvent(
                recipient_account_id=recipient,
                booking_id=booking.id,
                kind=kind,
                status=booking.status.value,
                text=text,
            )
            for recipient in recipients
        ]
