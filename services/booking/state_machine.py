"""
services/booking/state_machine.py
Booking status transitions and who may perform them.

States: PENDING → CONFIRMED | REJECTED | CANCELLED
        CONFIRMED → COMPLETED | CANCELLED
REJECTED, CANCELLED and COMPLETED are terminal.

Everything here is pure: no I/O and no clock. Bookings are only read.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from shared.models.models import AccountRole, Booking, BookingStatus, UpdatedBy

VALID_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

# Target statuses each role may request. Cancellation belongs to the customer.
ROLE_TRANSITIONS: Dict[AccountRole, FrozenSet[BookingStatus]] = {
    AccountRole.CUSTOMER: frozenset({BookingStatus.CANCELLED}),
    AccountRole.VENDOR: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.COMPLETED}
    ),
    AccountRole.ADMIN: frozenset(BookingStatus),
}

UPDATED_BY_ROLE: Dict[AccountRole, UpdatedBy] = {
    AccountRole.CUSTOMER: UpdatedBy.CUSTOMER,
    AccountRole.VENDOR: UpdatedBy.VENDOR,
    AccountRole.ADMIN: UpdatedBy.SYSTEM,
}


@dataclass(frozen=True)
class Actor:
    """The caller of a booking operation. `vendor_profile_id` is set for vendors only."""
    account_id: uuid.UUID
    role: AccountRole
    vendor_profile_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class TransitionResult:
    new_status: BookingStatus
    allowed: bool
    reason: Optional[str] = None


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_valid_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in VALID_TRANSITIONS[current]


def evaluate_transition(
    current: BookingStatus,
    requested: BookingStatus,
    actor_role: AccountRole,
) -> TransitionResult:
    """
    Check a requested status change. The transition table is checked first,
    so an impossible move is reported as such regardless of who asked.
    """
    if not is_valid_transition(current, requested):
        return TransitionResult(
            new_status=current,
            allowed=False,
            reason=f"Cannot change booking status from {current.value} to {requested.value}",
        )
    if requested not in ROLE_TRANSITIONS.get(actor_role, frozenset()):
        if requested == BookingStatus.CANCELLED:
            reason = "Only customers can cancel bookings"
        else:
            reason = f"A {actor_role.value} cannot mark a booking as {requested.value}"
        return TransitionResult(new_status=current, allowed=False, reason=reason)
    return TransitionResult(new_status=requested, allowed=True)


def can_mutate_booking(actor: Actor, booking: Booking) -> bool:
    """Only the booking's customer, its vendor, or an admin may touch it."""
    if actor.role == AccountRole.ADMIN:
        return True
    if actor.role == AccountRole.CUSTOMER:
        return actor.account_id == booking.customer_id
    if actor.role == AccountRole.VENDOR:
        return actor.vendor_profile_id is not None and actor.vendor_profile_id == booking.vendor_id
    return False


def can_cancel(actor: Actor, booking: Booking) -> bool:
    """The owning customer or an admin."""
    if actor.role == AccountRole.ADMIN:
        return True
    return actor.role == AccountRole.CUSTOMER and actor.account_id == booking.customer_id


def updated_by_for(actor_role: AccountRole, new_status: Optional[BookingStatus] = None) -> UpdatedBy:
    """Cancellation is always recorded as the customer's action."""
    if new_status == BookingStatus.CANCELLED:
        return UpdatedBy.CUSTOMER
    return UPDATED_BY_ROLE[actor_role]


def side_effects_for(
    new_status: BookingStatus,
    now: datetime,
    reason: Optional[str] = None,
) -> Dict[str, object]:
    """Column values to set alongside a transition into `new_status`."""
    if new_status == BookingStatus.CONFIRMED:
        return {"confirmed_at": now}
    if new_status == BookingStatus.REJECTED:
        return {"rejected_at": now, "rejection_reason": reason}
    if new_status == BookingStatus.CANCELLED:
        return {"cancelled_at": now, "cancellation_reason": reason}
    if new_status == BookingStatus.COMPLETED:
        return {"completed_at": now, "completion_notes": reason}
    return {}
