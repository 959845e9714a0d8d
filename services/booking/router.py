"""
services/booking/router.py
Booking endpoints. All lifecycle rules live in BookingLifecycleManager;
routes only resolve the caller and shape the response.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.auth.service import AuthContext
from services.booking.events import BookingEventPublisher, get_event_publisher
from services.booking.service import BookingLifecycleManager
from services.booking.state_machine import Actor
from shared.middleware.auth import get_active_auth_context, require_vendor
from shared.models.models import BookingStatus, PaymentStatus
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
    BookingUpdateRequest,
    BookingUpdateResponse,
    VendorBookingStats,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Dependencies ──────────────────────────────────────────────

async def get_booking_manager(
    db: AsyncSession = Depends(get_db),
    publisher: BookingEventPublisher = Depends(get_event_publisher),
) -> BookingLifecycleManager:
    return BookingLifecycleManager(db, publisher)


async def get_actor(
    context: AuthContext = Depends(get_active_auth_context),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
) -> Actor:
    return await manager.resolve_actor(context.account)


# ── Endpoints ─────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """Customer requests a vendor for an event. The booking starts as `pending`."""
    booking = await manager.create_booking(
        actor, data.vendor_id, data.model_dump(exclude={"vendor_id"})
    )
    return BookingResponse.model_validate(booking)


@router.get("", response_model=List[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """List the caller's bookings. Vendors see bookings made with them."""
    bookings = await manager.list_bookings(actor, status_filter, page, page_size)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/stats", response_model=VendorBookingStats)
async def get_vendor_stats(
    context: AuthContext = Depends(require_vendor),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    actor = await manager.resolve_actor(context.account)
    return await manager.vendor_stats(actor.vendor_profile_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_actor),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    booking = await manager.get_booking(booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}", response_model=BookingUpdateResponse)
async def update_booking(
    booking_id: UUID,
    data: BookingUpdateRequest,
    actor: Actor = Depends(get_actor),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """
    Change status and/or add a response, message or payment details.
    The response includes the vendor's refreshed booking statistics.
    """
    booking = await manager.update_status(
        booking_id,
        actor,
        BookingStatus(data.status) if data.status else None,
        vendor_response=data.vendor_response,
        message=data.message,
        completion_notes=data.completion_notes,
        cancellation_reason=data.cancellation_reason,
        payment_status=PaymentStatus(data.payment_status) if data.payment_status else None,
        payment_amount=data.payment_amount,
        expected_version=data.expected_version,
    )
    stats = await manager.vendor_stats(booking.vendor_id)
    return BookingUpdateResponse(
        booking=BookingResponse.model_validate(booking),
        stats=VendorBookingStats(**stats),
    )


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: Optional[BookingCancelRequest] = None,
    actor: Actor = Depends(get_actor),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """Customer (or admin) cancels a pending or confirmed booking."""
    booking = await manager.cancel_booking(booking_id, actor, data.reason if data else None)
    return BookingResponse.model_validate(booking)
