"""
services/admin/router.py
Admin-only endpoints: vendor activation, account unlock, role changes.

ALL mutations are logged to AdminAuditLog before returning.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.auth.service import AuthContext
from shared.errors import ErrorKind, ServiceError
from shared.middleware.auth import require_admin
from shared.models.models import Account, AccountRole, AdminAuditLog, VendorProfile
from shared.schemas.schemas import (
    AccountResponse,
    AdminRoleChangeRequest,
    AdminVendorStatusRequest,
    MessageResponse,
    VendorProfileResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ───────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: AuthContext,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin.account_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))
    logger.info(f"Admin {admin.account_id}: {action} {entity_type} {entity_id}")


async def _get_account_or_404(db: AsyncSession, account_id: UUID) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        raise ServiceError(ErrorKind.NOT_FOUND, "Account not found")
    return account


# ── Vendor Activation ─────────────────────────────────────────

@router.patch("/vendors/{vendor_id}/status", response_model=VendorProfileResponse)
async def set_vendor_status(
    vendor_id: UUID,
    data: AdminVendorStatusRequest,
    request: Request,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Activate or deactivate a vendor profile.
    Inactive vendors cannot log in and do not accept new bookings.
    """
    vendor = await db.get(VendorProfile, vendor_id)
    if vendor is None:
        raise ServiceError(ErrorKind.NOT_FOUND, "Vendor not found")

    vendor.is_active = data.is_active
    action = "ACTIVATE_VENDOR" if data.is_active else "DEACTIVATE_VENDOR"
    await _log(db, admin, action, "VendorProfile", str(vendor_id), {"reason": data.reason}, request)
    await db.commit()
    return VendorProfileResponse.model_validate(vendor)


# ── Account Moderation ────────────────────────────────────────

@router.post("/accounts/{account_id}/unlock", response_model=MessageResponse)
async def unlock_account(
    account_id: UUID,
    request: Request,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Clear the failed-login counter and any active lock."""
    account = await _get_account_or_404(db, account_id)

    account.failed_login_attempts = 0
    account.locked_until = None
    await _log(db, admin, "UNLOCK_ACCOUNT", "Account", str(account_id), {}, request)
    await db.commit()
    return MessageResponse(message="Account unlocked")


@router.patch("/accounts/{account_id}/role", response_model=AccountResponse)
async def change_account_role(
    account_id: UUID,
    data: AdminRoleChangeRequest,
    request: Request,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    The only way an account's role changes after registration.
    Promoting to vendor requires the account to already have a vendor profile.
    """
    account = await _get_account_or_404(db, account_id)
    if account.id == admin.account_id:
        raise ServiceError(ErrorKind.FORBIDDEN, "Admins cannot change their own role")

    new_role = AccountRole(data.role)
    if new_role == AccountRole.VENDOR:
        profile_id = await db.scalar(
            select(VendorProfile.id).where(VendorProfile.account_id == account.id)
        )
        if profile_id is None:
            raise ServiceError(
                ErrorKind.VALIDATION,
                "Account has no vendor profile; it cannot become a vendor",
            )

    previous = account.role
    account.role = new_role
    await _log(
        db, admin, "CHANGE_ROLE", "Account", str(account_id),
        {"from": previous.value, "to": new_role.value}, request,
    )
    await db.commit()
    return AccountResponse.model_validate(account)
