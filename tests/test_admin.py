"""
tests/test_admin.py
Tests for admin-only endpoints: vendor activation, account unlock, role change,
and the audit log they write.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Account, AccountRole, AdminAuditLog, Booking, BookingStatus, VendorProfile
from shared.utils.security import utcnow
from tests.conftest import PASSWORD, auth_headers, refresh_cookie_from


# ── Access Control ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_customer_cannot_access_admin_endpoints(client: AsyncClient, customer: Account):
    response = await client.post(f"/admin/accounts/{customer.id}/unlock", headers=auth_headers(customer))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_vendor_cannot_access_admin_endpoints(
    client: AsyncClient, vendor_user: Account, vendor_profile: VendorProfile
):
    response = await client.patch(
        f"/admin/vendors/{vendor_profile.id}/status",
        headers=auth_headers(vendor_user),
        json={"is_active": True},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_cannot_access_admin(client: AsyncClient):
    response = await client.post(f"/admin/accounts/{uuid.uuid4()}/unlock")
    assert response.status_code == 401


# ── Vendor Activation ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_deactivate_vendor_blocks_login(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: Account,
    vendor_user: Account,
    vendor_profile: VendorProfile,
):
    response = await client.patch(
        f"/admin/vendors/{vendor_profile.id}/status",
        headers=auth_headers(admin_user),
        json={"is_active": False, "reason": "Documents expired"},
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    login = await client.post("/auth/login", json={"email": vendor_user.email, "password": PASSWORD})
    assert login.status_code == 403
    assert login.json()["code"] == "VENDOR_INACTIVE"

    log = await db.scalar(select(AdminAuditLog).where(AdminAuditLog.admin_id == admin_user.id))
    assert log.action == "DEACTIVATE_VENDOR"
    assert log.entity_id == str(vendor_profile.id)
    assert log.payload == {"reason": "Documents expired"}


@pytest.mark.asyncio
async def test_deactivation_applies_to_an_open_vendor_session(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: Account,
    vendor_user: Account,
    vendor_profile: VendorProfile,
    booking: Booking,
):
    login = await client.post("/auth/login", json={"email": vendor_user.email, "password": PASSWORD})
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
    cookie = refresh_cookie_from(login)

    deactivate = await client.patch(
        f"/admin/vendors/{vendor_profile.id}/status",
        headers=auth_headers(admin_user),
        json={"is_active": False},
    )
    assert deactivate.status_code == 200

    confirm = await client.patch(f"/bookings/{booking.id}", headers=headers, json={"status": "confirmed"})
    assert confirm.status_code == 403
    assert confirm.json()["code"] == "VENDOR_INACTIVE"

    stats = await client.get("/bookings/stats", headers=headers)
    assert stats.status_code == 403

    refresh = await client.post("/auth/refresh", headers={"Cookie": f"refreshToken={cookie}"})
    assert refresh.status_code == 403
    assert refresh.json()["code"] == "VENDOR_INACTIVE"

    await db.refresh(booking)
    assert booking.status == BookingStatus.PENDING

    # Signing out still works
    logout = await client.post("/auth/logout", headers=headers)
    assert logout.status_code == 200


@pytest.mark.asyncio
async def test_vendor_status_unknown_vendor(client: AsyncClient, admin_user: Account):
    response = await client.patch(
        f"/admin/vendors/{uuid.uuid4()}/status",
        headers=auth_headers(admin_user),
        json={"is_active": True},
    )
    assert response.status_code == 404


# ── Unlock ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unlock_account(
    client: AsyncClient, db: AsyncSession, admin_user: Account, customer: Account
):
    customer.failed_login_attempts = 5
    customer.locked_until = utcnow() + timedelta(minutes=60)
    await db.commit()

    locked = await client.post("/auth/login", json={"email": customer.email, "password": PASSWORD})
    assert locked.status_code == 423

    response = await client.post(f"/admin/accounts/{customer.id}/unlock", headers=auth_headers(admin_user))
    assert response.status_code == 200

    login = await client.post("/auth/login", json={"email": customer.email, "password": PASSWORD})
    assert login.status_code == 200

    await db.refresh(customer)
    assert customer.failed_login_attempts == 0
    assert customer.locked_until is None


# ── Role Change ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_promote_to_admin(
    client: AsyncClient, db: AsyncSession, admin_user: Account, customer: Account
):
    response = await client.patch(
        f"/admin/accounts/{customer.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "admin"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "admin"

    # Existing tokens pick up the new role from the account
    me = await client.get("/auth/me", headers=auth_headers(customer))
    assert me.json()["role"] == "admin"

    log = await db.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "CHANGE_ROLE"))
    assert log.payload == {"from": "customer", "to": "admin"}


@pytest.mark.asyncio
async def test_role_change_to_vendor_requires_profile(
    client: AsyncClient, admin_user: Account, customer: Account
):
    response = await client.patch(
        f"/admin/accounts/{customer.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "vendor"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION"


@pytest.mark.asyncio
async def test_role_change_back_to_vendor_with_profile(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: Account,
    vendor_user: Account,
    vendor_profile: VendorProfile,
):
    vendor_user.role = AccountRole.CUSTOMER
    await db.commit()

    response = await client.patch(
        f"/admin/accounts/{vendor_user.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "vendor"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "vendor"


@pytest.mark.asyncio
async def test_admin_cannot_change_own_role(client: AsyncClient, admin_user: Account):
    response = await client.patch(
        f"/admin/accounts/{admin_user.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "customer"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_role_change_invalid_role(client: AsyncClient, admin_user: Account, customer: Account):
    response = await client.patch(
        f"/admin/accounts/{customer.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "superuser"},
    )
    assert response.status_code == 400
