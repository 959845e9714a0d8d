"""
services/auth/service.py
Credential & Session Manager: registration, login with lockout,
access/refresh token issue, verification and rotation, password change.

All token configuration arrives through AuthConfig; the manager never
reads settings on its own.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Union

from jose import JWTError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import TokenDenyList
from config.settings import Settings
from shared.errors import ErrorKind, ServiceError
from shared.models.models import (
    SELF_REGISTRABLE_ROLES,
    Account,
    AccountRole,
    ServiceCategory,
    VendorProfile,
)
from shared.utils.security import (
    FULL_NAME_REGEX,
    PHONE_REGEX,
    create_access_token,
    create_refresh_token,
    decode_token,
    dummy_verify,
    ensure_utc,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    is_valid_email,
    normalize_email,
    password_policy_error,
    password_version_marker,
    utcnow,
    verify_password,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
STALE_TOKEN_MESSAGE = "Password was changed. Please log in again."

VENDOR_FIELDS = ("business_name", "owner_name", "service_category", "address", "city", "state", "zip_code")


@dataclass(frozen=True)
class AuthConfig:
    """Immutable auth configuration, built once at startup."""
    access_secret: str
    refresh_secret: str
    access_token_ttl: timedelta
    refresh_token_ttl: timedelta
    password_min_length: int = 8
    password_require_complexity: bool = True
    max_login_attempts: int = 5
    lockout_duration: timedelta = timedelta(hours=1)
    support_email: str = ""
    secure_cookies: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            access_secret=settings.JWT_SECRET_KEY,
            refresh_secret=settings.JWT_REFRESH_SECRET_KEY,
            access_token_ttl=timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_token_ttl=timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
            password_min_length=settings.PASSWORD_MIN_LENGTH,
            password_require_complexity=settings.PASSWORD_REQUIRE_COMPLEXITY,
            max_login_attempts=settings.LOGIN_MAX_ATTEMPTS,
            lockout_duration=timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES),
            support_email=settings.SUPPORT_EMAIL,
            secure_cookies=settings.is_production,
        )


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class AuthContext:
    """Identity attached to an authenticated request."""
    account_id: uuid.UUID
    role: AccountRole
    account: Account


@dataclass(frozen=True)
class AuthResult:
    tokens: SessionTokens
    account: Account


def _unauthenticated(message: str = "Invalid or expired token") -> ServiceError:
    return ServiceError(ErrorKind.UNAUTHENTICATED, message)


def _validation(message: str, **details) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message, details or None)


class CredentialManager:
    """Owns password storage, lockout bookkeeping and session tokens."""

    def __init__(
        self,
        db: AsyncSession,
        config: AuthConfig,
        deny_list: Optional[TokenDenyList] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.config = config
        self.deny_list = deny_list
        self.clock = clock

    # ── Registration ──────────────────────────────────────────

    async def register(
        self,
        full_name: Optional[str],
        email: Optional[str],
        password: Optional[str],
        phone: Optional[str],
        role: Optional[str],
        vendor_details: Optional[Dict[str, Optional[str]]] = None,
    ) -> AuthResult:
        """
        Create an Account (and its VendorProfile for vendors) in one transaction.
        Every input check runs before anything is written.
        """
        vendor_details = vendor_details or {}
        provided = {"full_name": full_name, "email": email, "password": password, "phone": phone, "role": role}
        missing = [field for field, value in provided.items() if not value]
        if missing:
            raise _validation("Missing required fields", fields=missing)

        full_name = full_name.strip()
        if not FULL_NAME_REGEX.fullmatch(full_name):
            raise _validation(
                "Full name must be between 3 and 100 characters and contain only letters and spaces"
            )
        if len(full_name.split()) < 2:
            raise _validation("Please provide both first name and last name")

        normalized_email = normalize_email(email)
        if not is_valid_email(normalized_email):
            raise _validation("Please enter a valid email address")

        policy_error = password_policy_error(
            password, self.config.password_min_length, self.config.password_require_complexity
        )
        if policy_error:
            raise _validation(policy_error)

        if not PHONE_REGEX.fullmatch(phone):
            raise _validation("Please enter a valid 10-digit phone number")

        if role not in {r.value for r in SELF_REGISTRABLE_ROLES}:
            raise _validation('Invalid role. Must be either "customer" or "vendor"')
        account_role = AccountRole(role)

        if account_role == AccountRole.VENDOR:
            missing_vendor = [f for f in VENDOR_FIELDS if not vendor_details.get(f)]
            if missing_vendor:
                raise _validation("Missing required vendor fields", fields=missing_vendor)
            if vendor_details["service_category"] not in {c.value for c in ServiceCategory}:
                raise _validation(
                    "Invalid service category",
                    allowed=[c.value for c in ServiceCategory],
                )

        existing = await self.db.execute(select(Account.id).where(Account.email == normalized_email))
        if existing.scalar_one_or_none():
            raise ServiceError(ErrorKind.CONFLICT, "User with this email already exists")

        account = Account(
            full_name=full_name,
            email=normalized_email,
            password_hash=hash_password(password),
            phone=phone,
            role=account_role,
            failed_login_attempts=0,
        )
        self.db.add(account)

        try:
            await self.db.flush()
            if account_role == AccountRole.VENDOR:
                self.db.add(
                    VendorProfile(
                        account_id=account.id,
                        business_name=vendor_details["business_name"].strip(),
                        owner_name=vendor_details["owner_name"].strip(),
                        service_category=ServiceCategory(vendor_details["service_category"]),
                        address=vendor_details["address"].strip(),
                        city=vendor_details["city"].strip(),
                        state=vendor_details["state"].strip(),
                        zip_code=vendor_details["zip_code"].strip(),
                    )
                )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ServiceError(ErrorKind.CONFLICT, "User with this email already exists")

        logger.info(f"Account registered: {account.id} role={account_role.value}")
        return AuthResult(tokens=self.issue_tokens(account), account=account)

    # ── Login ─────────────────────────────────────────────────

    async def authenticate(self, email: Optional[str], password: Optional[str]) -> AuthResult:
        if not email or not password:
            raise _validation("Please provide both email and password")

        account = await self._get_by_email(normalize_email(email))
        if account is None:
            dummy_verify()
            raise ServiceError(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

        now = self.clock()
        locked_until = ensure_utc(account.locked_until)
        if locked_until and locked_until > now:
            raise self._locked_error(locked_until, now)

        if not verify_password(password, account.password_hash):
            raise await self._register_failed_attempt(account, now)

        account.failed_login_attempts = 0
        account.locked_until = None
        account.last_login_at = now
        await self.db.commit()

        # Vendor gates run only after the password matched.
        await self.check_vendor_status(account)

        logger.info(f"Login successful: {account.id} role={account.role.value}")
        return AuthResult(tokens=self.issue_tokens(account), account=account)

    async def check_vendor_status(self, account: Account) -> None:
        """Vendor accounts need an active profile; other roles pass through."""
        if account.role != AccountRole.VENDOR:
            return
        profile = await self._get_vendor_profile(account.id)
        if profile is None:
            raise ServiceError(
                ErrorKind.VENDOR_PROFILE_MISSING,
                "Vendor profile not found. Please complete your profile setup",
                {"next_step": "/vendor/setup"},
            )
        if not profile.is_active:
            raise ServiceError(
                ErrorKind.VENDOR_INACTIVE,
                "Your vendor account is currently inactive. Please contact support",
                {"support_email": self.config.support_email},
            )

    async def _register_failed_attempt(self, account: Account, now: datetime) -> ServiceError:
        """
        Atomically bump the counter, lock at the threshold, commit, and
        return the error to raise. The commit must happen before raising,
        otherwise the request-scoped rollback would discard it.
        """
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(failed_login_attempts=Account.failed_login_attempts + 1)
            .returning(Account.failed_login_attempts)
        )
        attempts = result.scalar_one()

        locked_until = None
        if attempts >= self.config.max_login_attempts:
            locked_until = now + self.config.lockout_duration
            await self.db.execute(
                update(Account).where(Account.id == account.id).values(locked_until=locked_until)
            )
        await self.db.commit()
        await self.db.refresh(account)

        if locked_until:
            logger.warning(f"Account locked after {attempts} failed logins: {account.id}")
            return self._locked_error(locked_until, now)

        remaining = max(0, self.config.max_login_attempts - attempts)
        logger.info(f"Failed login for {account.id} ({attempts} attempts)")
        return ServiceError(
            ErrorKind.INVALID_CREDENTIALS,
            f"{INVALID_CREDENTIALS_MESSAGE}. {remaining} attempts remaining before account lockout.",
            {"remaining_attempts": remaining},
        )

    @staticmethod
    def _locked_error(locked_until: datetime, now: datetime) -> ServiceError:
        minutes = math.ceil((locked_until - now).total_seconds() / 60)
        return ServiceError(
            ErrorKind.ACCOUNT_LOCKED,
            "Account is temporarily locked. Please try again later",
            {"lockout_minutes": minutes, "remaining_attempts": 0},
        )

    # ── Tokens ────────────────────────────────────────────────

    def issue_access_token(
        self,
        account_id: uuid.UUID,
        role: AccountRole,
        password_version: Union[int, str],
    ) -> str:
        return create_access_token(
            str(account_id),
            AccountRole(role).value,
            password_version,
            self.config.access_secret,
            self.config.access_token_ttl,
            now=self.clock(),
        )

    def issue_tokens(self, account: Account) -> SessionTokens:
        access = self.issue_access_token(
            account.id, account.role, password_version_marker(account.password_changed_at)
        )
        refresh = create_refresh_token(
            str(account.id),
            self.config.refresh_secret,
            self.config.refresh_token_ttl,
            now=self.clock(),
        )
        return SessionTokens(
            access_token=access,
            refresh_token=refresh,
            expires_in=int(self.config.access_token_ttl.total_seconds()),
        )

    async def verify_token(self, token: str) -> AuthContext:
        """Validate an access token and load the account it names."""
        payload = await self._decode(token, self.config.access_secret)
        account = await self._load_token_account(payload)

        if payload.get("passwordVersionMarker") != password_version_marker(account.password_changed_at):
            raise _unauthenticated(STALE_TOKEN_MESSAGE)

        return AuthContext(account_id=account.id, role=account.role, account=account)

    async def refresh(self, refresh_token: Optional[str]) -> AuthResult:
        """Exchange a refresh token for a new access token and rotate the refresh token."""
        if not refresh_token:
            raise _unauthenticated("No refresh token provided")

        payload = await self._decode(refresh_token, self.config.refresh_secret)
        account = await self._load_token_account(payload)
        await self.check_vendor_status(account)

        if self.deny_list is not None:
            await self.deny_list.revoke(
                hash_token(refresh_token), get_token_remaining_ttl(payload, self.clock())
            )

        logger.info(f"Token refreshed for {account.id}")
        return AuthResult(tokens=self.issue_tokens(account), account=account)

    async def logout(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        """Deny-list both tokens for whatever lifetime they have left."""
        if self.deny_list is None:
            return
        for token, secret in (
            (access_token, self.config.access_secret),
            (refresh_token, self.config.refresh_secret),
        ):
            if not token:
                continue
            try:
                payload = decode_token(token, secret)
            except JWTError:
                continue
            await self.deny_list.revoke(hash_token(token), get_token_remaining_ttl(payload, self.clock()))

    async def _decode(self, token: str, secret: str) -> dict:
        try:
            payload = decode_token(token, secret)
        except JWTError:
            raise _unauthenticated()
        if self.deny_list is not None and await self.deny_list.is_revoked(hash_token(token)):
            raise _unauthenticated("Token has been revoked")
        return payload

    async def _load_token_account(self, payload: dict) -> Account:
        """Resolve the token's account and reject tokens older than the last password change."""
        try:
            account_id = uuid.UUID(str(payload.get("accountId")))
        except ValueError:
            raise _unauthenticated("Invalid token payload")

        account = await self.db.get(Account, account_id)
        if account is None:
            raise _unauthenticated("User no longer exists")

        changed_at = ensure_utc(account.password_changed_at)
        issued_at = payload.get("iat")
        if changed_at is not None and (issued_at is None or changed_at.timestamp() > float(issued_at)):
            raise _unauthenticated(STALE_TOKEN_MESSAGE)
        return account

    # ── Password change ───────────────────────────────────────

    async def change_password(
        self,
        account: Account,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> AuthResult:
        """Replace the password; every token issued before this call becomes stale."""
        if new_password != confirm_password:
            raise _validation("Passwords do not match")

        now = self.clock()
        locked_until = ensure_utc(account.locked_until)
        if locked_until and locked_until > now:
            raise self._locked_error(locked_until, now)

        if not verify_password(current_password, account.password_hash):
            error = await self._register_failed_attempt(account, now)
            if error.kind == ErrorKind.INVALID_CREDENTIALS:
                error = ServiceError(ErrorKind.INVALID_CREDENTIALS, "Current password is incorrect", error.details)
            raise error

        policy_error = password_policy_error(
            new_password, self.config.password_min_length, self.config.password_require_complexity
        )
        if policy_error:
            raise _validation(policy_error)

        account.password_hash = hash_password(new_password)
        account.password_changed_at = now
        account.failed_login_attempts = 0
        account.locked_until = None
        await self.db.commit()

        logger.info(f"Password changed for {account.id}")
        return AuthResult(tokens=self.issue_tokens(account), account=account)

    # ── Lookups ───────────────────────────────────────────────

    async def _get_by_email(self, email: str) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.email == email))
        return result.scalar_one_or_none()

    async def _get_vendor_profile(self, account_id: uuid.UUID) -> Optional[VendorProfile]:
        result = await self.db.execute(
            select(VendorProfile).where(VendorProfile.account_id == account_id)
        )
        return result.scalar_one_or_none()
