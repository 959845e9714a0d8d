"""
shared/utils/security.py
JWT creation/verification, password hashing, and input policy helpers.

Secrets and lifetimes are passed in by the caller (see services/auth/service.py)
so nothing here reads token configuration from the environment.
"""

import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from email_validator import EmailNotValidError, validate_email
from jose import jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# One algorithm, never negotiated from the token header.
JWT_ALGORITHM = "HS256"

# Marker embedded in tokens for accounts that never changed their password.
INITIAL_PASSWORD_VERSION = "v1"

# Matched with fullmatch so a trailing newline never passes.
PHONE_REGEX = re.compile(r"[0-9]{10}")
FULL_NAME_REGEX = re.compile(r"[a-zA-Z ]{3,100}")
PASSWORD_COMPLEXITY_REGEX = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^a-zA-Z0-9]).+$")


# ── Time ──────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (some drivers drop the zone on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Password ──────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def dummy_verify() -> None:
    """Spend a hash comparison when there is no account to compare against."""
    pwd_context.dummy_verify()


def password_policy_error(password: str, min_length: int, require_complexity: bool) -> Optional[str]:
    """Returns a human-readable reason the password is too weak, or None."""
    if len(password) < min_length:
        return f"Password must be at least {min_length} characters long"
    if require_complexity and not PASSWORD_COMPLEXITY_REGEX.match(password):
        return (
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number and one special character"
        )
    return None


def is_valid_email(email: str) -> bool:
    """Same rules EmailStr applies when an account is serialized."""
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ── JWT ───────────────────────────────────────────────────────

def password_version_marker(password_changed_at: Optional[datetime]) -> Union[int, str]:
    """Millisecond timestamp of the last password change, or the initial marker."""
    if password_changed_at is None:
        return INITIAL_PASSWORD_VERSION
    return int(ensure_utc(password_changed_at).timestamp() * 1000)


def create_access_token(
    account_id: str,
    role: str,
    password_version: Union[int, str],
    secret: str,
    expires_in: timedelta,
    now: Optional[datetime] = None,
) -> str:
    """
    Create a signed JWT access token.
    `iat` is fractional so a password change in the same second still
    invalidates tokens issued before it.
    """
    now = now or utcnow()
    payload = {
        "accountId": str(account_id),
        "role": role,
        "passwordVersionMarker": password_version,
        "iat": now.timestamp(),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def create_refresh_token(
    account_id: str,
    secret: str,
    expires_in: timedelta,
    now: Optional[datetime] = None,
) -> str:
    """Refresh tokens carry only the account id and use their own secret."""
    now = now or utcnow()
    payload = {
        "accountId": str(account_id),
        "iat": now.timestamp(),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> dict:
    """
    Decode and verify a JWT.
    Raises JWTError on invalid signature or ExpiredSignatureError on expiry.
    """
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


def hash_token(token: str) -> str:
    """SHA-256 digest used as the deny-list key."""
    return hashlib.sha256(token.encode()).hexdigest()


def get_token_remaining_ttl(payload: dict, now: Optional[datetime] = None) -> int:
    """Returns seconds until token expiry. Used for deny-list TTL."""
    now = now or utcnow()
    exp = payload.get("exp", 0)
    remaining = exp - now.timestamp()
    return max(0, int(remaining))
