"""
services/auth/router.py
Email/password authentication endpoints.
Implements: Register → Login → Refresh (cookie) → Logout → Change password
"""

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response, status
from fastapi.security import HTTPAuthorizationCredentials

from services.auth.service import AuthConfig, AuthContext, AuthResult, CredentialManager
from shared.middleware.auth import (
    get_auth_config,
    get_auth_context,
    get_credential_manager,
    security,
)
from shared.schemas.schemas import (
    AccountResponse,
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TokenResponse,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])

REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_PATH = "/auth"


# ── Helper ────────────────────────────────────────────────────

def _session_response(result: AuthResult, response: Response, config: AuthConfig) -> TokenResponse:
    """Set the refresh cookie and return the access token body."""
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=result.tokens.refresh_token,
        httponly=True,
        secure=config.secure_cookies,
        samesite="strict",
        max_age=int(config.refresh_token_ttl.total_seconds()),
        path=REFRESH_COOKIE_PATH,
    )
    return TokenResponse(
        access_token=result.tokens.access_token,
        expires_in=result.tokens.expires_in,
        account=AccountResponse.model_validate(result.account),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer or vendor account",
)
async def register(
    payload: RegisterRequest,
    response: Response,
    manager: CredentialManager = Depends(get_credential_manager),
    config: AuthConfig = Depends(get_auth_config),
):
    """
    Creates the account (and vendor profile for vendors) and signs the new
    account in straight away.
    """
    vendor_details = payload.model_dump(
        include={"business_name", "owner_name", "service_category", "address", "city", "state", "zip_code"}
    )
    result = await manager.register(
        full_name=payload.full_name,
        email=payload.email,
        password=payload.password,
        phone=payload.phone,
        role=payload.role,
        vendor_details=vendor_details,
    )
    return _session_response(result, response, config)


@router.post("/login", response_model=TokenResponse, summary="Log in with email and password")
async def login(
    payload: LoginRequest,
    response: Response,
    manager: CredentialManager = Depends(get_credential_manager),
    config: AuthConfig = Depends(get_auth_config),
):
    result = await manager.authenticate(payload.email, payload.password)
    return _session_response(result, response, config)


@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(
    response: Response,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    manager: CredentialManager = Depends(get_credential_manager),
    config: AuthConfig = Depends(get_auth_config),
):
    """
    Issue a new access token from the refresh cookie.
    The presented refresh token is revoked and replaced (rotation).
    """
    result = await manager.refresh(refresh_cookie)
    return _session_response(result, response, config)


@router.post("/logout", response_model=MessageResponse, summary="Logout")
async def logout(
    response: Response,
    context: AuthContext = Depends(get_auth_context),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Deny-list the access and refresh tokens and clear the cookie."""
    await manager.logout(credentials.credentials if credentials else None, refresh_cookie)
    response.delete_cookie(key=REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=AccountResponse, summary="Get current account")
async def get_me(context: AuthContext = Depends(get_auth_context)):
    return AccountResponse.model_validate(context.account)


@router.post("/change-password", response_model=TokenResponse, summary="Change password")
async def change_password(
    payload: ChangePasswordRequest,
    response: Response,
    context: AuthContext = Depends(get_auth_context),
    manager: CredentialManager = Depends(get_credential_manager),
    config: AuthConfig = Depends(get_auth_config),
):
    """
    Replaces the password. Tokens issued before this call stop working;
    the response carries a fresh session.
    """
    result = await manager.change_password(
        context.account,
        payload.current_password,
        payload.new_password,
        payload.confirm_password,
    )
    return _session_response(result, response, config)
