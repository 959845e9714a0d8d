"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Bearer tokens are validated by the CredentialManager; routes only see an AuthContext.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenDenyList, get_redis
from config.settings import settings
from services.auth.service import AuthConfig, AuthContext, CredentialManager
from shared.errors import ErrorKind, ServiceError
from shared.models.models import AccountRole

security = HTTPBearer(auto_error=False)


@lru_cache()
def get_auth_config() -> AuthConfig:
    return AuthConfig.from_settings(settings)


async def get_credential_manager(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    config: AuthConfig = Depends(get_auth_config),
) -> CredentialManager:
    return CredentialManager(db, config, deny_list=TokenDenyList(redis))


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    manager: CredentialManager = Depends(get_credential_manager),
) -> AuthContext:
    """
    Extract and validate the JWT from the Authorization header.
    Revoked, expired, stale and orphaned tokens all end up as UNAUTHENTICATED.
    """
    if not credentials:
        raise ServiceError(ErrorKind.UNAUTHENTICATED, "Not authorized. Please log in")

    context = await manager.verify_token(credentials.credentials)
    request.state.account_id = str(context.account_id)
    request.state.role = context.role.value
    return context


async def get_active_auth_context(
    context: AuthContext = Depends(get_auth_context),
    manager: CredentialManager = Depends(get_credential_manager),
) -> AuthContext:
    """
    Auth context for booking and role-gated routes. Vendor accounts must
    still have an active profile, whenever their token was issued.
    """
    await manager.check_vendor_status(context.account)
    return context


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: AccountRole):
        self.roles = roles

    async def __call__(
        self,
        context: AuthContext = Depends(get_active_auth_context),
    ) -> AuthContext:
        if context.role not in self.roles:
            raise ServiceError(
                ErrorKind.FORBIDDEN,
                f"Required role: {[r.value for r in self.roles]}",
            )
        return context


# Convenience role dependencies
require_customer = RoleRequired(AccountRole.CUSTOMER)
require_vendor = RoleRequired(AccountRole.VENDOR)
require_admin = RoleRequired(AccountRole.ADMIN)
