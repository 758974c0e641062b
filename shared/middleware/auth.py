"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here and turned into an explicit AuthContext that handlers
pass down to the service layer; there is no ambient "current user".
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import Profile, UserRole
from shared.utils.security import decode_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


@dataclass
class AuthContext:
    """Identity of the caller for one request."""
    profile: Profile
    token: TokenData
    request_id: Optional[str] = None
    ip_address: Optional[str] = None

    @property
    def user_id(self):
        return self.profile.id

    @property
    def is_admin(self) -> bool:
        return self.profile.role == UserRole.ADMIN


async def decode_token(token: str, redis) -> TokenData:
    """Validate signature, type and deny-list. Raises JWTError on any failure."""
    payload = decode_access_token(token)
    if await RedisCache(redis).is_token_revoked(payload["jti"]):
        raise JWTError("Token has been revoked")
    return TokenData(payload)


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await decode_token(credentials.credentials, redis)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e) if "revoked" in str(e) else "Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Load the Profile using the JWT sub claim. Suspended accounts are refused."""
    try:
        user_id = uuid.UUID(token_data.user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()

    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is suspended",
        )
    return profile


async def get_auth_context(
    request: Request,
    token_data: TokenData = Depends(get_token_data),
    profile: Profile = Depends(get_current_user),
) -> AuthContext:
    return AuthContext(
        profile=profile,
        token=token_data,
        request_id=getattr(request.state, "request_id", None),
        ip_address=request.client.host if request.client else None,
    )


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        ctx: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if ctx.profile.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return ctx


# Convenience role dependencies
require_user = RoleRequired(UserRole.USER, UserRole.ADMIN)
require_admin = RoleRequired(UserRole.ADMIN)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> Optional[Profile]:
    """Returns current profile if authenticated, None otherwise. For public endpoints."""
    if not credentials:
        return None
    try:
        token_data = await decode_token(credentials.credentials, redis)
    except JWTError:
        return None
    try:
        user_id = uuid.UUID(token_data.user_id)
    except ValueError:
        return None
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if profile and not profile.is_active:
        return None
    return profile
