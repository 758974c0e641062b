"""
services/auth/router.py
Email/password authentication.
Implements: Signup → Login → JWT issue → Refresh (rotation) → Logout
"""

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.credits.ledger import get_balance, grant_credits, open_account
from services.credits.pricing import resolve_user_level
from shared.middleware.auth import AuthContext, get_auth_context
from shared.models.models import Profile, RefreshToken, TransactionType, UserRole, utcnow
from shared.schemas.schemas import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    ProfileResponse,
    RefreshRequest,
    SignupRequest,
)
from shared.utils.exceptions import Conflict
from shared.utils.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    hash_token,
    password_needs_rehash,
    refresh_token_expiry,
    seconds_until_expiry,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

REFRESH_COOKIE_PATH = "/auth"


# ── Helper ────────────────────────────────────────────────────

async def _issue_tokens(
    profile: Profile,
    db: AsyncSession,
    response: Response,
    request: Request,
) -> AuthResponse:
    """Issue access + refresh tokens. Store refresh token in DB and set cookie."""
    access_token, _ = create_access_token(
        user_id=str(profile.id),
        role=profile.role.value,
        email=profile.email,
    )

    raw_refresh, hashed_refresh = create_refresh_token()
    db.add(RefreshToken(
        user_id=profile.id,
        token_hash=hashed_refresh,
        expires_at=refresh_token_expiry(),
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        ip_address=request.client.host if request.client else None,
    ))

    # httpOnly cookie for web clients; mobile clients use the body
    response.set_cookie(
        key="refresh_token",
        value=raw_refresh,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path=REFRESH_COOKIE_PATH,
    )

    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=ProfileResponse.model_validate(profile),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
)
async def signup(
    data: SignupRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Creates the profile and its credit account, grants the signup bonus,
    and signs the user in.
    """
    email = data.email.lower()
    existing = await db.scalar(select(Profile.id).where(Profile.email == email))
    if existing:
        raise Conflict("An account with this email already exists")

    profile = Profile(
        email=email,
        password_hash=hash_password(data.password),
        full_name=data.full_name,
        role=UserRole.ADMIN if email in settings.admin_emails_list else UserRole.USER,
    )
    db.add(profile)
    await db.flush()
    await db.refresh(profile)

    await open_account(db, profile.id)
    if settings.SIGNUP_BONUS_CREDITS > 0:
        await grant_credits(
            db, profile.id, settings.SIGNUP_BONUS_CREDITS, TransactionType.SIGNUP_BONUS,
            description="Welcome bonus",
        )

    auth = await _issue_tokens(profile, db, response, request)
    await db.commit()
    logger.info(f"New account {profile.id} ({profile.role.value})")
    return auth


@router.post("/login", response_model=AuthResponse, summary="Sign in")
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    profile = await db.scalar(select(Profile).where(Profile.email == data.email.lower()))
    if not profile or not verify_password(data.password, profile.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is suspended",
        )
    if password_needs_rehash(profile.password_hash):
        profile.password_hash = hash_password(data.password)

    auth = await _issue_tokens(profile, db, response, request)
    await db.commit()
    return auth


@router.post("/refresh", response_model=AuthResponse, summary="Refresh access token")
async def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = None,
    # Accept from cookie (web) or request body (mobile)
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Implements refresh token rotation: the old token is revoked.
    """
    raw_token = (data.refresh_token if data else None) or refresh_token_cookie
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    db_token = await db.scalar(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.is_revoked == False,  # noqa: E712
        )
    )
    if not db_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked refresh token",
        )
    if db_token.expires_at < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token expired",
        )

    profile = await db.get(Profile, db_token.user_id)
    if not profile or not profile.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    db_token.is_revoked = True
    auth = await _issue_tokens(profile, db, response, request)
    await db.commit()
    return auth


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    response: Response,
    data: Optional[RefreshRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Add the access token to the Redis deny-list and revoke refresh tokens:
    the presented one, or every session of the user when none is presented.
    """
    ttl = seconds_until_expiry(ctx.token.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(ctx.token.jti, ttl)

    raw_refresh = (data.refresh_token if data else None) or refresh_token_cookie
    query = update(RefreshToken).where(
        RefreshToken.user_id == ctx.user_id,
        RefreshToken.is_revoked == False,  # noqa: E712
    )
    if raw_refresh:
        query = query.where(RefreshToken.token_hash == hash_token(raw_refresh))
    await db.execute(query.values(is_revoked=True).execution_options(synchronize_session=False))

    response.delete_cookie(key="refresh_token", path=REFRESH_COOKIE_PATH)
    await db.commit()
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse, summary="Get current user")
async def get_me(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """The caller's profile with credit balance and seller level."""
    level = await resolve_user_level(db, ctx.profile)
    return MeResponse(
        **ProfileResponse.model_validate(ctx.profile).model_dump(),
        balance=await get_balance(db, ctx.user_id),
        level=level.level_name if level else None,
        boost_discount_percentage=level.boost_discount_percentage if level else 0,
    )
