"""
services/user/router.py
Own profile updates and public seller profiles.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.ads.router import ad_to_response
from services.credits.pricing import resolve_user_level
from services.storage.objects import claim_staged, orphan
from services.storage.vault import AVATARS_BUCKET
from shared.middleware.auth import AuthContext, get_auth_context
from shared.models.models import AdStatus, Advertisement, Profile, utcnow
from shared.schemas.schemas import ProfileResponse, ProfileUpdateRequest, PublicProfileResponse
from shared.utils.exceptions import NotFound

router = APIRouter(prefix="/users", tags=["Users"])


@router.put("/me", response_model=ProfileResponse)
async def update_me(
    data: ProfileUpdateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Update name, phone or avatar. Only non-None fields are updated.
    A new avatar_key must come from /uploads/avatars; the old file is released.
    """
    updates = data.model_dump(exclude_none=True)
    profile = ctx.profile

    new_avatar = updates.get("avatar_key")
    if new_avatar and new_avatar != profile.avatar_key:
        await claim_staged(db, profile.id, AVATARS_BUCKET, [new_avatar])
        if profile.avatar_key:
            await orphan(db, AVATARS_BUCKET, [profile.avatar_key])

    for field, value in updates.items():
        setattr(profile, field, value)

    await db.commit()
    await db.refresh(profile)
    return ProfileResponse.model_validate(profile)


@router.get("/{user_id}", response_model=PublicProfileResponse)
async def get_public_profile(user_id: UUID, db: AsyncSession = Depends(get_db)):
    """Seller card: name, verified badge, level and live ads."""
    profile = await db.get(Profile, user_id)
    if not profile or not profile.is_active:
        raise NotFound("User not found")

    now = utcnow()
    result = await db.execute(
        select(Advertisement)
        .where(
            Advertisement.user_id == profile.id,
            Advertisement.status == AdStatus.APPROVED,
            or_(Advertisement.expires_at.is_(None), Advertisement.expires_at > now),
        )
        .order_by(Advertisement.created_at.desc())
        .limit(50)
    )
    level = await resolve_user_level(db, profile)

    return PublicProfileResponse(
        id=profile.id,
        full_name=profile.full_name,
        is_verified=profile.is_verified,
        rating_avg=profile.rating_avg,
        rating_count=profile.rating_count,
        level=level.level_name if level else None,
        member_since=profile.created_at,
        ads=[ad_to_response(ad) for ad in result.scalars()],
    )
