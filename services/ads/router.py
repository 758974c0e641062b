"""
services/ads/router.py
Advertisement listings: create/edit, owner actions, boost, renewal,
views, nearby search and abuse reports.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.ads import lifecycle
from services.ads.geo import find_nearby, sync_ad_location
from services.ads.reports import create_report
from services.credits.ledger import get_balance
from services.notification.service import commit_and_publish
from services.storage.vault import AD_IMAGES_BUCKET, public_url
from shared.middleware.auth import AuthContext, get_auth_context, get_optional_user
from shared.models.models import AdStatus, Advertisement, Profile, utcnow
from shared.schemas.schemas import (
    MAX_GEO_LATITUDE,
    AdCreateRequest,
    AdResponse,
    AdUpdateRequest,
    BoostResponse,
    ReportCreateRequest,
    ReportResponse,
)
from shared.utils.exceptions import NotFound

router = APIRouter(prefix="/ads", tags=["Advertisements"])

# ── Helpers ───────────────────────────────────────────────────

def ad_to_response(ad: Advertisement, distance_km: Optional[float] = None) -> AdResponse:
    return AdResponse.model_validate(ad).model_copy(
        update={
            "image_urls": [public_url(AD_IMAGES_BUCKET, key) for key in ad.image_keys or []],
            "distance_km": distance_km,
        }
    )


def _live_filter(now):
    """Approved and not expired."""
    return and_(
        Advertisement.status == AdStatus.APPROVED,
        or_(Advertisement.expires_at.is_(None), Advertisement.expires_at > now),
    )


def _page(items, total: int, page: int, page_size: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


# ── Public Endpoints ──────────────────────────────────────────

@router.get("")
async def list_ads(
    q: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None, max_length=100),
    price_min: Optional[Decimal] = Query(None, ge=0),
    price_max: Optional[Decimal] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Live listings. Boosted ads come first, then newest."""
    now = utcnow()
    query = select(Advertisement).where(_live_filter(now))
    if q:
        query = query.where(Advertisement.title.ilike(f"%{q}%"))
    if category:
        query = query.where(Advertisement.category_slug == category)
    if price_min is not None:
        query = query.where(Advertisement.price >= price_min)
    if price_max is not None:
        query = query.where(Advertisement.price <= price_max)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    boosted_first = case((Advertisement.boosted_until > now, 1), else_=0)
    result = await db.execute(
        query.order_by(boosted_first.desc(), Advertisement.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return _page([ad_to_response(ad) for ad in result.scalars()], total, page, page_size)


@router.get("/nearby")
async def nearby_ads(
    lat: float = Query(..., ge=-MAX_GEO_LATITUDE, le=MAX_GEO_LATITUDE),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(settings.NEARBY_ADS_DEFAULT_RADIUS_KM, gt=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Live ads within radius_km (capped), nearest first, from the Redis GEO index."""
    radius_km = min(radius_km, settings.NEARBY_ADS_MAX_RADIUS_KM)
    matches = await find_nearby(db, lat, lng, radius_km, limit)
    return {
        "items": [ad_to_response(ad, round(d, 2)) for d, ad in matches],
        "radius_km": radius_km,
    }


@router.get("/mine")
async def my_ads(
    status_filter: Optional[AdStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    query = select(Advertisement).where(Advertisement.user_id == ctx.user_id)
    if status_filter:
        query = query.where(Advertisement.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(Advertisement.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return _page([ad_to_response(ad) for ad in result.scalars()], total, page, page_size)


@router.get("/{ad_id}", response_model=AdResponse)
async def get_ad(
    ad_id: UUID,
    viewer: Optional[Profile] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Approved ads are public; other states are visible to the owner and admins only."""
    ad = await lifecycle.get_ad(db, ad_id)
    if ad.status != AdStatus.APPROVED:
        if not viewer or (viewer.id != ad.user_id and not viewer.is_admin):
            raise NotFound("Advertisement not found")
    return ad_to_response(ad)


@router.post("/{ad_id}/view", status_code=status.HTTP_204_NO_CONTENT)
async def register_view(ad_id: UUID, db: AsyncSession = Depends(get_db)):
    await lifecycle.record_view(db, ad_id)
    await db.commit()


# ── Owner Endpoints ───────────────────────────────────────────

@router.post("", response_model=AdResponse, status_code=status.HTTP_201_CREATED)
async def create_ad(
    data: AdCreateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Submit a new ad. It enters the moderation queue as pending_approval."""
    ad = await lifecycle.create_ad(db, ctx.profile, data.model_dump())
    await db.commit()
    return ad_to_response(ad)


@router.put("/{ad_id}", response_model=AdResponse)
async def edit_ad(
    ad_id: UUID,
    data: AdUpdateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Replace title, price, description, category, location and the ordered
    image list. New images must be uploaded to /uploads/advertisements first.
    """
    ad = await lifecycle.edit_ad(db, ctx.profile, ad_id, data.model_dump())
    await db.commit()
    await sync_ad_location(ad)
    return ad_to_response(ad)


@router.post("/{ad_id}/pause", response_model=AdResponse)
async def pause_ad(
    ad_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ad = await lifecycle.pause_ad(db, ctx.profile, ad_id)
    await db.commit()
    await sync_ad_location(ad)
    return ad_to_response(ad)


@router.post("/{ad_id}/relist", response_model=AdResponse)
async def relist_ad(
    ad_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ad = await lifecycle.relist_ad(db, ctx.profile, ad_id)
    await db.commit()
    await sync_ad_location(ad)
    return ad_to_response(ad)


@router.post("/{ad_id}/sold", response_model=AdResponse)
async def mark_sold(
    ad_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ad = await lifecycle.mark_sold(db, ctx.profile, ad_id)
    await db.commit()
    await sync_ad_location(ad)
    return ad_to_response(ad)


@router.post("/{ad_id}/boost", response_model=BoostResponse)
async def boost_ad(
    ad_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Spend credits to feature the ad for the configured number of days.
    402 when the balance is too low, 409 while a boost is still active.
    """
    ad, spent = await lifecycle.boost_ad(db, ctx.profile, ad_id)
    await db.commit()
    return BoostResponse(
        ad=ad_to_response(ad),
        credits_spent=spent,
        balance=await get_balance(db, ctx.user_id),
    )


@router.post("/{ad_id}/renew", response_model=AdResponse)
async def renew_ad(
    ad_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ad = await lifecycle.renew_ad(db, ctx.profile, ad_id)
    await db.commit()
    await sync_ad_location(ad)
    return ad_to_response(ad)


@router.post("/{ad_id}/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def report_ad(
    ad_id: UUID,
    data: ReportCreateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    report = await create_report(db, ctx.profile, ad_id, data.reason)
    await commit_and_publish(db)
    return ReportResponse.model_validate(report)
