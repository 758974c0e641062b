"""
services/ads/lifecycle.py
Advertisement state machine, boosts and renewals.

    pending_approval --approve--> approved --pause--> paused
    pending_approval --reject---> rejected           paused --relist--> approved
    approved | paused --mark_sold--> sold

Every status change is a compare-and-swap on the status column, so two
admins (or an admin and the owner) acting on the same ad cannot both win.
Boost and renewal leave status untouched.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.credits.ledger import spend_credits
from services.credits.pricing import (
    boost_discount_for,
    effective_boost_cost,
    get_boost_duration_days,
    get_boost_price,
)
from services.notification.service import notify
from services.storage.objects import claim_staged, orphan
from services.storage.vault import AD_IMAGES_BUCKET
from shared.models.models import (
    AdStatus,
    Advertisement,
    NotificationType,
    Profile,
    utcnow,
)
from shared.utils.exceptions import (
    AlreadyBoosted,
    ConcurrentModification,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    RenewalNotAllowed,
    ValidationError,
)

logger = logging.getLogger(__name__)

# action -> (allowed source states, target state)
TRANSITIONS = {
    "approve": ({AdStatus.PENDING_APPROVAL}, AdStatus.APPROVED),
    "reject": ({AdStatus.PENDING_APPROVAL}, AdStatus.REJECTED),
    "pause": ({AdStatus.APPROVED}, AdStatus.PAUSED),
    "relist": ({AdStatus.PAUSED}, AdStatus.APPROVED),
    "mark_sold": ({AdStatus.APPROVED, AdStatus.PAUSED}, AdStatus.SOLD),
}

EDITABLE_STATES = {AdStatus.PENDING_APPROVAL, AdStatus.APPROVED, AdStatus.PAUSED}
BOOSTABLE_STATES = {AdStatus.PENDING_APPROVAL, AdStatus.APPROVED, AdStatus.PAUSED}
RENEWABLE_STATES = {AdStatus.APPROVED, AdStatus.PAUSED}


def ad_link(ad_id) -> str:
    return f"/ads/{ad_id}"


# ── Lookups ───────────────────────────────────────────────────

async def get_ad(db: AsyncSession, ad_id: uuid.UUID, for_update: bool = False) -> Advertisement:
    query = select(Advertisement).where(Advertisement.id == ad_id)
    if for_update:
        query = query.with_for_update()
    ad = await db.scalar(query)
    if not ad:
        raise NotFound("Advertisement not found")
    return ad


def _require_owner(ad: Advertisement, actor: Profile) -> None:
    if ad.user_id != actor.id:
        raise PermissionDenied("Only the owner can do this")


async def _compare_and_set(
    db: AsyncSession,
    ad: Advertisement,
    action: str,
    **values,
) -> Advertisement:
    allowed, target = TRANSITIONS[action]
    current = AdStatus(ad.status)
    if current not in allowed:
        raise InvalidTransition(f"Cannot {action.replace('_', ' ')} an ad that is {current.value}")

    result = await db.execute(
        update(Advertisement)
        .where(Advertisement.id == ad.id, Advertisement.status == current)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification(f"Advertisement {ad.id} changed while {action} was in progress")

    await db.refresh(ad)
    logger.info(f"Ad {ad.id}: {current.value} -> {target.value} ({action})")
    return ad


# ── Admin transitions ─────────────────────────────────────────

async def approve_ad(db: AsyncSession, admin: Profile, ad_id: uuid.UUID) -> Advertisement:
    ad = await get_ad(db, ad_id)
    values = {"flag_reason": None}
    if ad.expires_at is None:
        values["expires_at"] = utcnow() + timedelta(days=settings.AD_LIFETIME_DAYS)

    ad = await _compare_and_set(db, ad, "approve", **values)
    await notify(
        db,
        ad.user_id,
        NotificationType.AD_APPROVED,
        f'Your ad "{ad.title}" has been approved and is now live.',
        ad_link(ad.id),
    )
    return ad


async def reject_ad(
    db: AsyncSession,
    admin: Profile,
    ad_id: uuid.UUID,
    reason: Optional[str],
) -> Advertisement:
    """Rejection needs a reason: it is shown to the owner as flag_reason."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to reject an advertisement")

    ad = await get_ad(db, ad_id)
    ad = await _compare_and_set(db, ad, "reject", flag_reason=reason)
    await notify(
        db,
        ad.user_id,
        NotificationType.AD_REJECTED,
        f'Your ad "{ad.title}" was rejected. Reason: {reason}',
        ad_link(ad.id),
    )
    return ad


# ── Owner transitions ─────────────────────────────────────────

async def pause_ad(db: AsyncSession, actor: Profile, ad_id: uuid.UUID) -> Advertisement:
    ad = await get_ad(db, ad_id)
    _require_owner(ad, actor)
    return await _compare_and_set(db, ad, "pause")


async def relist_ad(db: AsyncSession, actor: Profile, ad_id: uuid.UUID) -> Advertisement:
    ad = await get_ad(db, ad_id)
    _require_owner(ad, actor)
    return await _compare_and_set(db, ad, "relist")


async def mark_sold(db: AsyncSession, actor: Profile, ad_id: uuid.UUID) -> Advertisement:
    ad = await get_ad(db, ad_id)
    _require_owner(ad, actor)
    ad = await _compare_and_set(db, ad, "mark_sold")
    await db.execute(
        update(Profile)
        .where(Profile.id == ad.user_id)
        .values(transaction_count=Profile.transaction_count + 1)
        .execution_options(synchronize_session=False)
    )
    return ad


# ── Create / edit ─────────────────────────────────────────────

async def create_ad(db: AsyncSession, actor: Profile, data: dict) -> Advertisement:
    image_keys = list(data["image_keys"])
    if not 1 <= len(image_keys) <= settings.MAX_AD_IMAGES:
        raise ValidationError(f"An ad needs between 1 and {settings.MAX_AD_IMAGES} images")

    await claim_staged(db, actor.id, AD_IMAGES_BUCKET, image_keys)
    ad = Advertisement(
        user_id=actor.id,
        title=data["title"],
        description=data.get("description"),
        price=data["price"],
        category_slug=data.get("category_slug"),
        image_keys=image_keys,
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        status=AdStatus.PENDING_APPROVAL,
    )
    db.add(ad)
    await db.flush()
    await db.refresh(ad)
    logger.info(f"Ad {ad.id} created by {actor.id}")
    return ad


async def edit_ad(db: AsyncSession, actor: Profile, ad_id: uuid.UUID, data: dict) -> Advertisement:
    """
    Replace the editable fields and the ordered image list in one transaction.
    New images must already be staged by the caller; dropped images are
    orphaned for the storage GC. Status is preserved: an approved ad stays
    approved after its owner edits it.
    """
    ad = await get_ad(db, ad_id, for_update=True)
    if ad.user_id != actor.id and not actor.is_admin:
        raise PermissionDenied("Only the owner can edit this ad")
    current = AdStatus(ad.status)
    if current not in EDITABLE_STATES:
        raise InvalidTransition(f"Cannot edit an ad that is {current.value}")

    new_keys = list(data["image_keys"])
    if not 1 <= len(new_keys) <= settings.MAX_AD_IMAGES:
        raise ValidationError(f"An ad needs between 1 and {settings.MAX_AD_IMAGES} images")
    old_keys = list(ad.image_keys or [])
    added = [k for k in new_keys if k not in old_keys]
    removed = [k for k in old_keys if k not in new_keys]

    await claim_staged(db, actor.id, AD_IMAGES_BUCKET, added)
    await orphan(db, AD_IMAGES_BUCKET, removed)

    result = await db.execute(
        update(Advertisement)
        .where(Advertisement.id == ad.id, Advertisement.status == current)
        .values(
            title=data["title"],
            description=data.get("description"),
            price=data["price"],
            category_slug=data.get("category_slug"),
            image_keys=new_keys,
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification(f"Advertisement {ad.id} changed while it was being edited")

    await db.refresh(ad)
    logger.info(f"Ad {ad.id} edited by {actor.id}: +{len(added)} / -{len(removed)} images")
    return ad


# ── Boost / renew / views ─────────────────────────────────────

async def boost_ad(db: AsyncSession, actor: Profile, ad_id: uuid.UUID) -> tuple[Advertisement, int]:
    """
    Spend credits and push boosted_until out by the configured duration.
    Returns (ad, credits_spent). An active boost is never stacked.
    """
    ad = await get_ad(db, ad_id, for_update=True)
    _require_owner(ad, actor)
    current = AdStatus(ad.status)
    if current not in BOOSTABLE_STATES:
        raise InvalidTransition(f"Cannot boost an ad that is {current.value}")

    now = utcnow()
    if ad.boosted_until is not None and ad.boosted_until > now:
        raise AlreadyBoosted(f"Ad is already boosted until {ad.boosted_until.isoformat()}")

    base_cost = await get_boost_price(db)
    duration_days = await get_boost_duration_days(db)
    discount = await boost_discount_for(db, actor)
    cost = effective_boost_cost(base_cost, discount)

    if cost > 0:
        await spend_credits(
            db,
            actor.id,
            cost,
            related_ad_id=ad.id,
            description=f'Boost "{ad.title}" for {duration_days} days',
        )

    result = await db.execute(
        update(Advertisement)
        .where(
            Advertisement.id == ad.id,
            Advertisement.status.in_(BOOSTABLE_STATES),
            or_(Advertisement.boosted_until.is_(None), Advertisement.boosted_until <= now),
        )
        .values(boosted_until=now + timedelta(days=duration_days), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # the caller's rollback also undoes the spend above
        raise AlreadyBoosted("Ad was boosted concurrently")

    await db.refresh(ad)
    logger.info(f"Ad {ad.id} boosted until {ad.boosted_until.isoformat()} for {cost} credits")
    return ad, cost


async def renew_ad(db: AsyncSession, actor: Profile, ad_id: uuid.UUID) -> Advertisement:
    """Allowed only when expiry is unset, past, or within RENEWAL_WINDOW_DAYS."""
    ad = await get_ad(db, ad_id)
    _require_owner(ad, actor)
    current = AdStatus(ad.status)
    if current not in RENEWABLE_STATES:
        raise InvalidTransition(f"Cannot renew an ad that is {current.value}")

    now = utcnow()
    window_end = now + timedelta(days=settings.RENEWAL_WINDOW_DAYS)
    if ad.expires_at is not None and ad.expires_at > window_end:
        raise RenewalNotAllowed(
            f"Ads can be renewed within {settings.RENEWAL_WINDOW_DAYS} days of expiry; "
            f"this one expires {ad.expires_at.isoformat()}"
        )

    result = await db.execute(
        update(Advertisement)
        .where(
            Advertisement.id == ad.id,
            Advertisement.status == current,
            or_(Advertisement.expires_at.is_(None), Advertisement.expires_at <= window_end),
        )
        .values(
            expires_at=now + timedelta(days=settings.AD_LIFETIME_DAYS),
            last_renewed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RenewalNotAllowed("Ad was renewed or changed concurrently")

    await db.refresh(ad)
    return ad


async def record_view(db: AsyncSession, ad_id: uuid.UUID) -> None:
    result = await db.execute(
        update(Advertisement)
        .where(Advertisement.id == ad_id, Advertisement.status == AdStatus.APPROVED)
        .values(view_count=Advertisement.view_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Advertisement not found")
