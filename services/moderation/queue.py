"""
services/moderation/queue.py
Moderation queue aggregator.

One admin worklist merges three backlogs:
  - pending ads (MODERATION_AD_BATCH most recent)
  - pending reports (MODERATION_REPORT_BATCH most recent)
  - pending verification requests (all)

Display names come from a single batched profile lookup. The merged list is
sorted oldest first; Python's sort is stable, so equal timestamps keep the
concatenation order (reports, verifications, ads).

Resolution dispatches on the item type. Every resolution is a
compare-and-swap on the row's status, so an item acted on by another admin
fails with ConcurrentModification instead of being overwritten.
"""

import logging
import uuid
from typing import List, Optional, Union

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.ads.lifecycle import ad_link, approve_ad, reject_ad
from services.moderation.penalties import add_violation, record_audit
from services.notification.service import notify
from shared.models.models import (
    AdStatus,
    Advertisement,
    NotificationType,
    Profile,
    Report,
    ReportStatus,
    VerificationRequest,
    VerificationStatus,
    utcnow,
)
from shared.schemas.schemas import (
    AdQueueItem,
    ModerationQueueResponse,
    ReportQueueItem,
    VerificationQueueItem,
)
from shared.utils.exceptions import ConcurrentModification, NotFound, ValidationError

logger = logging.getLogger(__name__)

QUEUE_CACHE_KEY = "moderation:queue"

QueueItem = Union[AdQueueItem, VerificationQueueItem, ReportQueueItem]

# item type -> actions it accepts
ACTIONS = {
    "ad": {"approve", "reject"},
    "verification": {"approve", "reject"},
    "report": {"accept", "dismiss"},
}


# ── Fetch ─────────────────────────────────────────────────────

async def fetch_queue(db: AsyncSession) -> List[QueueItem]:
    ads = (await db.execute(
        select(Advertisement)
        .where(Advertisement.status == AdStatus.PENDING_APPROVAL)
        .order_by(Advertisement.created_at.desc())
        .limit(settings.MODERATION_AD_BATCH)
    )).scalars().all()

    reports = (await db.execute(
        select(Report, Advertisement.title)
        .join(Advertisement, Advertisement.id == Report.ad_id)
        .where(Report.status == ReportStatus.PENDING)
        .order_by(Report.created_at.desc())
        .limit(settings.MODERATION_REPORT_BATCH)
    )).all()

    verifications = (await db.execute(
        select(VerificationRequest)
        .where(VerificationRequest.status == VerificationStatus.PENDING)
        .order_by(VerificationRequest.created_at.asc())
    )).scalars().all()

    user_ids = (
        {ad.user_id for ad in ads}
        | {report.reporter_id for report, _ in reports}
        | {v.user_id for v in verifications}
    )
    names = {}
    if user_ids:
        rows = await db.execute(
            select(Profile.id, Profile.full_name).where(Profile.id.in_(user_ids))
        )
        names = {row.id: row.full_name for row in rows}

    items: List[QueueItem] = [
        ReportQueueItem(
            id=report.id,
            created_at=report.created_at,
            submitter_id=report.reporter_id,
            submitter_name=names.get(report.reporter_id),
            ad_id=report.ad_id,
            ad_title=ad_title,
            reason=report.reason,
        )
        for report, ad_title in reports
    ]
    items += [
        VerificationQueueItem(
            id=v.id,
            created_at=v.created_at,
            submitter_id=v.user_id,
            submitter_name=names.get(v.user_id),
            document_key=v.document_key,
            selfie_key=v.selfie_key,
        )
        for v in verifications
    ]
    items += [
        AdQueueItem(
            id=ad.id,
            created_at=ad.created_at,
            submitter_id=ad.user_id,
            submitter_name=names.get(ad.user_id),
            title=ad.title,
            price=ad.price,
            description=ad.description,
            image_keys=list(ad.image_keys or []),
        )
        for ad in ads
    ]

    items.sort(key=lambda item: item.created_at)
    return items


async def get_cached_queue(db: AsyncSession) -> ModerationQueueResponse:
    """Queue snapshot, cached for at most one poll interval."""
    cache = RedisCache(get_redis())
    try:
        cached = await cache.get(QUEUE_CACHE_KEY)
    except RedisError as e:
        logger.warning(f"Queue cache read failed: {e}")
        cached = None
    if cached:
        return ModerationQueueResponse.model_validate(cached)

    response = ModerationQueueResponse(
        items=await fetch_queue(db),
        refresh_interval_seconds=settings.MODERATION_POLL_INTERVAL_SECONDS,
    )
    try:
        await cache.set(
            QUEUE_CACHE_KEY,
            response.model_dump(mode="json"),
            ttl=settings.MODERATION_POLL_INTERVAL_SECONDS,
        )
    except RedisError as e:
        logger.warning(f"Queue cache write failed: {e}")
    return response


async def invalidate_queue_cache() -> None:
    try:
        await RedisCache(get_redis()).delete(QUEUE_CACHE_KEY)
    except (RedisError, RuntimeError) as e:
        logger.warning(f"Queue cache invalidation failed: {e}")


# ── Verification ──────────────────────────────────────────────

async def review_verification(
    db: AsyncSession,
    admin: Profile,
    request_id: uuid.UUID,
    approve: bool,
    reason: Optional[str] = None,
) -> VerificationRequest:
    """Approve sets the submitter's verified badge; reject leaves it untouched."""
    reason = (reason or "").strip()
    if not approve and not reason:
        raise ValidationError("A reason is required to reject a verification request")

    request = await db.get(VerificationRequest, request_id)
    if not request:
        raise NotFound("Verification request not found")

    new_status = VerificationStatus.APPROVED if approve else VerificationStatus.REJECTED
    now = utcnow()
    result = await db.execute(
        update(VerificationRequest)
        .where(
            VerificationRequest.id == request.id,
            VerificationRequest.status == VerificationStatus.PENDING,
        )
        .values(
            status=new_status,
            reviewed_by=admin.id,
            reviewed_at=now,
            rejection_reason=None if approve else reason,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification("Verification request is no longer pending")

    if approve:
        await db.execute(
            update(Profile)
            .where(Profile.id == request.user_id)
            .values(is_verified=True)
            .execution_options(synchronize_session=False)
        )
        await notify(
            db,
            request.user_id,
            NotificationType.VERIFICATION_APPROVED,
            "Your identity has been verified. Your profile now shows the verified seller badge.",
            "/profile",
        )
    else:
        await notify(
            db,
            request.user_id,
            NotificationType.VERIFICATION_REJECTED,
            f"Your verification request was rejected. Reason: {reason}",
            "/profile",
        )

    await db.refresh(request)
    return request


# ── Reports ───────────────────────────────────────────────────

async def resolve_report(
    db: AsyncSession,
    admin: Profile,
    report_id: uuid.UUID,
    action: str,
) -> Report:
    """
    dismiss: the report is closed, nothing else changes.
    accept:  the ad is taken down (unless already sold or rejected), the owner
             gets a violation, and both parties are notified.
    """
    if action not in ACTIONS["report"]:
        raise ValidationError(f"Unsupported action '{action}' for a report")

    report = await db.get(Report, report_id)
    if not report:
        raise NotFound("Report not found")

    new_status = ReportStatus.RESOLVED if action == "accept" else ReportStatus.DISMISSED
    result = await db.execute(
        update(Report)
        .where(Report.id == report.id, Report.status == ReportStatus.PENDING)
        .values(status=new_status, resolved_by=admin.id, resolved_at=utcnow(), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification("Report is no longer pending")
    await db.refresh(report)

    if action == "dismiss":
        return report

    ad = await db.get(Advertisement, report.ad_id)
    takedown = await db.execute(
        update(Advertisement)
        .where(
            Advertisement.id == ad.id,
            Advertisement.status.not_in([AdStatus.SOLD, AdStatus.REJECTED]),
        )
        .values(status=AdStatus.REJECTED, flag_reason=report.reason, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.refresh(ad)
    if takedown.rowcount:
        logger.info(f"Ad {ad.id} taken down after report {report.id}")

    await add_violation(
        db, admin, ad.user_id, f'Reported ad "{ad.title}": {report.reason}', report_id=report.id
    )
    await notify(
        db,
        ad.user_id,
        NotificationType.AD_REPORTED,
        f'Your ad "{ad.title}" was removed after a report. Reason: {report.reason}',
        ad_link(ad.id),
    )
    await notify(
        db,
        report.reporter_id,
        NotificationType.REPORT_RESOLVED,
        f'Thanks for your report on "{ad.title}". We have taken action.',
        ad_link(ad.id),
    )
    return report


# ── Dispatch ──────────────────────────────────────────────────

async def resolve_item(
    db: AsyncSession,
    admin: Profile,
    item_type: str,
    item_id: uuid.UUID,
    action: str,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> str:
    """Apply one admin decision to a queue item. Returns the item's new status."""
    if item_type not in ACTIONS:
        raise ValidationError(f"Unknown queue item type '{item_type}'")
    if action not in ACTIONS[item_type]:
        raise ValidationError(f"Unsupported action '{action}' for {item_type}")

    if item_type == "ad":
        if action == "approve":
            ad = await approve_ad(db, admin, item_id)
        else:
            ad = await reject_ad(db, admin, item_id, reason)
        new_status = AdStatus(ad.status).value
    elif item_type == "verification":
        request = await review_verification(db, admin, item_id, action == "approve", reason)
        new_status = VerificationStatus(request.status).value
    else:
        report = await resolve_report(db, admin, item_id, action)
        new_status = ReportStatus(report.status).value

    await record_audit(
        db,
        admin,
        f"{action.upper()}_{item_type.upper()}",
        item_type,
        item_id,
        {"reason": reason} if reason else {},
        ip_address,
    )
    logger.info(f"Admin {admin.id} {action} {item_type} {item_id} -> {new_status}")
    return new_status
