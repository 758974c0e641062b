"""
services/ads/reports.py
Abuse reports filed by users against live ads.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.ads.lifecycle import ad_link, get_ad
from services.notification.service import notify_admins
from shared.models.models import (
    AdStatus,
    NotificationType,
    Profile,
    Report,
    ReportStatus,
)
from shared.utils.exceptions import Conflict, PermissionDenied, ValidationError

logger = logging.getLogger(__name__)


async def create_report(
    db: AsyncSession,
    reporter: Profile,
    ad_id: uuid.UUID,
    reason: str,
) -> Report:
    reason = (reason or "").strip()
    if not 5 <= len(reason) <= 500:
        raise ValidationError("Report reason must be between 5 and 500 characters")

    ad = await get_ad(db, ad_id)
    if ad.status != AdStatus.APPROVED:
        raise ValidationError("Only live ads can be reported")
    if ad.user_id == reporter.id:
        raise PermissionDenied("You cannot report your own ad")

    existing = await db.scalar(
        select(Report.id).where(
            Report.ad_id == ad.id,
            Report.reporter_id == reporter.id,
            Report.status == ReportStatus.PENDING,
        )
    )
    if existing:
        raise Conflict("You have already reported this ad")

    report = Report(ad_id=ad.id, reporter_id=reporter.id, reason=reason)
    db.add(report)
    await db.flush()
    await db.refresh(report)

    await notify_admins(
        db,
        NotificationType.NEW_REPORT,
        f'New report on "{ad.title}": {reason[:80]}',
        ad_link(ad.id),
    )
    logger.info(f"Report {report.id} filed on ad {ad.id} by {reporter.id}")
    return report
