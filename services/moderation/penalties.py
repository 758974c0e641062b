"""
services/moderation/penalties.py
Violations, suspension and reactivation of user accounts, plus the admin
audit trail every moderation mutation writes to.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.service import notify
from shared.models.models import (
    AdminAuditLog,
    NotificationType,
    Profile,
    ProfileStatus,
    RefreshToken,
    Violation,
)
from shared.utils.exceptions import Conflict, NotFound, PermissionDenied

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    admin: Profile,
    action: str,
    entity_type: str,
    entity_id,
    payload: dict | None = None,
    ip_address: Optional[str] = None,
) -> None:
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        payload=payload or {},
        ip_address=ip_address,
    ))


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile:
    profile = await db.get(Profile, user_id)
    if not profile:
        raise NotFound("User not found")
    return profile


async def suspend_profile(db: AsyncSession, profile: Profile, reason: str) -> bool:
    """Suspend an active non-admin account. Returns False if it was already suspended."""
    if profile.is_admin:
        raise PermissionDenied("Cannot suspend admin users")

    result = await db.execute(
        update(Profile)
        .where(Profile.id == profile.id, Profile.status == ProfileStatus.ACTIVE)
        .values(status=ProfileStatus.SUSPENDED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    # Suspended accounts cannot refresh their session
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == profile.id, RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(profile)
    await notify(
        db,
        profile.id,
        NotificationType.ACCOUNT_SUSPENDED,
        f"Your account has been suspended. Reason: {reason}",
    )
    logger.warning(f"Profile {profile.id} suspended: {reason}")
    return True


async def reactivate_profile(db: AsyncSession, profile: Profile) -> None:
    result = await db.execute(
        update(Profile)
        .where(Profile.id == profile.id, Profile.status == ProfileStatus.SUSPENDED)
        .values(status=ProfileStatus.ACTIVE)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict("User is not suspended")
    await db.refresh(profile)


async def count_violations(db: AsyncSession, user_id: uuid.UUID) -> int:
    count = await db.scalar(select(func.count(Violation.id)).where(Violation.user_id == user_id))
    return count or 0


async def add_violation(
    db: AsyncSession,
    admin: Profile,
    user_id: uuid.UUID,
    reason: str,
    report_id: Optional[uuid.UUID] = None,
) -> tuple[Violation, bool]:
    """
    Record a strike. The owner is warned; reaching VIOLATION_SUSPEND_THRESHOLD
    suspends the account. Returns (violation, suspended_now).
    """
    profile = await get_profile(db, user_id)
    violation = Violation(
        user_id=profile.id,
        admin_id=admin.id,
        report_id=report_id,
        reason=reason,
    )
    db.add(violation)
    await db.flush()

    total = await count_violations(db, profile.id)
    if total >= settings.VIOLATION_SUSPEND_THRESHOLD and profile.is_active and not profile.is_admin:
        suspended = await suspend_profile(
            db, profile, f"{total} violations of the community guidelines"
        )
        return violation, suspended

    await notify(
        db,
        profile.id,
        NotificationType.ACCOUNT_WARNING,
        f"You received a warning ({total}/{settings.VIOLATION_SUSPEND_THRESHOLD}): {reason}",
    )
    return violation, False
