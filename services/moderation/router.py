"""
services/moderation/router.py
Admin-only endpoints: the moderation queue, user moderation, credit grants,
site settings, seller levels, platform stats and the immutable audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.ads.geo import sync_ad_location
from services.credits.ledger import get_balance, grant_credits
from services.credits.pricing import BOOST_DURATION_KEY, BOOST_PRICE_KEY
from services.moderation.penalties import (
    add_violation,
    get_profile,
    reactivate_profile,
    record_audit,
    suspend_profile,
)
from services.moderation.queue import get_cached_queue, invalidate_queue_cache, resolve_item
from services.notification.service import commit_and_publish, notify
from services.storage.vault import VERIFICATION_BUCKET, vault
from shared.middleware.auth import AuthContext, require_admin
from shared.models.models import (
    AdminAuditLog,
    AdStatus,
    Advertisement,
    CreditBalance,
    CreditTransaction,
    NotificationType,
    Profile,
    ProfileStatus,
    Report,
    ReportStatus,
    SiteSetting,
    TransactionType,
    UserLevel,
    VerificationRequest,
    VerificationStatus,
)
from shared.schemas.schemas import (
    AdminGrantCreditsRequest,
    AdminStatsResponse,
    AdminSuspendRequest,
    AdminViolationRequest,
    MessageResponse,
    ModerationQueueResponse,
    ResolveItemRequest,
    ResolveItemResponse,
    SiteSettingRequest,
    UserLevelRequest,
)
from shared.utils.exceptions import Conflict, NotFound, ValidationError

router = APIRouter(prefix="/admin", tags=["Admin"])

# key -> smallest accepted value
EDITABLE_SETTINGS = {
    BOOST_PRICE_KEY: 0,
    BOOST_DURATION_KEY: 1,
}


# ── Moderation Queue ──────────────────────────────────────────

@router.get("/moderation/queue", response_model=ModerationQueueResponse)
async def get_moderation_queue(
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Unified worklist of pending reports, verification requests and ads,
    oldest first. Poll again after refresh_interval_seconds.
    """
    return await get_cached_queue(db)


@router.post("/moderation/{item_type}/{item_id}/resolve", response_model=ResolveItemResponse)
async def resolve_queue_item(
    item_type: str,
    item_id: UUID,
    data: ResolveItemRequest,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    ad: approve | reject (reason required)
    verification: approve | reject (reason required)
    report: accept | dismiss
    409 when another admin already resolved the item.
    """
    new_status = await resolve_item(
        db, ctx.profile, item_type, item_id, data.action, data.reason, ctx.ip_address
    )
    await commit_and_publish(db)
    await invalidate_queue_cache()
    if item_type in ("ad", "report"):
        ad_id = item_id if item_type == "ad" else (await db.get(Report, item_id)).ad_id
        await sync_ad_location(await db.get(Advertisement, ad_id))
    return ResolveItemResponse(
        item_type=item_type, item_id=item_id, action=data.action, status=new_status
    )


@router.get("/verification/{request_id}/{document}")
async def get_verification_document(
    request_id: UUID,
    document: str,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Verification documents live in a private bucket and are served to admins only."""
    if document not in ("document", "selfie"):
        raise NotFound("Unknown document")
    request = await db.get(VerificationRequest, request_id)
    if not request:
        raise NotFound("Verification request not found")

    key = request.document_key if document == "document" else request.selfie_key
    if not vault.exists(VERIFICATION_BUCKET, key):
        raise NotFound("Document file is missing")
    return FileResponse(vault.path_for(VERIFICATION_BUCKET, key))


# ── User Moderation ───────────────────────────────────────────

@router.post("/users/{user_id}/credits", response_model=MessageResponse)
async def grant_user_credits(
    user_id: UUID,
    data: AdminGrantCreditsRequest,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    profile = await get_profile(db, user_id)
    tx_id = await grant_credits(
        db, profile.id, data.amount, TransactionType.ADMIN_ADD, description=data.description
    )
    await notify(
        db,
        profile.id,
        NotificationType.CREDITS_ADDED,
        f"{data.amount} credits were added to your account: {data.description}",
        "/credits",
    )
    await record_audit(db, ctx.profile, "GRANT_CREDITS", "Profile", profile.id,
                       {"amount": data.amount, "description": data.description, "transaction_id": tx_id},
                       ctx.ip_address)
    await commit_and_publish(db)
    balance = await get_balance(db, profile.id)
    return MessageResponse(message=f"Granted {data.amount} credits; new balance {balance}")


@router.post("/users/{user_id}/violations", response_model=MessageResponse)
async def add_user_violation(
    user_id: UUID,
    data: AdminViolationRequest,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record a strike. The third strike suspends the account."""
    violation, suspended = await add_violation(db, ctx.profile, user_id, data.reason)
    await record_audit(db, ctx.profile, "ADD_VIOLATION", "Profile", user_id,
                       {"reason": data.reason, "violation_id": str(violation.id)}, ctx.ip_address)
    await commit_and_publish(db)
    if suspended:
        return MessageResponse(message="Violation recorded; account suspended")
    return MessageResponse(message="Violation recorded")


@router.post("/users/{user_id}/suspend", response_model=MessageResponse)
async def suspend_user(
    user_id: UUID,
    data: AdminSuspendRequest,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a user account. Admins cannot be suspended."""
    profile = await get_profile(db, user_id)
    if not await suspend_profile(db, profile, data.reason):
        raise Conflict("User is already suspended")
    await record_audit(db, ctx.profile, "SUSPEND_USER", "Profile", user_id,
                       {"reason": data.reason}, ctx.ip_address)
    await commit_and_publish(db)
    return MessageResponse(message="User suspended")


@router.post("/users/{user_id}/reactivate", response_model=MessageResponse)
async def reactivate_user(
    user_id: UUID,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Re-activate a suspended user account."""
    profile = await get_profile(db, user_id)
    await reactivate_profile(db, profile)
    await record_audit(db, ctx.profile, "REACTIVATE_USER", "Profile", user_id, {}, ctx.ip_address)
    await db.commit()
    return MessageResponse(message="User reactivated")


# ── Site Configuration ────────────────────────────────────────

@router.put("/settings/{key}", response_model=MessageResponse)
async def update_site_setting(
    key: str,
    data: SiteSettingRequest,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Tune boost_price / boost_duration_days without a deploy."""
    if key not in EDITABLE_SETTINGS:
        raise NotFound(f"Unknown setting '{key}'")
    try:
        value = int(data.value)
    except ValueError:
        raise ValidationError(f"{key} must be an integer")
    if value < EDITABLE_SETTINGS[key]:
        raise ValidationError(f"{key} must be at least {EDITABLE_SETTINGS[key]}")

    setting = await db.get(SiteSetting, key)
    previous = setting.value if setting else None
    if setting:
        setting.value = str(value)
    else:
        db.add(SiteSetting(key=key, value=str(value)))

    await record_audit(db, ctx.profile, "UPDATE_SETTING", "SiteSetting", key,
                       {"from": previous, "to": str(value)}, ctx.ip_address)
    await db.commit()
    return MessageResponse(message=f"{key} set to {value}")


@router.post("/levels", response_model=MessageResponse)
async def upsert_user_level(
    data: UserLevelRequest,
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create or replace a seller level."""
    level = await db.get(UserLevel, data.level_name)
    if level is None:
        level = UserLevel(level_name=data.level_name)
        db.add(level)
    for field, value in data.model_dump(exclude={"level_name"}).items():
        setattr(level, field, value)

    await record_audit(db, ctx.profile, "UPSERT_LEVEL", "UserLevel", data.level_name,
                       data.model_dump(mode="json"), ctx.ip_address)
    await db.commit()
    return MessageResponse(message=f"Level {data.level_name} saved")


# ── Stats ─────────────────────────────────────────────────────

@router.get("/stats", response_model=AdminStatsResponse)
async def get_stats(
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counters for the admin dashboard."""
    total_users = await db.scalar(select(func.count(Profile.id)))
    verified_users = await db.scalar(
        select(func.count(Profile.id)).where(Profile.is_verified == True)  # noqa: E712
    )
    suspended_users = await db.scalar(
        select(func.count(Profile.id)).where(Profile.status == ProfileStatus.SUSPENDED)
    )
    pending_ads = await db.scalar(
        select(func.count(Advertisement.id)).where(Advertisement.status == AdStatus.PENDING_APPROVAL)
    )
    approved_ads = await db.scalar(
        select(func.count(Advertisement.id)).where(Advertisement.status == AdStatus.APPROVED)
    )
    pending_reports = await db.scalar(
        select(func.count(Report.id)).where(Report.status == ReportStatus.PENDING)
    )
    pending_verifications = await db.scalar(
        select(func.count(VerificationRequest.id))
        .where(VerificationRequest.status == VerificationStatus.PENDING)
    )
    in_circulation = await db.scalar(select(func.sum(CreditBalance.balance)))
    spent_on_boosts = await db.scalar(
        select(func.sum(CreditTransaction.amount))
        .where(CreditTransaction.type == TransactionType.BOOST_AD)
    )

    return AdminStatsResponse(
        total_users=total_users or 0,
        verified_users=verified_users or 0,
        suspended_users=suspended_users or 0,
        pending_ads=pending_ads or 0,
        approved_ads=approved_ads or 0,
        pending_reports=pending_reports or 0,
        pending_verifications=pending_verifications or 0,
        credits_in_circulation=in_circulation or 0,
        credits_spent_on_boosts=-(spent_on_boosts or 0),
    )


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: str = Query(None, description="Filter by action type e.g. REJECT_AD"),
    entity_type: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    ctx: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, newest first."""
    query = (
        select(AdminAuditLog, Profile)
        .join(Profile, Profile.id == AdminAuditLog.admin_id)
        .order_by(AdminAuditLog.created_at.desc())
    )
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    return {
        "items": [
            {
                "id": str(log.id),
                "admin_name": admin.full_name,
                "admin_email": admin.email,
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "payload": log.payload,
                "ip_address": log.ip_address,
                "created_at": log.created_at.isoformat(),
            }
            for log, admin in result.all()
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }
