"""
services/verification/router.py
Verified-seller badge requests. Documents are uploaded first to the private
verification-documents bucket, then referenced here by key.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.service import commit_and_publish, notify_admins
from services.storage.objects import claim_staged
from services.storage.vault import VERIFICATION_BUCKET
from shared.middleware.auth import AuthContext, get_auth_context
from shared.models.models import NotificationType, VerificationRequest, VerificationStatus
from shared.schemas.schemas import VerificationResponse, VerificationSubmitRequest
from shared.utils.exceptions import Conflict, NotFound, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification", tags=["Verification"])


@router.post("", response_model=VerificationResponse, status_code=status.HTTP_201_CREATED)
async def submit_verification(
    data: VerificationSubmitRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Submit an identity document and a selfie for admin review."""
    if ctx.profile.is_verified:
        raise Conflict("Your account is already verified")
    if data.document_key == data.selfie_key:
        raise ValidationError("Document and selfie must be different uploads")

    pending = await db.scalar(
        select(VerificationRequest.id).where(
            VerificationRequest.user_id == ctx.user_id,
            VerificationRequest.status == VerificationStatus.PENDING,
        )
    )
    if pending:
        raise Conflict("A verification request is already pending review")

    await claim_staged(db, ctx.user_id, VERIFICATION_BUCKET, [data.document_key, data.selfie_key])
    request = VerificationRequest(
        user_id=ctx.user_id,
        document_key=data.document_key,
        selfie_key=data.selfie_key,
        status=VerificationStatus.PENDING,
    )
    db.add(request)
    await db.flush()
    await db.refresh(request)

    await notify_admins(
        db,
        NotificationType.NEW_VERIFICATION_REQUEST,
        f"{ctx.profile.full_name} requested seller verification",
        "/admin/moderation",
    )
    await commit_and_publish(db)
    logger.info(f"Verification request {request.id} submitted by {ctx.user_id}")
    return VerificationResponse.model_validate(request)


@router.get("/me", response_model=VerificationResponse)
async def my_verification(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Latest request of the caller."""
    request = await db.scalar(
        select(VerificationRequest)
        .where(VerificationRequest.user_id == ctx.user_id)
        .order_by(VerificationRequest.created_at.desc())
        .limit(1)
    )
    if not request:
        raise NotFound("No verification request found")
    return VerificationResponse.model_validate(request)
