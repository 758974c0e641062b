"""
services/review/router.py
Seller ratings and reviews.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.ads.lifecycle import ad_link, get_ad
from services.notification.service import commit_and_publish, notify
from shared.middleware.auth import AuthContext, get_auth_context
from shared.models.models import AdStatus, NotificationType, Profile, Review
from shared.schemas.schemas import ReviewCreateRequest, ReviewReplyRequest, ReviewResponse
from shared.utils.exceptions import Conflict, NotFound, PermissionDenied, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["Reviews"])


async def recompute_seller_rating(db: AsyncSession, seller_id: UUID) -> Decimal:
    """Denormalize the seller's average rating and review count onto the profile."""
    avg, count = (await db.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(Review.seller_id == seller_id)
    )).one()
    rating_avg = Decimal(str(avg or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    await db.execute(
        update(Profile)
        .where(Profile.id == seller_id)
        .values(rating_avg=rating_avg, rating_count=count)
        .execution_options(synchronize_session=False)
    )
    return rating_avg


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Review the seller of a sold ad.
    - One review per ad per reviewer (DB unique constraint is the real guard)
    - The ad must be sold; sellers cannot review themselves
    - The seller's rating_avg is recomputed in the same transaction
    """
    ad = await get_ad(db, data.ad_id)
    if ad.user_id == ctx.user_id:
        raise PermissionDenied("You cannot review your own ad")
    if ad.status != AdStatus.SOLD:
        raise ValidationError("Only sold ads can be reviewed")

    # Seller row lock: reviews of one seller recompute the average one at a time
    await db.execute(select(Profile.id).where(Profile.id == ad.user_id).with_for_update())

    existing = await db.scalar(
        select(Review.id).where(Review.ad_id == ad.id, Review.reviewer_id == ctx.user_id)
    )
    if existing:
        raise Conflict("You have already reviewed this ad")

    review = Review(
        ad_id=ad.id,
        reviewer_id=ctx.user_id,
        seller_id=ad.user_id,
        rating=data.rating,
        communication_rating=data.communication_rating,
        punctuality_rating=data.punctuality_rating,
        item_quality_rating=data.item_quality_rating,
        comment=(data.comment or "").strip() or None,
    )
    db.add(review)
    try:
        await db.flush()
    except IntegrityError:
        raise Conflict("You have already reviewed this ad")

    rating_avg = await recompute_seller_rating(db, ad.user_id)
    await notify(
        db,
        ad.user_id,
        NotificationType.NEW_REVIEW,
        f'{ctx.profile.full_name} rated you {data.rating}/5 for "{ad.title}".',
        ad_link(ad.id),
    )
    await commit_and_publish(db)
    logger.info(f"Review {review.id} on ad {ad.id}: seller {ad.user_id} now rated {rating_avg}")

    return ReviewResponse.model_validate(review).model_copy(
        update={"reviewer_name": ctx.profile.full_name}
    )


@router.put("/{review_id}/reply", response_model=ReviewResponse)
async def reply_to_review(
    review_id: UUID,
    data: ReviewReplyRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """The reviewed seller may answer a review once."""
    review = await db.get(Review, review_id)
    if not review:
        raise NotFound("Review not found")
    if review.seller_id != ctx.user_id:
        raise PermissionDenied("Only the reviewed seller can reply")

    result = await db.execute(
        update(Review)
        .where(Review.id == review.id, Review.reply_comment.is_(None))
        .values(reply_comment=data.reply)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict("This review already has a reply")

    await db.commit()
    await db.refresh(review)
    return ReviewResponse.model_validate(review)


@router.get("/seller/{seller_id}", response_model=list[ReviewResponse])
async def get_seller_reviews(
    seller_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public: reviews a seller has received, newest first."""
    result = await db.execute(
        select(Review, Profile.full_name)
        .join(Profile, Profile.id == Review.reviewer_id)
        .where(Review.seller_id == seller_id)
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [
        ReviewResponse.model_validate(review).model_copy(update={"reviewer_name": name})
        for review, name in result.all()
    ]
