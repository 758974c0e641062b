"""
services/credits/purchases.py
Credit purchases and promo codes.

An order is paid at most once: fulfilment is a compare-and-swap on
status = pending, so the checkout callback and the gateway webhook can both
arrive without granting the credits twice.
"""

import logging
import math
import uuid
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.credits.ledger import grant_credits
from services.notification.service import notify
from shared.models.models import (
    CreditOrder,
    NotificationType,
    OrderStatus,
    PromoCode,
    PromoCodeType,
    PromoCodeUse,
    TransactionType,
    utcnow,
)
from shared.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

MIN_ORDER_PAISE = 100


# ── Promo Codes ───────────────────────────────────────────────

async def get_valid_promo(db: AsyncSession, code: str, user_id: uuid.UUID) -> PromoCode:
    """Active, unexpired, not exhausted and not yet used by this user."""
    promo = await db.scalar(select(PromoCode).where(PromoCode.code == code.strip().upper()))
    if not promo or not promo.is_active:
        raise ValidationError("Invalid promo code")
    if promo.expires_at is not None and promo.expires_at <= utcnow():
        raise ValidationError("This promo code has expired")
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        raise ValidationError("This promo code has reached its usage limit")

    used = await db.scalar(
        select(PromoCodeUse.id).where(
            PromoCodeUse.promo_code_id == promo.id,
            PromoCodeUse.user_id == user_id,
        )
    )
    if used:
        raise ValidationError("You have already used this promo code")
    return promo


async def consume_promo(db: AsyncSession, promo: PromoCode, user_id: uuid.UUID) -> bool:
    """
    Count one use. The max_uses guard is part of the UPDATE. Returns False when exhausted.
    Runs in a savepoint: a second redemption by the same user (uq_promo_code_use)
    undoes only its own counter bump and raises ValidationError.
    """
    code = promo.code
    try:
        async with db.begin_nested():
            result = await db.execute(
                update(PromoCode)
                .where(
                    PromoCode.id == promo.id,
                    or_(PromoCode.max_uses.is_(None), PromoCode.current_uses < PromoCode.max_uses),
                )
                .values(current_uses=PromoCode.current_uses + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            db.add(PromoCodeUse(promo_code_id=promo.id, user_id=user_id))
            await db.flush()
    except IntegrityError:
        logger.info(f"Concurrent redemption of promo {code} by {user_id} refused")
        raise ValidationError("You have already used this promo code")
    return True


async def redeem_promo(db: AsyncSession, code: str, user_id: uuid.UUID) -> int:
    """Redeem a credit_bonus code. Returns the credits granted."""
    promo = await get_valid_promo(db, code, user_id)
    if promo.type != PromoCodeType.CREDIT_BONUS:
        raise ValidationError("This code gives a discount and is applied at checkout")

    if not await consume_promo(db, promo, user_id):
        raise ValidationError("This promo code has reached its usage limit")
    await grant_credits(
        db, user_id, promo.value, TransactionType.PROMO_BONUS,
        description=f"Promo code {promo.code}",
    )
    await notify(
        db, user_id, NotificationType.CREDITS_ADDED,
        f"Promo code {promo.code} added {promo.value} credits to your account.",
        "/credits",
    )
    return promo.value


def discounted_price(price_in_paise: int, percent: int) -> int:
    percent = min(max(percent, 0), 100)
    return max(MIN_ORDER_PAISE, math.floor(price_in_paise * (100 - percent) / 100))


# ── Orders ────────────────────────────────────────────────────

async def get_order_by_gateway_id(db: AsyncSession, gateway_order_id: str) -> Optional[CreditOrder]:
    return await db.scalar(
        select(CreditOrder).where(CreditOrder.gateway_order_id == gateway_order_id)
    )


async def fulfil_order(db: AsyncSession, order: CreditOrder, payment_id: Optional[str]) -> bool:
    """Mark the order paid and grant its credits. Returns False if it was already settled."""
    result = await db.execute(
        update(CreditOrder)
        .where(CreditOrder.id == order.id, CreditOrder.status == OrderStatus.PENDING)
        .values(
            status=OrderStatus.PAID,
            gateway_payment_id=payment_id,
            paid_at=utcnow(),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.refresh(order)
        logger.info(f"Order {order.id} already {OrderStatus(order.status).value}, not granting again")
        return False

    await grant_credits(
        db, order.user_id, order.credits, TransactionType.PURCHASE,
        description=f"Purchased {order.credits} credits",
        payment_reference=payment_id,
    )
    if order.promo_code_id:
        promo = await db.get(PromoCode, order.promo_code_id)
        already_used = await db.scalar(
            select(PromoCodeUse.id).where(
                PromoCodeUse.promo_code_id == order.promo_code_id,
                PromoCodeUse.user_id == order.user_id,
            )
        )
        # the payment already went through, so an exhausted or reused code is only logged
        if promo and not already_used:
            try:
                if not await consume_promo(db, promo, order.user_id):
                    logger.warning(f"Promo {promo.code} exhausted before order {order.id} was paid")
            except ValidationError:
                logger.warning(f"Promo {promo.code} was redeemed twice by {order.user_id} (order {order.id})")

    await notify(
        db, order.user_id, NotificationType.CREDITS_ADDED,
        f"Payment received: {order.credits} credits were added to your account.",
        "/credits",
    )
    await db.refresh(order)
    logger.info(f"Order {order.id} paid ({payment_id}), granted {order.credits} credits")
    return True


async def fail_order(db: AsyncSession, order: CreditOrder, reason: Optional[str]) -> bool:
    result = await db.execute(
        update(CreditOrder)
        .where(CreditOrder.id == order.id, CreditOrder.status == OrderStatus.PENDING)
        .values(status=OrderStatus.FAILED, failure_reason=(reason or "")[:255] or None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.refresh(order)
    return result.rowcount == 1
