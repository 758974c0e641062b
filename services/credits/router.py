"""
services/credits/router.py
Credit balance, history, packages, Razorpay checkout and promo codes.
"""

import json
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.credits import gateway
from services.credits.ledger import get_balance, list_transactions
from services.credits.purchases import (
    discounted_price,
    fail_order,
    fulfil_order,
    get_order_by_gateway_id,
    get_valid_promo,
    redeem_promo,
)
from services.notification.service import commit_and_publish
from shared.middleware.auth import AuthContext, get_auth_context
from shared.models.models import CreditOrder, CreditPackage, OrderStatus, PromoCodeType
from shared.schemas.schemas import (
    BalanceResponse,
    CreditOrderRequest,
    CreditOrderResponse,
    CreditOrderStatusResponse,
    CreditOrderVerifyRequest,
    CreditPackageResponse,
    CreditTransactionResponse,
    PromoRedeemRequest,
    PromoRedeemResponse,
)
from shared.utils.exceptions import Conflict, NotFound, ValidationError
from shared.utils.security import verify_razorpay_signature, verify_razorpay_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["Credits"])


# ── Balance & History ─────────────────────────────────────────

@router.get("/balance", response_model=BalanceResponse)
async def my_balance(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return BalanceResponse(balance=await get_balance(db, ctx.user_id))


@router.get("/transactions")
async def my_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Ledger entries of the caller, newest first."""
    items, total = await list_transactions(db, ctx.user_id, page, page_size)
    return {
        "items": [CreditTransactionResponse.model_validate(tx) for tx in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.get("/packages", response_model=List[CreditPackageResponse])
async def list_packages(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(CreditPackage)
        .where(CreditPackage.is_active == True)  # noqa: E712
        .order_by(CreditPackage.credits.asc())
    )
    return [CreditPackageResponse.model_validate(p) for p in result.scalars()]


# ── Checkout ──────────────────────────────────────────────────

@router.post("/orders", response_model=CreditOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_credit_order(
    data: CreditOrderRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a Razorpay order for a credit package.
    Client uses razorpay_order_id + razorpay_key_id to open checkout.
    A discount promo code lowers the price; the code is consumed on payment.
    """
    package = await db.get(CreditPackage, data.package_id)
    if not package or not package.is_active:
        raise NotFound("Credit package not found")

    amount = package.price_in_paise
    promo = None
    if data.promo_code:
        promo = await get_valid_promo(db, data.promo_code, ctx.user_id)
        if promo.type != PromoCodeType.DISCOUNT_CREDITS:
            raise ValidationError("This code adds credits directly; redeem it instead")
        amount = discounted_price(amount, promo.value)

    rzp_order = await gateway.create_order(
        amount,
        receipt=f"credits-{package.id}",
        notes={"user_id": str(ctx.user_id), "package_id": str(package.id)},
    )

    order = CreditOrder(
        user_id=ctx.user_id,
        package_id=package.id,
        promo_code_id=promo.id if promo else None,
        credits=package.credits,
        amount_paise=amount,
        gateway_order_id=rzp_order["id"],
        status=OrderStatus.PENDING,
    )
    db.add(order)
    await db.commit()
    logger.info(f"Credit order {order.id} created for {ctx.user_id}: {amount} paise")

    return CreditOrderResponse(
        order_id=order.id,
        razorpay_order_id=order.gateway_order_id,
        razorpay_key_id=settings.RAZORPAY_KEY_ID,
        amount=amount,
        currency=settings.PAYMENT_CURRENCY,
        credits=order.credits,
    )


@router.post("/orders/verify", response_model=CreditOrderStatusResponse)
async def verify_credit_order(
    data: CreditOrderVerifyRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Verify the checkout signature and grant the package's credits (once)."""
    if not verify_razorpay_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    order = await get_order_by_gateway_id(db, data.razorpay_order_id)
    if not order or order.user_id != ctx.user_id:
        raise NotFound("Order not found")
    if order.status == OrderStatus.FAILED:
        raise Conflict("This order has failed; start a new purchase")

    await fulfil_order(db, order, data.razorpay_payment_id)
    await commit_and_publish(db)

    return CreditOrderStatusResponse(
        order_id=order.id,
        status=OrderStatus(order.status).value,
        credits=order.credits,
        balance=await get_balance(db, ctx.user_id),
    )


@router.post("/webhook", include_in_schema=False)
async def razorpay_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Razorpay webhook handler. Validates HMAC signature.
    Handles: payment.captured, payment.failed. Safe to receive more than once.
    """
    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not verify_razorpay_webhook_signature(body, signature):
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    payload = json.loads(body)
    event = payload.get("event")
    entity = payload.get("payload", {}).get("payment", {}).get("entity", {})

    rzp_order_id = entity.get("order_id")
    if not rzp_order_id:
        return {"status": "ignored"}

    order = await get_order_by_gateway_id(db, rzp_order_id)
    if not order:
        return {"status": "not_found"}

    if event == "payment.captured":
        await fulfil_order(db, order, entity.get("id"))
    elif event == "payment.failed":
        await fail_order(db, order, entity.get("error_description"))
    else:
        return {"status": "ignored"}

    await commit_and_publish(db)
    return {"status": "ok"}


# ── Promo Codes ───────────────────────────────────────────────

@router.post("/promo-codes/redeem", response_model=PromoRedeemResponse)
async def redeem_promo_code(
    data: PromoRedeemRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    granted = await redeem_promo(db, data.code, ctx.user_id)
    await commit_and_publish(db)
    return PromoRedeemResponse(
        status="redeemed",
        message=f"{granted} credits added to your account",
        credits_granted=granted,
        balance=await get_balance(db, ctx.user_id),
    )
