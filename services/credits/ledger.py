"""
services/credits/ledger.py
Credit ledger: per-user balance plus an append-only transaction log.

Invariants:
- balance == sum(transactions.amount) for every user
- balance never drops below zero

Both writes of a grant/spend go through the caller's session and are
committed (or rolled back) together. A spend is a single guarded UPDATE
(`... WHERE balance >= :amount`); the check and the decrement are never
separate statements.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    CreditBalance,
    CreditTransaction,
    TransactionType,
    utcnow,
)
from shared.utils.exceptions import InsufficientCredits, InvalidAmount, ValidationError

logger = logging.getLogger(__name__)

GRANT_TYPES = {
    TransactionType.PURCHASE,
    TransactionType.SIGNUP_BONUS,
    TransactionType.ADMIN_ADD,
    TransactionType.PROMO_BONUS,
}
SPEND_TYPES = {TransactionType.BOOST_AD}


def _check_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive integer, got {amount!r}")


def _check_type(tx_type, allowed: set) -> TransactionType:
    try:
        tx_type = TransactionType(tx_type)
    except ValueError:
        raise ValidationError(f"Unknown transaction type '{tx_type}'")
    if tx_type not in allowed:
        raise ValidationError(f"Transaction type '{tx_type.value}' is not allowed here")
    return tx_type


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    balance = await db.scalar(
        select(CreditBalance.balance).where(CreditBalance.user_id == user_id)
    )
    return balance or 0


async def open_account(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Create the zero balance row for a new profile."""
    db.add(CreditBalance(user_id=user_id, balance=0))
    await db.flush()


async def grant_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    tx_type: TransactionType,
    description: Optional[str] = None,
    related_ad_id: Optional[uuid.UUID] = None,
    payment_reference: Optional[str] = None,
) -> int:
    """Increase the balance and append a positive transaction. Returns the transaction id."""
    _check_amount(amount)
    tx_type = _check_type(tx_type, GRANT_TYPES)

    result = await db.execute(
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .values(balance=CreditBalance.balance + amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(CreditBalance(user_id=user_id, balance=amount))

    tx = CreditTransaction(
        user_id=user_id,
        amount=amount,
        type=tx_type,
        description=description,
        related_ad_id=related_ad_id,
        payment_reference=payment_reference,
    )
    db.add(tx)
    await db.flush()

    logger.info(f"Granted {amount} credits ({tx_type.value}) to user {user_id}, tx {tx.id}")
    return tx.id


async def spend_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    related_ad_id: Optional[uuid.UUID] = None,
    tx_type: TransactionType = TransactionType.BOOST_AD,
    description: Optional[str] = None,
) -> int:
    """
    Atomically debit `amount` and append a negative transaction.
    Raises InsufficientCredits (nothing mutated) when balance < amount.
    """
    _check_amount(amount)
    tx_type = _check_type(tx_type, SPEND_TYPES)

    result = await db.execute(
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id, CreditBalance.balance >= amount)
        .values(balance=CreditBalance.balance - amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        balance = await get_balance(db, user_id)
        raise InsufficientCredits(balance=balance, required=amount)

    tx = CreditTransaction(
        user_id=user_id,
        amount=-amount,
        type=tx_type,
        description=description,
        related_ad_id=related_ad_id,
    )
    db.add(tx)
    await db.flush()

    logger.info(f"User {user_id} spent {amount} credits ({tx_type.value}), tx {tx.id}")
    return tx.id


async def ledger_sum(db: AsyncSession, user_id: uuid.UUID) -> int:
    total = await db.scalar(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id
        )
    )
    return int(total or 0)


async def list_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[CreditTransaction], int]:
    query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars()), total or 0
