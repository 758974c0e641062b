"""
services/credits/pricing.py
Boost pricing: site-configurable base cost and duration, seller-level discount.
"""

import logging
import math
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Profile, SiteSetting, UserLevel

logger = logging.getLogger(__name__)

BOOST_PRICE_KEY = "boost_price"
BOOST_DURATION_KEY = "boost_duration_days"


def effective_boost_cost(base_cost: int, discount_percent) -> int:
    """max(0, floor(base - base * discount / 100)); discount is clamped to 0..100."""
    pct = min(max(Decimal(str(discount_percent or 0)), Decimal(0)), Decimal(100))
    cost = Decimal(base_cost) - Decimal(base_cost) * pct / Decimal(100)
    return max(0, math.floor(cost))


async def resolve_user_level(db: AsyncSession, profile: Profile) -> Optional[UserLevel]:
    """Highest-priority level whose thresholds the profile meets."""
    result = await db.execute(
        select(UserLevel)
        .where(
            UserLevel.min_transactions <= profile.transaction_count,
            UserLevel.min_avg_rating <= (profile.rating_avg or 0),
        )
        .order_by(UserLevel.priority.desc(), UserLevel.min_transactions.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def boost_discount_for(db: AsyncSession, profile: Profile) -> int:
    level = await resolve_user_level(db, profile)
    return level.boost_discount_percentage if level else 0


async def _int_setting(db: AsyncSession, key: str, default: int) -> int:
    raw = await db.scalar(select(SiteSetting.value).where(SiteSetting.key == key))
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Site setting {key}={raw!r} is not an integer, using {default}")
        return default
    if value < 0:
        logger.warning(f"Site setting {key}={value} is negative, using {default}")
        return default
    return value


async def get_boost_price(db: AsyncSession) -> int:
    return await _int_setting(db, BOOST_PRICE_KEY, settings.BOOST_BASE_COST)


async def get_boost_duration_days(db: AsyncSession) -> int:
    days = await _int_setting(db, BOOST_DURATION_KEY, settings.BOOST_DURATION_DAYS)
    return days or settings.BOOST_DURATION_DAYS
