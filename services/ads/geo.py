"""
services/ads/geo.py
Redis GEO index of live ad locations, used by the nearby search.

The ads table stays authoritative. After every commit that can move an ad
in or out of approved, the caller re-syncs that ad: approved ads with
coordinates are (re)added, everything else is removed. Search hits are
re-checked against the table, so an entry left behind by a failed sync is
filtered out and, for ads that can never go live again, dropped.
"""

import logging
import uuid
from typing import Iterable, List, Tuple

from redis.exceptions import RedisError
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.models.models import AdStatus, Advertisement, utcnow
from shared.utils.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)

FINAL_STATES = {AdStatus.SOLD, AdStatus.REJECTED}


def is_indexable(ad: Advertisement) -> bool:
    return (
        AdStatus(ad.status) == AdStatus.APPROVED
        and ad.latitude is not None
        and ad.longitude is not None
    )


async def sync_ad_locations(ads: Iterable[Advertisement]) -> None:
    """Bring the index in line with the committed state of each ad (best effort)."""
    try:
        cache = RedisCache(get_redis())
    except RuntimeError:
        logger.warning("Redis not initialized, skipping ad location sync")
        return

    for ad in ads:
        try:
            if is_indexable(ad):
                await cache.add_ad_location(str(ad.id), ad.longitude, ad.latitude)
            else:
                await cache.remove_ad_location(str(ad.id))
        except RedisError as e:
            logger.warning(f"Ad {ad.id}: location index update failed: {e}")


async def sync_ad_location(ad: Advertisement) -> None:
    await sync_ad_locations([ad])


async def find_nearby(
    db: AsyncSession,
    lat: float,
    lng: float,
    radius_km: float,
    limit: int,
) -> List[Tuple[float, Advertisement]]:
    """Live ads within radius_km, nearest first, as (distance_km, ad) pairs."""
    cache = RedisCache(get_redis())
    try:
        hits = await cache.get_nearby_ads(lat, lng, radius_km, count=settings.NEARBY_ADS_SCAN_LIMIT)
    except RedisError as e:
        logger.error(f"Nearby search failed: {e}")
        raise TransientNetworkError("Location search is temporarily unavailable")
    if not hits:
        return []

    ids = []
    for hit in hits:
        try:
            ids.append(uuid.UUID(hit["ad_id"]))
        except ValueError:
            logger.warning(f"Ignoring malformed GEO member {hit['ad_id']!r}")

    now = utcnow()
    rows = (await db.execute(
        select(Advertisement).where(Advertisement.id.in_(ids))
    )).scalars().all()
    ads = {str(ad.id): ad for ad in rows}

    matches, dead = [], []
    for hit in hits:
        ad = ads.get(hit["ad_id"])
        if ad is None or AdStatus(ad.status) in FINAL_STATES:
            dead.append(hit["ad_id"])
            continue
        live = AdStatus(ad.status) == AdStatus.APPROVED and (
            ad.expires_at is None or ad.expires_at > now
        )
        if live:
            matches.append((hit["distance_km"], ad))

    if dead:
        try:
            await cache.remove_ad_location(*dead)
        except RedisError as e:
            logger.warning(f"Could not prune {len(dead)} stale ad locations: {e}")

    return matches[:limit]


async def rebuild_ad_index(db: AsyncSession) -> int:
    """Re-add every live ad with coordinates; run at startup to recover from a Redis flush."""
    ads = (await db.execute(
        select(Advertisement).where(
            Advertisement.status == AdStatus.APPROVED,
            Advertisement.latitude.is_not(None),
            Advertisement.longitude.is_not(None),
            or_(Advertisement.expires_at.is_(None), Advertisement.expires_at > utcnow()),
        )
    )).scalars().all()
    await sync_ad_locations(ads)
    return len(ads)
