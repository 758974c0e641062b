"""
config/redis_client.py
Async Redis client for caching, JWT deny-list, rate limiting,
the ad GEO index, and pub/sub (realtime notification fan-out).
"""

import json
from typing import Any, Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None

AD_GEO_KEY = "ads_geo"


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis caching patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Geo Index ─────────────────────────────────────────────
    async def add_ad_location(self, ad_id: str, lng: float, lat: float) -> None:
        """Add or move a live ad in the GEO index used for nearby searches."""
        await self.client.geoadd(AD_GEO_KEY, [lng, lat, ad_id])

    async def remove_ad_location(self, *ad_ids: str) -> None:
        if ad_ids:
            await self.client.zrem(AD_GEO_KEY, *ad_ids)

    async def get_nearby_ads(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        count: int = 50,
    ) -> list[dict]:
        """Ad IDs within radius_km of the given coordinates, nearest first."""
        results = await self.client.geosearch(
            AD_GEO_KEY,
            longitude=lng,
            latitude=lat,
            radius=radius_km,
            unit="km",
            withdist=True,
            count=count,
            sort="ASC",
        )
        return [{"ad_id": r[0], "distance_km": float(r[1])} for r in results]

    # ── Pub/Sub ───────────────────────────────────────────────
    async def publish_json(self, channel: str, payload: dict) -> int:
        """Publish a JSON payload. Returns the number of receiving subscribers."""
        return await self.client.publish(channel, json.dumps(payload, default=str))

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        current_count = await self.client.incr(key)
        if current_count == 1:
            await self.client.expire(key, window_seconds)
        return current_count <= limit
