"""
tests/test_ads.py
Tests for advertisements: creation, owner transitions, edit with image swap,
boosts, renewals, visibility, views, nearby search and reports.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import AD_GEO_KEY
from services.ads.geo import rebuild_ad_index
from services.credits.ledger import get_balance, grant_credits
from services.storage.vault import AD_IMAGES_BUCKET
from shared.models.models import (
    AdStatus,
    Advertisement,
    CreditTransaction,
    Notification,
    Profile,
    StoredObject,
    StoredObjectStatus,
    TransactionType,
    UserLevel,
    utcnow,
)
from tests.conftest import auth_headers, make_ad, stage_objects


def ad_payload(image_keys, **overrides):
    payload = {
        "title": "Vintage road bike",
        "description": "Steel frame, new tyres",
        "price": "8999.00",
        "category_slug": "sports",
        "image_keys": image_keys,
        "latitude": 12.9716,
        "longitude": 77.5946,
    }
    payload.update(overrides)
    return payload


async def object_statuses(db: AsyncSession, keys) -> dict:
    rows = await db.execute(
        select(StoredObject.key, StoredObject.status).where(StoredObject.key.in_(keys))
    )
    return {key: StoredObjectStatus(status) for key, status in rows}


# ── Create / Edit ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_ad_requires_auth(client: AsyncClient):
    response = await client.post("/ads", json=ad_payload(["x.jpg"]))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_ad_enters_moderation(client: AsyncClient, user: Profile, db: AsyncSession):
    """New ads start pending_approval and claim their staged images."""
    keys = await stage_objects(db, user, AD_IMAGES_BUCKET, 2)

    response = await client.post("/ads", headers=auth_headers(user), json=ad_payload(keys))
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending_approval"
    assert data["image_keys"] == keys
    assert all(url.endswith(key) for url, key in zip(data["image_urls"], keys))

    statuses = await object_statuses(db, keys)
    assert set(statuses.values()) == {StoredObjectStatus.ATTACHED}


@pytest.mark.asyncio
async def test_create_ad_with_foreign_upload_fails(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    """An upload staged by someone else cannot be attached."""
    keys = await stage_objects(db, other_user, AD_IMAGES_BUCKET, 1)

    response = await client.post("/ads", headers=auth_headers(user), json=ad_payload(keys))
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"

    count = await db.scalar(select(Advertisement.id).where(Advertisement.user_id == user.id))
    assert count is None


@pytest.mark.asyncio
async def test_create_ad_rejects_duplicate_images(client: AsyncClient, user: Profile, db: AsyncSession):
    keys = await stage_objects(db, user, AD_IMAGES_BUCKET, 1)
    response = await client.post("/ads", headers=auth_headers(user), json=ad_payload(keys + keys))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_edit_swaps_images_and_keeps_status(
    client: AsyncClient, user: Profile, db: AsyncSession
):
    """Dropped images are orphaned, new ones attached, approved stays approved."""
    first = await stage_objects(db, user, AD_IMAGES_BUCKET, 2)
    created = await client.post("/ads", headers=auth_headers(user), json=ad_payload(first))
    ad_id = created.json()["id"]
    await db.execute(
        update(Advertisement)
        .where(Advertisement.user_id == user.id)
        .values(status=AdStatus.APPROVED)
    )
    await db.commit()

    added = await stage_objects(db, user, AD_IMAGES_BUCKET, 1)
    new_keys = [first[1]] + added
    response = await client.put(
        f"/ads/{ad_id}",
        headers=auth_headers(user),
        json=ad_payload(new_keys, title="Vintage road bike (price drop)", price="7999.00"),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "approved"
    assert data["title"] == "Vintage road bike (price drop)"
    assert data["image_keys"] == new_keys

    statuses = await object_statuses(db, first + added)
    assert statuses[first[0]] == StoredObjectStatus.ORPHANED
    assert statuses[first[1]] == StoredObjectStatus.ATTACHED
    assert statuses[added[0]] == StoredObjectStatus.ATTACHED


@pytest.mark.asyncio
async def test_edit_with_unknown_image_changes_nothing(
    client: AsyncClient, user: Profile, db: AsyncSession
):
    first = await stage_objects(db, user, AD_IMAGES_BUCKET, 1)
    created = await client.post("/ads", headers=auth_headers(user), json=ad_payload(first))
    ad_id = created.json()["id"]

    response = await client.put(
        f"/ads/{ad_id}",
        headers=auth_headers(user),
        json=ad_payload(["never-uploaded.jpg"], title="Changed"),
    )
    assert response.status_code == 422

    title = await db.scalar(select(Advertisement.title).where(Advertisement.user_id == user.id))
    assert title == "Vintage road bike"
    assert (await object_statuses(db, first))[first[0]] == StoredObjectStatus.ATTACHED


@pytest.mark.asyncio
async def test_edit_by_other_user_is_forbidden(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user)
    response = await client.put(
        f"/ads/{ad.id}", headers=auth_headers(other_user), json=ad_payload(ad.image_keys)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_sold_ad_cannot_be_edited(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, status=AdStatus.SOLD)
    response = await client.put(
        f"/ads/{ad.id}", headers=auth_headers(user), json=ad_payload(ad.image_keys)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_transition"


# ── Owner transitions ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_pause_relist_and_sell(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user)
    headers = auth_headers(user)

    paused = await client.post(f"/ads/{ad.id}/pause", headers=headers)
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"

    relisted = await client.post(f"/ads/{ad.id}/relist", headers=headers)
    assert relisted.json()["status"] == "approved"

    sold = await client.post(f"/ads/{ad.id}/sold", headers=headers)
    assert sold.json()["status"] == "sold"

    count = await db.scalar(select(Profile.transaction_count).where(Profile.id == user.id))
    assert count == 1

    again = await client.post(f"/ads/{ad.id}/relist", headers=headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_pending_ad_cannot_be_paused(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, status=AdStatus.PENDING_APPROVAL)
    response = await client.post(f"/ads/{ad.id}/pause", headers=auth_headers(user))
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_transition"


@pytest.mark.asyncio
async def test_only_owner_can_pause(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user)
    response = await client.post(f"/ads/{ad.id}/pause", headers=auth_headers(other_user))
    assert response.status_code == 403
    status = await db.scalar(select(Advertisement.status).where(Advertisement.id == ad.id))
    assert status == AdStatus.APPROVED


# ── Boost ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_boost_with_level_discount(client: AsyncClient, user: Profile, db: AsyncSession):
    """Balance 100, base cost 25, discount 20% -> pays 20, balance 80."""
    await grant_credits(db, user.id, 100, TransactionType.PURCHASE)
    db.add(UserLevel(level_name="Gold", min_transactions=0, boost_discount_percentage=20, priority=1))
    await db.commit()
    ad = await make_ad(db, user)

    response = await client.post(f"/ads/{ad.id}/boost", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["credits_spent"] == 20
    assert data["balance"] == 80
    assert data["ad"]["is_boosted"] is True

    tx = (await db.execute(
        select(CreditTransaction).where(
            CreditTransaction.user_id == user.id,
            CreditTransaction.type == TransactionType.BOOST_AD,
        )
    )).scalar_one()
    assert tx.amount == -20
    assert tx.related_ad_id == ad.id
    assert await get_balance(db, user.id) == 80

    boosted_until = await db.scalar(select(Advertisement.boosted_until).where(Advertisement.id == ad.id))
    assert boosted_until - utcnow() > timedelta(days=6, hours=23)


@pytest.mark.asyncio
async def test_boost_while_boosted_is_rejected(client: AsyncClient, user: Profile, db: AsyncSession):
    """An active boost is not stacked: no spend, boosted_until untouched."""
    await grant_credits(db, user.id, 100, TransactionType.PURCHASE)
    await db.commit()
    until = utcnow() + timedelta(days=2)
    ad = await make_ad(db, user, boosted_until=until)

    response = await client.post(f"/ads/{ad.id}/boost", headers=auth_headers(user))
    assert response.status_code == 409
    assert response.json()["code"] == "already_boosted"

    assert await get_balance(db, user.id) == 100
    stored = await db.scalar(select(Advertisement.boosted_until).where(Advertisement.id == ad.id))
    assert stored == until


@pytest.mark.asyncio
async def test_boost_after_previous_boost_expired(client: AsyncClient, user: Profile, db: AsyncSession):
    await grant_credits(db, user.id, 30, TransactionType.PURCHASE)
    await db.commit()
    ad = await make_ad(db, user)
    await db.execute(
        update(Advertisement)
        .where(Advertisement.id == ad.id)
        .values(boosted_until=ad.created_at)
    )
    await db.commit()

    response = await client.post(f"/ads/{ad.id}/boost", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["balance"] == 5


@pytest.mark.asyncio
async def test_boost_with_insufficient_credits(client: AsyncClient, user: Profile, db: AsyncSession):
    await grant_credits(db, user.id, 10, TransactionType.PURCHASE)
    await db.commit()
    ad = await make_ad(db, user)

    response = await client.post(f"/ads/{ad.id}/boost", headers=auth_headers(user))
    assert response.status_code == 402
    assert response.json()["code"] == "insufficient_credits"

    assert await get_balance(db, user.id) == 10
    stored = await db.scalar(select(Advertisement.boosted_until).where(Advertisement.id == ad.id))
    assert stored is None


@pytest.mark.asyncio
async def test_free_boost_writes_no_ledger_entry(client: AsyncClient, user: Profile, db: AsyncSession):
    db.add(UserLevel(level_name="Platinum", min_transactions=0, boost_discount_percentage=100, priority=5))
    await db.commit()
    ad = await make_ad(db, user)

    response = await client.post(f"/ads/{ad.id}/boost", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["credits_spent"] == 0

    tx = await db.scalar(select(CreditTransaction.id).where(CreditTransaction.user_id == user.id))
    assert tx is None


# ── Renewal ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_renewal_outside_window_is_rejected(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, expires_in=timedelta(days=10))
    before = ad.expires_at

    response = await client.post(f"/ads/{ad.id}/renew", headers=auth_headers(user))
    assert response.status_code == 409
    assert response.json()["code"] == "renewal_not_allowed"

    stored = await db.scalar(select(Advertisement.expires_at).where(Advertisement.id == ad.id))
    assert stored == before


@pytest.mark.asyncio
async def test_renewal_inside_window_extends_expiry(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, expires_in=timedelta(days=3))

    response = await client.post(f"/ads/{ad.id}/renew", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["last_renewed_at"] is not None

    stored = await db.scalar(select(Advertisement.expires_at).where(Advertisement.id == ad.id))
    assert abs(stored - (utcnow() + timedelta(days=30))) < timedelta(minutes=1)


@pytest.mark.asyncio
async def test_expired_ad_can_be_renewed(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, expires_in=timedelta(days=-2))
    response = await client.post(f"/ads/{ad.id}/renew", headers=auth_headers(user))
    assert response.status_code == 200


# ── Visibility & views ────────────────────────────────────────

@pytest.mark.asyncio
async def test_pending_ad_hidden_from_public(
    client: AsyncClient, user: Profile, other_user: Profile, admin_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user, status=AdStatus.PENDING_APPROVAL)

    assert (await client.get(f"/ads/{ad.id}")).status_code == 404
    assert (await client.get(f"/ads/{ad.id}", headers=auth_headers(other_user))).status_code == 404
    assert (await client.get(f"/ads/{ad.id}", headers=auth_headers(user))).status_code == 200
    assert (await client.get(f"/ads/{ad.id}", headers=auth_headers(admin_user))).status_code == 200


@pytest.mark.asyncio
async def test_view_counter(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user)
    pending = await make_ad(db, user, status=AdStatus.PENDING_APPROVAL)

    assert (await client.post(f"/ads/{ad.id}/view")).status_code == 204
    assert (await client.post(f"/ads/{ad.id}/view")).status_code == 204
    assert (await client.post(f"/ads/{pending.id}/view")).status_code == 404

    views = await db.scalar(select(Advertisement.view_count).where(Advertisement.id == ad.id))
    assert views == 2


@pytest.mark.asyncio
async def test_listing_shows_boosted_first_and_hides_expired(
    client: AsyncClient, user: Profile, db: AsyncSession
):
    boosted = await make_ad(db, user, title="Boosted sofa", boosted_until=utcnow() + timedelta(days=3))
    newest = await make_ad(db, user, title="Fresh table")
    await make_ad(db, user, title="Old lamp", expires_in=timedelta(days=-1))

    response = await client.get("/ads")
    assert response.status_code == 200
    ids = [item["id"] for item in response.json()["items"]]
    assert ids == [str(boosted.id), str(newest.id)]


@pytest.mark.asyncio
async def test_nearby_ads_sorted_by_distance(client: AsyncClient, user: Profile, db: AsyncSession):
    near = await make_ad(db, user, title="Near", latitude=12.9720, longitude=77.5950)
    farther = await make_ad(db, user, title="Farther", latitude=13.0300, longitude=77.6000)
    await make_ad(db, user, title="Chennai", latitude=13.0827, longitude=80.2707)

    response = await client.get("/ads/nearby", params={"lat": 12.9716, "lng": 77.5946, "radius_km": 20})
    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["id"] for item in items] == [str(near.id), str(farther.id)]
    assert items[0]["distance_km"] < 1
    assert 5 < items[1]["distance_km"] < 8


@pytest.mark.asyncio
async def test_nearby_radius_is_capped(client: AsyncClient):
    response = await client.get("/ads/nearby", params={"lat": 0, "lng": 0, "radius_km": 5000})
    assert response.status_code == 200
    assert response.json()["radius_km"] == 100.0


@pytest.mark.asyncio
async def test_nearby_across_the_date_line(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, title="Island kayak", latitude=0.0, longitude=179.95)

    response = await client.get("/ads/nearby", params={"lat": 0, "lng": -179.95, "radius_km": 20})
    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["id"] for item in items] == [str(ad.id)]
    assert 10 < items[0]["distance_km"] < 12


@pytest.mark.asyncio
async def test_nearby_follows_owner_transitions(
    client: AsyncClient, user: Profile, db: AsyncSession, redis
):
    ad = await make_ad(db, user, latitude=12.9720, longitude=77.5950)
    params = {"lat": 12.9716, "lng": 77.5946}

    assert (await client.post(f"/ads/{ad.id}/pause", headers=auth_headers(user))).status_code == 200
    assert await redis.zscore(AD_GEO_KEY, str(ad.id)) is None
    assert (await client.get("/ads/nearby", params=params)).json()["items"] == []

    assert (await client.post(f"/ads/{ad.id}/relist", headers=auth_headers(user))).status_code == 200
    items = (await client.get("/ads/nearby", params=params)).json()["items"]
    assert [item["id"] for item in items] == [str(ad.id)]

    assert (await client.post(f"/ads/{ad.id}/sold", headers=auth_headers(user))).status_code == 200
    assert await redis.zscore(AD_GEO_KEY, str(ad.id)) is None


@pytest.mark.asyncio
async def test_nearby_edit_moves_the_ad(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user, latitude=12.9720, longitude=77.5950)

    response = await client.put(
        f"/ads/{ad.id}",
        headers=auth_headers(user),
        json=ad_payload(ad.image_keys, latitude=13.0827, longitude=80.2707),
    )
    assert response.status_code == 200

    bangalore = await client.get("/ads/nearby", params={"lat": 12.9716, "lng": 77.5946})
    chennai = await client.get("/ads/nearby", params={"lat": 13.0827, "lng": 80.2707})
    assert bangalore.json()["items"] == []
    assert [item["id"] for item in chennai.json()["items"]] == [str(ad.id)]


@pytest.mark.asyncio
async def test_nearby_skips_stale_index_entries(
    client: AsyncClient, user: Profile, db: AsyncSession, redis
):
    expired = await make_ad(db, user, latitude=12.9720, longitude=77.5950, expires_in=timedelta(days=1))
    sold = await make_ad(db, user, latitude=12.9721, longitude=77.5951)
    # Rows change behind the index's back
    await db.execute(
        update(Advertisement)
        .where(Advertisement.id == expired.id)
        .values(expires_at=utcnow() - timedelta(hours=1))
    )
    await db.execute(
        update(Advertisement).where(Advertisement.id == sold.id).values(status=AdStatus.SOLD)
    )
    await db.commit()

    response = await client.get("/ads/nearby", params={"lat": 12.9716, "lng": 77.5946})
    assert response.json()["items"] == []
    # Sold ads never come back, so their entry is dropped; expired ones can be renewed
    assert await redis.zscore(AD_GEO_KEY, str(sold.id)) is None
    assert await redis.zscore(AD_GEO_KEY, str(expired.id)) is not None


@pytest.mark.asyncio
async def test_rebuild_ad_index(user: Profile, db: AsyncSession, redis):
    live = await make_ad(db, user, latitude=12.9720, longitude=77.5950)
    await make_ad(db, user, title="No location")
    await make_ad(db, user, status=AdStatus.PAUSED, latitude=12.9721, longitude=77.5951)
    await redis.flushall()

    assert await rebuild_ad_index(db) == 1
    assert await redis.zrange(AD_GEO_KEY, 0, -1) == [str(live.id)]


@pytest.mark.asyncio
async def test_nearby_rejects_polar_latitudes(client: AsyncClient):
    response = await client.get("/ads/nearby", params={"lat": 89.5, "lng": 0})
    assert response.status_code == 422


# ── Reports ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_report_notifies_admins(
    client: AsyncClient, user: Profile, other_user: Profile, admin_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user)

    response = await client.post(
        f"/ads/{ad.id}/reports",
        headers=auth_headers(other_user),
        json={"reason": "Looks like a scam listing"},
    )
    assert response.status_code == 201
    assert response.json()["status"] == "pending"

    types = (await db.execute(
        select(Notification.type).where(Notification.user_id == admin_user.id)
    )).scalars().all()
    assert types == ["new_report"]

    duplicate = await client.post(
        f"/ads/{ad.id}/reports",
        headers=auth_headers(other_user),
        json={"reason": "Reporting it again"},
    )
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_cannot_report_own_ad(client: AsyncClient, user: Profile, db: AsyncSession):
    ad = await make_ad(db, user)
    response = await client.post(
        f"/ads/{ad.id}/reports", headers=auth_headers(user), json={"reason": "Testing myself"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_report_reason_too_short(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user)
    response = await client.post(
        f"/ads/{ad.id}/reports", headers=auth_headers(other_user), json={"reason": "bad"}
    )
    assert response.status_code == 422
