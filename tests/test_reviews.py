"""
tests/test_reviews.py
Seller reviews: who may review, one review per sold ad, rating aggregation
and its effect on seller levels.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.credits.ledger import grant_credits
from shared.models.models import AdStatus, Notification, Profile, TransactionType, UserLevel
from tests.conftest import auth_headers, make_ad, make_profile


def review_payload(ad_id, rating=5, **extra):
    return {"ad_id": str(ad_id), "rating": rating, **extra}


async def seller_rating(db: AsyncSession, seller_id):
    row = (await db.execute(
        select(Profile.rating_avg, Profile.rating_count).where(Profile.id == seller_id)
    )).one()
    return Decimal(str(row.rating_avg)), row.rating_count


@pytest.mark.asyncio
async def test_review_updates_seller_rating(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user, status=AdStatus.SOLD)

    response = await client.post(
        "/reviews",
        headers=auth_headers(other_user),
        json=review_payload(ad.id, 4, communication_rating=5, comment="  Smooth handover  "),
    )
    assert response.status_code == 201
    data = response.json()
    assert data["seller_id"] == str(user.id)
    assert data["reviewer_name"] == "Ravi Buyer"
    assert data["comment"] == "Smooth handover"

    assert await seller_rating(db, user.id) == (Decimal("4.00"), 1)
    types = (await db.execute(
        select(Notification.type).where(Notification.user_id == user.id)
    )).scalars().all()
    assert types == ["new_review"]


@pytest.mark.asyncio
async def test_rating_is_the_average_of_all_reviews(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    third = await make_profile(db, "third@example.com", "Meera Buyer")
    first_ad = await make_ad(db, user, status=AdStatus.SOLD, title="Desk")
    second_ad = await make_ad(db, user, status=AdStatus.SOLD, title="Chair")

    for reviewer, ad, rating in ((other_user, first_ad, 5), (third, second_ad, 4), (third, first_ad, 4)):
        response = await client.post(
            "/reviews", headers=auth_headers(reviewer), json=review_payload(ad.id, rating)
        )
        assert response.status_code == 201

    assert await seller_rating(db, user.id) == (Decimal("4.33"), 3)

    listed = await client.get(f"/reviews/seller/{user.id}")
    assert listed.status_code == 200
    assert len(listed.json()) == 3
    assert {item["reviewer_name"] for item in listed.json()} == {"Ravi Buyer", "Meera Buyer"}


@pytest.mark.asyncio
async def test_one_review_per_sold_ad(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user, status=AdStatus.SOLD)
    headers = auth_headers(other_user)

    assert (await client.post("/reviews", headers=headers, json=review_payload(ad.id, 5))).status_code == 201
    again = await client.post("/reviews", headers=headers, json=review_payload(ad.id, 1))
    assert again.status_code == 409
    assert await seller_rating(db, user.id) == (Decimal("5.00"), 1)


@pytest.mark.asyncio
async def test_review_rules(client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession):
    live = await make_ad(db, user)
    sold = await make_ad(db, user, status=AdStatus.SOLD)

    not_sold = await client.post("/reviews", headers=auth_headers(other_user), json=review_payload(live.id))
    assert not_sold.status_code == 422
    assert not_sold.json()["code"] == "validation_error"

    own = await client.post("/reviews", headers=auth_headers(user), json=review_payload(sold.id))
    assert own.status_code == 403

    out_of_range = await client.post(
        "/reviews", headers=auth_headers(other_user), json=review_payload(sold.id, 6)
    )
    assert out_of_range.status_code == 422

    assert await seller_rating(db, user.id) == (Decimal("0.00"), 0)


@pytest.mark.asyncio
async def test_seller_replies_once(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    ad = await make_ad(db, user, status=AdStatus.SOLD)
    created = await client.post("/reviews", headers=auth_headers(other_user), json=review_payload(ad.id))
    review_id = created.json()["id"]

    stranger = await client.put(
        f"/reviews/{review_id}/reply", headers=auth_headers(other_user), json={"reply": "Thanks!"}
    )
    assert stranger.status_code == 403

    reply = await client.put(
        f"/reviews/{review_id}/reply", headers=auth_headers(user), json={"reply": "Thanks!"}
    )
    assert reply.status_code == 200
    assert reply.json()["reply_comment"] == "Thanks!"

    second = await client.put(
        f"/reviews/{review_id}/reply", headers=auth_headers(user), json={"reply": "Edited"}
    )
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_good_rating_unlocks_level_discount(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    """A level gated on a 4.0 average only applies once the seller has earned it."""
    await grant_credits(db, user.id, 100, TransactionType.PURCHASE)
    db.add(UserLevel(
        level_name="Trusted", min_transactions=0, min_avg_rating=Decimal("4.0"),
        boost_discount_percentage=20, priority=1,
    ))
    await db.commit()
    first = await make_ad(db, user, title="Bookshelf")
    second = await make_ad(db, user, title="Lamp")
    sold = await make_ad(db, user, status=AdStatus.SOLD, title="Sofa")

    before = await client.post(f"/ads/{first.id}/boost", headers=auth_headers(user))
    assert before.json()["credits_spent"] == 25
    assert (await client.get(f"/users/{user.id}")).json()["level"] is None

    review = await client.post("/reviews", headers=auth_headers(other_user), json=review_payload(sold.id, 5))
    assert review.status_code == 201

    after = await client.post(f"/ads/{second.id}/boost", headers=auth_headers(user))
    assert after.json()["credits_spent"] == 20
    assert after.json()["balance"] == 55

    profile = (await client.get(f"/users/{user.id}")).json()
    assert profile["level"] == "Trusted"
    assert Decimal(str(profile["rating_avg"])) == Decimal("5.00")
    assert profile["rating_count"] == 1
