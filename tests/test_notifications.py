"""
tests/test_notifications.py
Tests for in-app notification management: listing, marking as read, unread count,
and publishing to the realtime channel after commit.
"""

import json
import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import database
from services.notification.service import (
    channel_for,
    commit_and_publish,
    notify,
    notify_admins,
)
from shared.models.models import Notification, NotificationType, Profile, utcnow
from tests.conftest import auth_headers


async def add_notifications(db: AsyncSession, profile: Profile, count: int, is_read: bool = False) -> list:
    now = utcnow()
    items = [
        Notification(
            id=uuid.uuid4(),
            user_id=profile.id,
            type=NotificationType.AD_APPROVED.value,
            message=f"Your ad #{i} is live.",
            link="/my-ads",
            is_read=is_read,
            created_at=now - timedelta(minutes=count - i),
        )
        for i in range(count)
    ]
    db.add_all(items)
    await db.commit()
    return items


async def read_flags(db: AsyncSession, ids) -> dict:
    rows = await db.execute(select(Notification.id, Notification.is_read).where(Notification.id.in_(ids)))
    return {row.id: row.is_read for row in rows}


@pytest.mark.asyncio
async def test_get_notifications_empty(client: AsyncClient, user: Profile):
    """User with no notifications gets empty list."""
    response = await client.get("/notifications", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["items"] == []
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_get_notifications_returns_own_newest_first(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    mine = await add_notifications(db, user, 3)
    await add_notifications(db, other_user, 2)

    response = await client.get("/notifications", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert [n["id"] for n in data["items"]] == [str(n.id) for n in reversed(mine)]


@pytest.mark.asyncio
async def test_unread_only_filter_and_count(client: AsyncClient, user: Profile, db: AsyncSession):
    await add_notifications(db, user, 3)
    await add_notifications(db, user, 2, is_read=True)

    count = await client.get("/notifications/unread-count", headers=auth_headers(user))
    assert count.json()["unread_count"] == 3

    unread = await client.get("/notifications", params={"unread_only": True}, headers=auth_headers(user))
    assert unread.json()["total"] == 3
    assert all(not n["is_read"] for n in unread.json()["items"])


@pytest.mark.asyncio
async def test_mark_single_read(client: AsyncClient, user: Profile, db: AsyncSession):
    [notification] = await add_notifications(db, user, 1)

    response = await client.post(f"/notifications/{notification.id}/read", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert response.json()["read_at"] is not None


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    [notification] = await add_notifications(db, other_user, 1)

    response = await client.post(f"/notifications/{notification.id}/read", headers=auth_headers(user))
    assert response.status_code == 404
    assert (await read_flags(db, [notification.id]))[notification.id] is False


@pytest.mark.asyncio
async def test_bulk_mark_read_only_touches_own(
    client: AsyncClient, user: Profile, other_user: Profile, db: AsyncSession
):
    mine = await add_notifications(db, user, 3)
    theirs = await add_notifications(db, other_user, 1)

    response = await client.post(
        "/notifications/read",
        headers=auth_headers(user),
        json={"ids": [str(mine[0].id), str(mine[1].id), str(theirs[0].id)]},
    )
    assert response.status_code == 200
    assert response.json()["message"].startswith("2 ")

    flags = await read_flags(db, [n.id for n in mine + theirs])
    assert flags[mine[0].id] and flags[mine[1].id]
    assert not flags[mine[2].id]
    assert not flags[theirs[0].id]


@pytest.mark.asyncio
async def test_mark_all_read(client: AsyncClient, user: Profile, db: AsyncSession):
    await add_notifications(db, user, 4)

    response = await client.post("/notifications/read-all", headers=auth_headers(user))
    assert response.status_code == 200

    count = await client.get("/notifications/unread-count", headers=auth_headers(user))
    assert count.json()["unread_count"] == 0


@pytest.mark.asyncio
async def test_notifications_require_auth(client: AsyncClient):
    assert (await client.get("/notifications")).status_code == 401


# ── Delivery ──────────────────────────────────────────────────

async def next_message(pubsub) -> dict:
    for _ in range(10):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message:
            return message
    raise AssertionError("nothing was published")


@pytest.mark.asyncio
async def test_commit_and_publish_pushes_to_owner_channel(db: AsyncSession, user: Profile, redis):
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_for(user.id))

    notification = await notify(db, user.id, NotificationType.AD_APPROVED, "Your ad is live.", "/ads/1")
    await commit_and_publish(db)

    message = await next_message(pubsub)
    payload = json.loads(message["data"])
    assert payload["event"] == "notification"
    assert payload["id"] == str(notification.id)
    assert payload["type"] == "ad_approved"
    assert payload["link"] == "/ads/1"
    await pubsub.aclose()


@pytest.mark.asyncio
async def test_failed_request_drops_queued_notifications(
    db: AsyncSession, user: Profile, redis, session_factory, monkeypatch
):
    """A handler error rolls back through get_db; nothing queued before it is published."""
    monkeypatch.setattr(database, "AsyncSessionLocal", session_factory)
    user_id = user.id
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_for(user_id))

    sessions = database.get_db()
    session = await sessions.__anext__()
    await notify(session, user_id, NotificationType.AD_REJECTED, "Rejected.")
    with pytest.raises(RuntimeError):
        await sessions.athrow(RuntimeError("handler failed"))
    await commit_and_publish(session)

    assert await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1) is None
    assert await db.scalar(select(Notification.id).where(Notification.user_id == user_id)) is None
    await pubsub.aclose()


@pytest.mark.asyncio
async def test_notify_admins_skips_regular_users(
    db: AsyncSession, user: Profile, admin_user: Profile
):
    created = await notify_admins(db, NotificationType.NEW_REPORT, "New report on an ad.")
    await db.commit()

    assert [n.user_id for n in created] == [admin_user.id]
