"""
services/notification/router.py
In-app notifications: polling endpoints, read state, and the realtime
WebSocket (subscribe on connect, unsubscribe on disconnect).
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from jose import JWTError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, get_db
from config.redis_client import get_redis
from services.notification.realtime import connection_manager
from shared.middleware.auth import AuthContext, decode_token, get_auth_context
from shared.models.models import Notification, Profile, utcnow
from shared.schemas.schemas import MarkReadRequest, MessageResponse, NotificationResponse
from shared.utils.exceptions import NotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def count_unread(db: AsyncSession, user_id) -> int:
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return count or 0


# ── REST Endpoints ────────────────────────────────────────────

@router.get("")
async def get_my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Polling fallback: the caller's notifications, newest first."""
    query = select(Notification).where(Notification.user_id == ctx.user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Notification.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [NotificationResponse.model_validate(n) for n in result.scalars()],
        "total": total or 0,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-(total or 0) // page_size),
    }


@router.get("/unread-count")
async def unread_count(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"unread_count": await count_unread(db, ctx.user_id)}


@router.post("/read", response_model=MessageResponse)
async def mark_many_read(
    data: MarkReadRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Bulk mark: the unread items a notification panel just displayed."""
    result = await db.execute(
        update(Notification)
        .where(
            Notification.id.in_(data.ids),
            Notification.user_id == ctx.user_id,
            Notification.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return MessageResponse(message=f"{result.rowcount} notification(s) marked as read")


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.user_id == ctx.user_id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return MessageResponse(message="All notifications marked as read")


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Single mark, on click."""
    notification = await db.scalar(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == ctx.user_id,
        )
    )
    if not notification:
        raise NotFound("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await db.commit()
    return NotificationResponse.model_validate(notification)


# ── Realtime ──────────────────────────────────────────────────

@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str = Query(...)):
    """
    Realtime feed for the token's owner. Browsers cannot set headers on
    WebSocket upgrades, so the access token travels as ?token=.
    Sends {"event": "hello", "unread_count": n} on connect; replies "pong" to "ping".
    """
    try:
        token_data = await decode_token(token, get_redis())
    except (JWTError, RuntimeError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with AsyncSessionLocal() as db:
        profile = await db.get(Profile, UUID(token_data.user_id))
        if not profile or not profile.is_active:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        unread = await count_unread(db, profile.id)

    user_id = str(profile.id)
    if not await connection_manager.connect(websocket, user_id):
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    try:
        await websocket.send_json({"event": "hello", "unread_count": unread})
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await connection_manager.disconnect(websocket, user_id)
