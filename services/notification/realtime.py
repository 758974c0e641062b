"""
services/notification/realtime.py
WebSocket connection manager for realtime notifications.

One Redis pattern subscription (notifications:user:*) feeds every socket
held by this process. When Redis drops, the listener reconnects with
bounded exponential backoff and gives up after
REALTIME_MAX_RECONNECT_ATTEMPTS; clients then fall back to polling.
"""

import asyncio
import json
import logging
from typing import Dict, Optional, Set

from fastapi import WebSocket
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.redis_client import get_redis
from config.settings import settings

logger = logging.getLogger(__name__)

CHANNEL_PATTERN = "notifications:user:*"


class ConnectionManager:
    """Tracks sockets per user and relays published notifications to them."""

    def __init__(self, max_connections: int = settings.REALTIME_MAX_CONNECTIONS):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self._listener_task: Optional[asyncio.Task] = None
        self._running = False
        self._max_connections = max_connections

    async def connect(self, websocket: WebSocket, user_id: str) -> bool:
        """Accept and register a socket. Returns False if the process is at capacity."""
        if self.get_connection_count() >= self._max_connections:
            logger.warning(f"Connection limit reached ({self._max_connections}), rejecting connection")
            return False

        await websocket.accept()
        async with self._lock:
            self.active_connections.setdefault(user_id, set()).add(websocket)
        logger.info(f"User {user_id} subscribed. Total connections: {self.get_connection_count()}")
        return True

    async def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        async with self._lock:
            sockets = self.active_connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self.active_connections[user_id]
        logger.info(f"User {user_id} unsubscribed. Total connections: {self.get_connection_count()}")

    async def send_personal_message(self, message: dict, user_id: str) -> int:
        """Send to every socket of one user. Dead sockets are dropped. Returns deliveries."""
        connections = list(self.active_connections.get(user_id, ()))
        delivered = 0
        dead = []
        for websocket in connections:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping socket for user {user_id}: {e}")
                dead.append(websocket)

        for websocket in dead:
            await self.disconnect(websocket, user_id)
        return delivered

    def get_connection_count(self) -> int:
        return sum(len(conns) for conns in self.active_connections.values())

    # ── Redis listener lifecycle ──────────────────────────────

    async def start_listener(self) -> None:
        if self._running:
            return
        self._running = True
        self._listener_task = asyncio.create_task(self._listen_with_reconnect())
        logger.info("Realtime listener started")

    async def stop_listener(self) -> None:
        self._running = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        logger.info("Realtime listener stopped")

    async def _listen_with_reconnect(self) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.REALTIME_MAX_RECONNECT_ATTEMPTS),
            wait=wait_exponential(multiplier=1, min=1, max=settings.REALTIME_RECONNECT_MAX_WAIT_SECONDS),
            retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._listen()
        except RetryError:
            logger.error("Realtime listener gave up reconnecting; clients will poll")
        finally:
            self._running = False

    async def _listen(self) -> None:
        pubsub = get_redis().pubsub()
        await pubsub.psubscribe(CHANNEL_PATTERN)
        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "pmessage":
                    await self.dispatch(message["channel"], message["data"])
        finally:
            try:
                await pubsub.punsubscribe(CHANNEL_PATTERN)
                await pubsub.aclose()
            except Exception as e:
                logger.debug(f"Error closing pub/sub: {e}")

    async def dispatch(self, channel, data) -> int:
        """Route one published payload to the user encoded in the channel name."""
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        user_id = channel.rsplit(":", 1)[-1]
        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning(f"Discarding malformed realtime payload on {channel}")
            return 0
        return await self.send_personal_message(payload, user_id)


connection_manager = ConnectionManager()
