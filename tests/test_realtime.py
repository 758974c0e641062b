"""
tests/test_realtime.py
WebSocket connection manager: per-user fan-out and dead socket cleanup.
"""

import json

import pytest

from services.notification.realtime import ConnectionManager


class FakeSocket:
    def __init__(self, broken: bool = False):
        self.accepted = False
        self.sent = []
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.mark.asyncio
async def test_dispatch_reaches_every_socket_of_the_user():
    manager = ConnectionManager()
    phone, laptop, stranger = FakeSocket(), FakeSocket(), FakeSocket()
    await manager.connect(phone, "user-1")
    await manager.connect(laptop, "user-1")
    await manager.connect(stranger, "user-2")

    payload = {"event": "notification", "type": "ad_approved"}
    delivered = await manager.dispatch("notifications:user:user-1", json.dumps(payload))

    assert delivered == 2
    assert phone.sent == [payload] and laptop.sent == [payload]
    assert stranger.sent == []
    assert phone.accepted


@pytest.mark.asyncio
async def test_dispatch_accepts_bytes():
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect(socket, "abc")

    delivered = await manager.dispatch(b"notifications:user:abc", b'{"event": "notification"}')
    assert delivered == 1


@pytest.mark.asyncio
async def test_dead_socket_is_dropped():
    manager = ConnectionManager()
    alive, dead = FakeSocket(), FakeSocket(broken=True)
    await manager.connect(alive, "user-1")
    await manager.connect(dead, "user-1")

    assert await manager.send_personal_message({"event": "notification"}, "user-1") == 1
    assert manager.get_connection_count() == 1

    await manager.disconnect(alive, "user-1")
    assert manager.active_connections == {}


@pytest.mark.asyncio
async def test_malformed_payload_is_discarded():
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect(socket, "user-1")

    assert await manager.dispatch("notifications:user:user-1", "not json") == 0
    assert socket.sent == []


@pytest.mark.asyncio
async def test_connection_limit():
    manager = ConnectionManager(max_connections=1)
    first, second = FakeSocket(), FakeSocket()

    assert await manager.connect(first, "user-1") is True
    assert await manager.connect(second, "user-2") is False
    assert second.accepted is False
