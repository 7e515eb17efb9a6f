import asyncio

import orjson
import pytest

from conftest import FakeConnection
from services.broadcast_hub import BroadcastHub, ConnectionClosed, QueuedConnection


class FakeWebSocket:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.sent = []
        self.closed = False

    async def send_text(self, text: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def hub():
    return BroadcastHub()


async def test_broadcast_reaches_only_the_target_user(hub):
    mine = [FakeConnection(), FakeConnection()]
    theirs = FakeConnection()
    for conn in mine:
        await hub.register("u1", conn)
    await hub.register("u2", theirs)

    delivered = await hub.broadcast_download_update("u1", {"hash": "a" * 40, "status": "paused"})

    assert delivered == 2
    assert theirs.frames == []
    frame = orjson.loads(mine[0].frames[0])
    assert frame["type"] == "download"
    assert frame["event"] == "download_status_update"
    assert frame["data"]["status"] == "paused"
    assert "timestamp" in frame


async def test_reregistering_moves_connection_to_new_user(hub):
    conn = FakeConnection()
    await hub.register("u1", conn)
    await hub.register("u2", conn)

    assert await hub.broadcast("u1", {"n": 1}) == 0
    assert conn.frames == []
    assert hub.connection_count("u1") == 0
    assert hub.stats()["users"] == 1

    assert await hub.broadcast("u2", {"n": 2}) == 1
    assert len(conn.frames) == 1

    await hub.unregister(conn)
    assert hub.connection_count() == 0


async def test_no_connections_means_zero_delivered(hub):
    assert await hub.broadcast("nobody", {"type": "x"}) == 0


async def test_failed_connection_is_pruned(hub):
    good = FakeConnection()
    bad = FakeConnection(fail=True)
    await hub.register("u1", good)
    await hub.register("u1", bad)

    assert await hub.broadcast("u1", {"n": 1}) == 1
    assert bad.closed is True
    assert hub.connection_count("u1") == 1

    assert await hub.broadcast("u1", {"n": 2}) == 1
    assert len(good.frames) == 2
    assert hub.stats()["send_failures"] == 1


async def test_unregister_unknown_connection_is_ignored(hub):
    await hub.unregister(FakeConnection())
    assert hub.connection_count() == 0


async def test_queued_connection_delivers_frames_in_order():
    ws = FakeWebSocket()
    conn = QueuedConnection(ws, "u1")
    conn.start()

    for i in range(3):
        await conn.send(f"frame-{i}")
    await asyncio.sleep(0.01)

    assert ws.sent == ["frame-0", "frame-1", "frame-2"]
    await conn.close()
    with pytest.raises(ConnectionClosed):
        await conn.send("late")


async def test_full_queue_drops_the_connection(hub):
    ws = FakeWebSocket()
    conn = QueuedConnection(ws, "u1", queue_size=2)
    await hub.register("u1", conn)

    # Pump not started, so nothing drains.
    assert await hub.broadcast("u1", {"n": 1}) == 1
    assert await hub.broadcast("u1", {"n": 2}) == 1
    assert await hub.broadcast("u1", {"n": 3}) == 0
    assert hub.connection_count("u1") == 0
    assert conn.closed is True


async def test_slow_client_does_not_stall_others(hub):
    slow_ws = FakeWebSocket(delay=10)
    slow = QueuedConnection(slow_ws, "u1", send_timeout=0.05)
    fast = FakeConnection()
    slow.start()
    await hub.register("u1", slow)
    await hub.register("u1", fast)

    delivered = await asyncio.wait_for(hub.broadcast("u1", {"n": 1}), timeout=1)

    assert delivered == 2
    assert len(fast.frames) == 1

    await asyncio.sleep(0.2)
    assert slow.closed is True
    assert slow_ws.closed is True
    assert await hub.broadcast("u1", {"n": 2}) == 1
    assert hub.connection_count("u1") == 1
    await slow.close()


async def test_system_broadcast_reaches_every_user(hub):
    a, b = FakeConnection(), FakeConnection()
    await hub.register("u1", a)
    await hub.register("u2", b)

    assert await hub.broadcast_system("maintenance", {"minutes": 5}) == 2
    assert orjson.loads(a.frames[0])["type"] == "system"


async def test_close_all(hub):
    conns = [FakeConnection() for _ in range(3)]
    for i, conn in enumerate(conns):
        await hub.register(f"u{i % 2}", conn)

    await hub.close_all()

    assert all(c.closed for c in conns)
    assert hub.connection_count() == 0
    assert hub.stats()["users"] == 0
