import asyncio
import logging

import pytest

from engine import draw
from conftest import FakeServer, next_message, wait_for_state


@pytest.mark.asyncio
async def test_connect_sends_auth_and_records_handshake(manager, server):
    states = []
    manager.on_state(states.append)
    await manager.connect("user-1")
    ch = server.channel
    assert server.urls == ["ws://test/ws-rooms"]
    assert ch.messages[0] == {"type": "auth", "userId": "user-1"}
    assert manager.is_connected and not manager.is_ready

    ch.push({"type": "connected", "connectionId": "conn-9"})
    ch.push({"type": "authenticated"})
    await asyncio.wait_for(manager.wait_authenticated(), 1)
    assert manager.connection == {"id": "conn-9", "authenticated": True}
    assert manager.is_ready
    assert states == ["connecting", "open"]
    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_fails_a_pending_auth_wait(manager, server):
    await manager.connect("u")
    waiter = asyncio.ensure_future(manager.wait_authenticated())
    # Let the waiter reach its future
    await asyncio.sleep(0)
    await manager.disconnect()
    with pytest.raises(ConnectionError):
        await waiter
    assert not waiter.cancelled()


@pytest.mark.asyncio
async def test_concurrent_connects_share_one_attempt(manager, server):
    await asyncio.gather(manager.connect("u"), manager.connect("u"), manager.connect("u"))
    assert len(server.channels) == 1
    await manager.connect("u")
    assert len(server.channels) == 1
    await manager.disconnect()


@pytest.mark.asyncio
async def test_queued_messages_flush_in_order_after_auth(manager, server):
    await manager.join_room("ABCD")
    await manager.set_ready("ABCD", True)
    await manager.submit_move("ABCD", draw("pile"))
    assert [m["type"] for m in manager.queued] == ["room:join", "room:ready:set", "move:submit"]

    await manager.connect("u")
    sent = server.channel.messages
    assert [m["type"] for m in sent] == ["auth", "room:join", "room:ready:set", "move:submit"]
    assert sent[3]["move"] == {"kind": "draw", "source": "pile"}
    assert manager.queued == []

    await manager.create_room(name="Table", maxPlayers=4)
    assert server.channel.messages[-1] == {"type": "room:create", "name": "Table", "maxPlayers": 4}
    await manager.disconnect()


@pytest.mark.asyncio
async def test_backoff_is_linear_and_gives_up_after_five(make_manager, sleeper):
    server = FakeServer(failures=100)
    manager = make_manager(server)

    with pytest.raises(ConnectionRefusedError):
        await manager.connect("u")
    await wait_for_state(manager, "closed")
    assert sleeper.delays == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert len(server.urls) == 6

    # Only an explicit reconnect tries again
    server.failures = 0
    await manager.reconnect()
    assert manager.state == "open"
    assert manager.reconnect_attempts == 0
    await manager.disconnect()


@pytest.mark.asyncio
async def test_attempt_counter_resets_once_open(make_manager, sleeper):
    server = FakeServer(failures=2)
    manager = make_manager(server)

    with pytest.raises(ConnectionRefusedError):
        await manager.connect("u")
    await wait_for_state(manager, "open")
    assert manager.reconnect_attempts == 0
    assert sleeper.delays == [1.0, 2.0]
    await manager.disconnect()


@pytest.mark.asyncio
async def test_dropped_channel_reconnects_and_flushes_queue(manager, server, sleeper):
    states = []
    manager.on_state(states.append)
    await manager.connect("u")
    first = server.channel

    sleeper.hold()
    first.drop()
    await wait_for_state(manager, "reconnecting")
    await manager.leave_room("ABCD")
    assert manager.queued == [{"type": "room:leave", "code": "ABCD"}]
    sleeper.release()
    await wait_for_state(manager, "open")

    second = server.channel
    assert second is not first
    assert [m["type"] for m in second.messages] == ["auth", "room:leave"]
    assert sleeper.delays == [1.0]
    assert states == ["connecting", "open", "reconnecting", "open"]
    await manager.disconnect()


@pytest.mark.asyncio
async def test_listener_failure_does_not_stop_fan_out(manager, server, caplog):
    caplog.set_level(logging.ERROR, logger="online.connection")
    got = []

    def broken(message):
        raise RuntimeError("boom")

    manager.on("room:deleted", broken)
    manager.on("room:deleted", got.append)
    manager.on("room:deleted", got.append)
    await manager.connect("u")
    server.channel.push({"type": "room:deleted", "code": "ABCD"})
    await next_message(manager, "room:deleted")
    assert got == [{"type": "room:deleted", "code": "ABCD"}]
    assert "Error in listener for room:deleted" in caplog.text

    manager.off("room:deleted", got.append)
    server.channel.push({"type": "room:deleted", "code": "WXYZ"})
    server.channel.push({"type": "session:pong"})
    await next_message(manager, "session:pong")
    assert manager.last_pong is not None
    assert len(got) == 1
    await manager.disconnect()


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped(manager, server, caplog):
    caplog.set_level(logging.WARNING, logger="online.connection")
    await manager.connect("u")
    server.channel.push_raw("not json at all")
    server.channel.push_raw('{"no": "type"}')
    server.channel.push_raw("[1, 2, 3]")
    server.channel.push({"type": "error", "message": "Room is full"})
    got = await next_message(manager, "error")
    assert got == {"type": "error", "message": "Room is full"}
    assert manager.state == "open"
    assert caplog.text.count("Dropping malformed frame") == 3
    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_is_idempotent_and_suppresses_reconnect(manager, server, sleeper):
    got = []
    manager.on("room:deleted", got.append)
    await manager.connect("u")
    await manager.disconnect()
    await manager.disconnect()
    assert manager.state == "closed"
    assert server.channel.closed
    assert sleeper.delays == []
    assert len(server.channels) == 1

    # Listeners and queued traffic were discarded with the old channel
    await manager.send({"type": "room:leave", "code": "ABCD"})
    assert manager.queued == [{"type": "room:leave", "code": "ABCD"}]
    await manager.disconnect()
    assert manager.queued == []
    await manager.reconnect()
    server.channel.push({"type": "room:deleted", "code": "ABCD"})
    server.channel.push({"type": "session:pong"})
    await next_message(manager, "session:pong")
    assert got == []
    await manager.disconnect()


@pytest.mark.asyncio
async def test_heartbeat_pings_while_open(make_manager, server):
    manager = make_manager(server, ping_interval=0.01)
    await manager.connect("u")
    ping = await server.channel.wait_sent("session:ping")
    assert isinstance(ping["ts"], int)
    await manager.disconnect()


def test_backoff_delay_formula(manager):
    assert [manager.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 3.0, 4.0, 5.0]
