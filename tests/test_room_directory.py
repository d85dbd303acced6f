import pytest

from online import RoomDirectory
from conftest import next_message, wait_for_state


def card(code, **kw):
    base = {
        "code": code,
        "name": f"Room {code}",
        "visibility": "public",
        "isLocked": False,
        "hostName": "Ana",
        "playerCount": 1,
        "maxPlayers": 4,
        "rounds": 9,
        "betCoins": 0,
        "state": "waiting",
    }
    base.update(kw)
    return base


def test_snapshot_replaces_and_diffs_patch_in_order():
    d = RoomDirectory()
    d.apply_snapshot({"type": "room:list:snapshot", "rooms": [card("AAAA"), card("BBBB")]})
    assert [r.code for r in d.rooms] == ["AAAA", "BBBB"]

    d.apply_diff({"type": "room:list:diff", "added": [card("CCCC")]})
    d.apply_diff({"type": "room:list:diff", "updated": [card("AAAA", playerCount=3)]})
    d.apply_diff({"type": "room:list:diff", "removed": ["BBBB"]})
    assert [r.code for r in d.rooms] == ["AAAA", "CCCC"]
    assert d.get("AAAA").playerCount == 3

    d.apply_snapshot({"type": "room:list:snapshot", "rooms": [card("DDDD")]})
    assert [r.code for r in d.rooms] == ["DDDD"]


def test_diff_before_snapshot_is_dropped():
    d = RoomDirectory()
    d.apply_diff({"type": "room:list:diff", "added": [card("AAAA")]})
    assert not d.has_snapshot
    assert d.rooms == []
    d.apply_snapshot({"type": "room:list:snapshot", "rooms": []})
    d.apply_diff({"type": "room:list:diff", "added": [card("AAAA")]})
    assert [r.code for r in d.rooms] == ["AAAA"]


def test_duplicate_diffs_are_absorbed():
    d = RoomDirectory()
    d.apply_snapshot({"type": "room:list:snapshot", "rooms": []})
    diff = {"type": "room:list:diff", "added": [card("AAAA")]}
    d.apply_diff(diff)
    d.apply_diff(diff)
    d.apply_diff({"type": "room:list:diff", "removed": ["ZZZZ"]})
    assert [r.code for r in d.rooms] == ["AAAA"]


def test_invalid_cards_are_skipped(caplog):
    d = RoomDirectory()
    d.apply_snapshot({"type": "room:list:snapshot", "rooms": [card("AAAA"), {"name": "no code"}]})
    assert [r.code for r in d.rooms] == ["AAAA"]
    assert "Dropping invalid room card" in caplog.text


@pytest.mark.asyncio
async def test_subscription_over_the_connection(manager, server, sleeper):
    d = RoomDirectory(manager)
    await manager.connect("u")
    await d.subscribe()
    assert server.channel.messages[-1] == {"type": "room:list:subscribe"}
    server.channel.push({"type": "room:list:snapshot", "rooms": [card("AAAA")], "serverTs": 5})
    await next_message(manager, "room:list:snapshot")
    assert d.has_snapshot
    assert d.server_ts == 5

    # Reconnecting forgets the cache and queues a fresh subscription
    sleeper.hold()
    server.channel.drop()
    await wait_for_state(manager, "reconnecting")
    assert not d.has_snapshot
    resubscribe = d._resubscribe
    assert resubscribe is not None
    await resubscribe
    assert manager.queued == [{"type": "room:list:subscribe"}]

    sleeper.release()
    await wait_for_state(manager, "open")
    assert len(server.channels) == 2
    assert [m["type"] for m in server.channel.messages] == ["auth", "room:list:subscribe"]

    await d.unsubscribe()
    assert server.channel.messages[-1] == {"type": "room:list:unsubscribe"}
    server.channel.push({"type": "room:list:snapshot", "rooms": [card("BBBB")]})
    server.channel.push({"type": "session:pong"})
    await next_message(manager, "session:pong")
    assert d.rooms == []
    await manager.disconnect()
