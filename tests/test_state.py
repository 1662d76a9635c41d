import asyncio
import random

import pytest

from rendezvous.messages import Role, Status
from rendezvous.state import (
    NoSuchRoom,
    NoSuchTarget,
    RelayError,
    RoomRegistry,
    TargetUnreachable,
)


def _join(registry, room, peer, conn, role=Role.LISTENER, name=None, status=None):
    return registry.join(room, peer, name or peer, role, status or Status(), conn)


def test_first_join_creates_room_and_returns_roster(make_conn) -> None:
    registry = RoomRegistry()
    result = _join(registry, "r1", "a1", make_conn("a"), Role.BROADCASTER, "Alice")

    assert "r1" in registry
    assert [m.id for m in result.roster] == ["a1"]
    assert result.others == []
    assert result.replaced is False
    assert result.member.role is Role.BROADCASTER


def test_second_join_reports_others_in_order(make_conn) -> None:
    registry = RoomRegistry()
    a, b, c = make_conn("a"), make_conn("b"), make_conn("c")
    _join(registry, "r1", "a1", a)
    _join(registry, "r1", "b1", b)
    result = _join(registry, "r1", "c1", c)

    assert [m.id for m in result.roster] == ["a1", "b1", "c1"]
    assert [m.id for m in result.others] == ["a1", "b1"]


def test_rejoin_with_same_id_overwrites(make_conn) -> None:
    registry = RoomRegistry()
    old, new, other = make_conn("old"), make_conn("new"), make_conn("other")
    _join(registry, "r1", "a1", old, name="Alice")
    _join(registry, "r1", "b1", other)

    result = _join(
        registry, "r1", "a1", new, Role.BROADCASTER, "Alice2", Status(is_mic_enabled=True)
    )

    assert result.replaced is True
    assert [m.id for m in result.roster] == ["a1", "b1"]
    assert [m.id for m in result.others] == ["b1"]
    member = registry.get("r1").members["a1"]
    assert member.connection is new
    assert member.name == "Alice2"
    assert member.is_mic_enabled is True
    assert len(registry.get("r1").members) == 2


def test_leave_from_overwritten_connection_is_ignored(make_conn) -> None:
    registry = RoomRegistry()
    old, new = make_conn("old"), make_conn("new")
    _join(registry, "r1", "a1", old)
    _join(registry, "r1", "a1", new)

    assert registry.leave("r1", "a1", old) is None
    assert registry.update_status("r1", "a1", {"is_mic_enabled": True}, old) is None
    assert registry.get("r1").members["a1"].connection is new


def test_leave_last_member_tears_down_room(make_conn) -> None:
    registry = RoomRegistry()
    a, b = make_conn("a"), make_conn("b")
    _join(registry, "r1", "a1", a)
    _join(registry, "r1", "b1", b)

    result = registry.leave("r1", "b1", b)
    assert result.torn_down is False
    assert [m.id for m in result.remaining] == ["a1"]
    assert "r1" in registry

    result = registry.leave("r1", "a1", a)
    assert result.torn_down is True
    assert result.remaining == []
    assert "r1" not in registry
    assert len(registry) == 0


def test_leave_unknown_is_none(make_conn) -> None:
    registry = RoomRegistry()
    assert registry.leave("nope", "a1") is None
    _join(registry, "r1", "a1", make_conn())
    assert registry.leave("r1", "zz") is None


def test_update_status_mutates_member(make_conn) -> None:
    registry = RoomRegistry()
    _join(registry, "r1", "a1", make_conn("a"))
    _join(registry, "r1", "b1", make_conn("b"))

    note = registry.update_status("r1", "a1", {"is_broadcasting": True})
    assert note.member.is_broadcasting is True
    assert note.member.is_mic_enabled is False
    assert [m.id for m in note.recipients] == ["b1"]


def test_update_status_after_disconnect_is_silent(make_conn) -> None:
    registry = RoomRegistry()
    conn = make_conn()
    _join(registry, "r1", "a1", conn)
    registry.leave("r1", "a1", conn)

    assert registry.update_status("r1", "a1", {"is_mic_enabled": True}) is None


def test_relay_targeted_errors_are_distinct(make_conn) -> None:
    registry = RoomRegistry()
    a, b = make_conn("a"), make_conn("b")
    _join(registry, "r1", "a1", a)
    _join(registry, "r1", "b1", b)

    with pytest.raises(NoSuchRoom):
        registry.relay_targeted("r2", "a1", "b1")
    with pytest.raises(NoSuchTarget):
        registry.relay_targeted("r1", "a1", "zz")

    b.open = False
    with pytest.raises(TargetUnreachable):
        registry.relay_targeted("r1", "a1", "b1")

    b.open = True
    assert registry.relay_targeted("r1", "a1", "b1").connection is b


def test_relay_errors_share_a_base(make_conn) -> None:
    registry = RoomRegistry()
    with pytest.raises(RelayError):
        registry.relay_targeted("r1", "a1", "b1")


def test_relay_broadcast_excludes_sender(make_conn) -> None:
    registry = RoomRegistry()
    for peer in ("a1", "b1", "c1", "d1"):
        _join(registry, "r1", peer, make_conn(peer))

    assert [m.id for m in registry.relay_broadcast("r1", "b1")] == ["a1", "c1", "d1"]
    assert registry.relay_broadcast("missing", "b1") == []


@pytest.mark.parametrize("seed", range(20))
def test_random_join_leave_keeps_roster_exact(make_conn, seed: int) -> None:
    rng = random.Random(seed)
    registry = RoomRegistry()
    expected = {"r1": [], "r2": []}
    conns = {}

    for _ in range(200):
        room = rng.choice(["r1", "r2"])
        peer = rng.choice(["p%d" % i for i in range(8)])
        if rng.random() < 0.55:
            conn = conns[(room, peer)] = make_conn(peer)
            result = _join(registry, room, peer, conn)
            if peer not in expected[room]:
                expected[room].append(peer)
            assert [m.id for m in result.roster] == expected[room]
        else:
            registry.leave(room, peer, conns.get((room, peer)))
            if peer in expected[room]:
                expected[room].remove(peer)

        for rid, peers in expected.items():
            # a room exists exactly when it has members
            assert (rid in registry) == bool(peers)
            if peers:
                assert [m.id for m in registry.get(rid).roster()] == peers


def test_room_locks_are_released_and_independent(make_conn) -> None:
    registry = RoomRegistry()
    order = []

    async def hold(room, tag, gate):
        async with registry.locked(room):
            order.append(tag + "-in")
            await gate.wait()
            order.append(tag + "-out")

    async def scenario():
        gate1, gate2 = asyncio.Event(), asyncio.Event()
        t1 = asyncio.create_task(hold("r1", "a", gate1))
        t2 = asyncio.create_task(hold("r1", "b", gate2))
        t3 = asyncio.create_task(hold("r2", "c", gate2))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        # r2 is not blocked by r1, second r1 holder waits
        assert "c-in" in order
        assert "b-in" not in order
        gate2.set()
        gate1.set()
        await asyncio.gather(t1, t2, t3)

    asyncio.run(scenario())
    assert order.index("a-out") < order.index("b-in")
    assert registry._locks == {}
