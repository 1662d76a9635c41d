"""
In-memory room registry

The registry is the only shared mutable state in the server. Its methods
mutate membership and return what has to be delivered; they never talk to
the transport themselves. Callers wrap a mutation and its deliveries in
``locked(room_id)`` so that every member observes one total order of
joins, updates and leaves per room.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, Mapping, Optional

from .messages import Role, Status

if TYPE_CHECKING:
    from .connection import ConnectionHandle

logger = logging.getLogger("rendezvous")

_STATUS_FIELDS = ("is_mic_enabled", "is_broadcasting")


# ============================================================
# ERRORS
# ============================================================

class RelayError(Exception):
    """A targeted relay could not be delivered; the message is dropped"""

    def __init__(self, room_id: str, peer_id: str) -> None:
        super().__init__(room_id, peer_id)
        self.room_id = room_id
        self.peer_id = peer_id


class NoSuchRoom(RelayError):
    def __str__(self) -> str:
        return f"no such room {self.room_id!r}"


class NoSuchTarget(RelayError):
    def __str__(self) -> str:
        return f"no peer {self.peer_id!r} in room {self.room_id!r}"


class TargetUnreachable(RelayError):
    def __str__(self) -> str:
        return f"peer {self.peer_id!r} in room {self.room_id!r} is not connected"


# ============================================================
# DATA
# ============================================================

@dataclass(eq=False)
class Member:
    id: str
    name: str
    role: Role
    connection: "ConnectionHandle"
    is_mic_enabled: bool = False
    is_broadcasting: bool = False


@dataclass(eq=False)
class Room:
    id: str
    # dicts keep insertion order, which is the roster order
    members: Dict[str, Member] = field(default_factory=dict)

    def roster(self) -> List[Member]:
        return list(self.members.values())

    def others(self, peer_id: str) -> List[Member]:
        return [m for pid, m in self.members.items() if pid != peer_id]


@dataclass
class MembershipResult:
    member: Member
    roster: List[Member]
    others: List[Member]
    replaced: bool = False


@dataclass
class StatusNotification:
    member: Member
    recipients: List[Member]


@dataclass
class LeaveResult:
    member: Member
    remaining: List[Member]
    torn_down: bool = False


class _RoomLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


# ============================================================
# REGISTRY
# ============================================================

class RoomRegistry:
    """Room id -> Room. Rooms appear on first join and vanish on last leave."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        self._locks: Dict[str, _RoomLock] = {}

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def snapshot(self) -> List[Room]:
        return list(self._rooms.values())

    @asynccontextmanager
    async def locked(self, room_id: str) -> AsyncIterator[None]:
        """Per-room critical section. Rooms never block one another."""
        entry = self._locks.get(room_id)
        if entry is None:
            entry = self._locks[room_id] = _RoomLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(room_id) is entry:
                del self._locks[room_id]

    def join(
        self,
        room_id: str,
        peer_id: str,
        name: str,
        role: Role,
        status: Status,
        connection: "ConnectionHandle",
    ) -> MembershipResult:
        room = self._rooms.get(room_id)
        if room is None:
            room = self._rooms[room_id] = Room(room_id)
            logger.info("🎪 Room created: %s", room_id)

        replaced = peer_id in room.members
        if replaced:
            # last join wins: refresh in place, roster position is kept
            member = room.members[peer_id]
            member.name = name
            member.role = role
            member.connection = connection
            member.is_mic_enabled = status.is_mic_enabled
            member.is_broadcasting = status.is_broadcasting
            logger.info("♻️ %s replaced existing peer %s in %s", name, peer_id, room_id)
        else:
            member = Member(
                id=peer_id,
                name=name,
                role=role,
                connection=connection,
                is_mic_enabled=status.is_mic_enabled,
                is_broadcasting=status.is_broadcasting,
            )
            room.members[peer_id] = member

        return MembershipResult(
            member=member,
            roster=room.roster(),
            others=room.others(peer_id),
            replaced=replaced,
        )

    def bound_member(
        self, room_id: str, peer_id: str, connection: Optional["ConnectionHandle"]
    ) -> Optional[Member]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        member = room.members.get(peer_id)
        if member is None:
            return None
        if connection is not None and member.connection is not connection:
            return None
        return member

    def update_status(
        self,
        room_id: str,
        peer_id: str,
        fields: Mapping[str, bool],
        connection: Optional["ConnectionHandle"] = None,
    ) -> Optional[StatusNotification]:
        member = self.bound_member(room_id, peer_id, connection)
        if member is None:
            return None
        for key, value in fields.items():
            if key not in _STATUS_FIELDS:
                raise KeyError(key)
            setattr(member, key, bool(value))
        return StatusNotification(
            member=member, recipients=self._rooms[room_id].others(peer_id)
        )

    def leave(
        self,
        room_id: str,
        peer_id: str,
        connection: Optional["ConnectionHandle"] = None,
    ) -> Optional[LeaveResult]:
        member = self.bound_member(room_id, peer_id, connection)
        if member is None:
            return None

        room = self._rooms[room_id]
        del room.members[peer_id]
        logger.info("👋 %s left %s", member.name, room_id)

        if not room.members:
            del self._rooms[room_id]
            logger.info("🛑 Room closed: %s", room_id)
            return LeaveResult(member=member, remaining=[], torn_down=True)

        return LeaveResult(member=member, remaining=room.roster())

    def relay_targeted(self, room_id: str, sender_id: str, target_id: str) -> Member:
        """Resolve the recipient of a targeted relay or raise a RelayError"""
        room = self._rooms.get(room_id)
        if room is None:
            raise NoSuchRoom(room_id, target_id)
        target = room.members.get(target_id)
        if target is None:
            raise NoSuchTarget(room_id, target_id)
        if not target.connection.is_open:
            raise TargetUnreachable(room_id, target_id)
        return target

    def relay_broadcast(self, room_id: str, sender_id: str) -> List[Member]:
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return room.others(sender_id)
