"""
Per-connection session state machine

A session is UNJOINED until a valid join, JOINED(room, peer) while bound,
and CLOSED after a leave or transport close. It only ever stores the room
and peer ids; the room itself is looked up again on every operation.
"""
import enum
import logging
from typing import Optional, Tuple

from . import router
from .connection import ConnectionHandle
from .messages import (
    Join,
    Leave,
    Message,
    Ping,
    ProtocolError,
    Relay,
    StatusUpdate,
    parse_message,
)
from .state import RelayError, RoomRegistry

logger = logging.getLogger("rendezvous")


class SessionState(enum.Enum):
    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"


class Session:
    def __init__(self, registry: RoomRegistry, connection: ConnectionHandle) -> None:
        self.registry = registry
        self.connection = connection
        self.state = SessionState.UNJOINED
        self.binding: Optional[Tuple[str, str]] = None
        self._transport_closed = False

    def __repr__(self) -> str:
        return f"<Session {self.connection.label} {self.state.value} {self.binding}>"

    # ------------------------------------------------------------
    # inbound
    # ------------------------------------------------------------

    async def handle_frame(self, raw: str) -> None:
        """Parse and dispatch one inbound text frame. Bad frames are dropped."""
        self.connection.mark_alive()
        try:
            message = parse_message(raw)
        except ProtocolError as e:
            logger.warning("Dropped frame from %s: %s", self.connection.label, e)
            return
        await self.dispatch(message)

    async def dispatch(self, message: Message) -> None:
        if self._transport_closed:
            return

        if isinstance(message, Join):
            await self.join(message)
        elif isinstance(message, Ping):
            pass
        elif self.state is not SessionState.JOINED:
            logger.debug(
                "Ignoring %s from %s: not joined", type(message).__name__, self.connection.label
            )
        elif isinstance(message, StatusUpdate):
            await self.update_status(message)
        elif isinstance(message, Relay):
            await self.relay(message)
        elif isinstance(message, Leave):
            await self.leave()

    # ------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------

    async def join(self, message: Join) -> None:
        if self.state is SessionState.JOINED:
            # room switch: the old binding goes away before the new one exists
            await self._leave_current()

        async with self.registry.locked(message.room):
            if self._transport_closed:
                # the transport went away while this join waited for the room
                return
            result = self.registry.join(
                message.room,
                message.id,
                message.name,
                message.role,
                message.status,
                self.connection,
            )
            self.binding = (message.room, message.id)
            self.state = SessionState.JOINED
            logger.info(
                "✅ %s (%s) joined %s [%s]",
                message.name, message.role.value, message.room, self.connection.label,
            )

            await router.send_to(result.member, router.roster_message(result.roster))
            await router.fan_out(result.others, router.user_joined_message(result.member))

    async def update_status(self, message: StatusUpdate) -> None:
        room_id, peer_id = self.binding
        async with self.registry.locked(room_id):
            notification = self.registry.update_status(
                room_id, peer_id, message.fields(), self.connection
            )
            if notification is None:
                logger.debug("Late status update from %s in %s", peer_id, room_id)
                return
            await router.fan_out(
                notification.recipients, router.status_message(notification.member)
            )

    async def relay(self, message: Relay) -> None:
        room_id, peer_id = self.binding
        async with self.registry.locked(room_id):
            if self.registry.bound_member(room_id, peer_id, self.connection) is None:
                # a later join took over this peer id, or the room is gone
                logger.info(
                    "Unbinding stale session %s from %s/%s", self.connection.label, room_id, peer_id
                )
                self.binding = None
                self.state = SessionState.UNJOINED
                return

            if message.target is None:
                recipients = self.registry.relay_broadcast(room_id, peer_id)
                await router.fan_out(recipients, message.body)
                return

            try:
                target = self.registry.relay_targeted(room_id, peer_id, message.target)
            except RelayError as e:
                logger.warning("Dropped %s from %s: %s", message.type, peer_id, e)
                return
            await router.send_to(target, message.body)

    async def leave(self) -> None:
        """Explicit leave. The session may join again afterwards."""
        await self._leave_current()
        self.state = SessionState.CLOSED

    async def close(self) -> None:
        """Transport went away. Idempotent."""
        if self._transport_closed:
            return
        self._transport_closed = True
        await self._leave_current()
        self.state = SessionState.CLOSED

    async def _leave_current(self) -> None:
        if self.binding is None:
            return
        room_id, peer_id = self.binding
        self.binding = None
        self.state = SessionState.UNJOINED

        async with self.registry.locked(room_id):
            result = self.registry.leave(room_id, peer_id, self.connection)
            if result is None or result.torn_down:
                return
            await router.fan_out(result.remaining, router.user_left_message(result.member))
