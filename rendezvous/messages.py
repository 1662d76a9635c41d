"""
Inbound protocol messages

Every text frame carries one JSON object with a ``type`` field. Frames are
parsed into one of the message classes below; anything else raises
ProtocolError.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

RELAY_TYPES = frozenset({"offer", "answer", "candidate"})


class ProtocolError(ValueError):
    """Malformed frame, unknown type or missing required field"""


class Role(str, Enum):
    BROADCASTER = "broadcaster"
    LISTENER = "listener"
    RECEIVER = "receiver"


@dataclass(frozen=True)
class Status:
    is_mic_enabled: bool = False
    is_broadcasting: bool = False


@dataclass(frozen=True)
class Join:
    room: str
    id: str
    name: str = "Anonymous"
    role: Role = Role.LISTENER
    status: Status = field(default_factory=Status)


@dataclass(frozen=True)
class StatusUpdate:
    # None means "leave this flag unchanged"
    is_mic_enabled: Optional[bool] = None
    is_broadcasting: Optional[bool] = None

    def fields(self) -> Dict[str, bool]:
        out = {}
        if self.is_mic_enabled is not None:
            out["is_mic_enabled"] = self.is_mic_enabled
        if self.is_broadcasting is not None:
            out["is_broadcasting"] = self.is_broadcasting
        return out


@dataclass(frozen=True)
class Relay:
    type: str
    target: Optional[str]
    body: Dict[str, Any]


@dataclass(frozen=True)
class Leave:
    pass


@dataclass(frozen=True)
class Ping:
    pass


Message = Union[Join, StatusUpdate, Relay, Leave, Ping]


def _required_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{key}' must be a non-empty string")
    return value


def _optional_bool(data: Dict[str, Any], key: str) -> Optional[bool]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ProtocolError(f"'{key}' must be a boolean")
    return value


def _parse_join(data: Dict[str, Any]) -> Join:
    name = data.get("name")
    if name is None or name == "":
        name = "Anonymous"
    elif not isinstance(name, str):
        raise ProtocolError("'name' must be a string")

    role = data.get("role") or Role.LISTENER.value
    try:
        role = Role(role)
    except ValueError:
        raise ProtocolError(f"unknown role {role!r}") from None

    return Join(
        room=_required_str(data, "room"),
        id=_required_str(data, "id"),
        name=name,
        role=role,
        status=Status(
            is_mic_enabled=bool(_optional_bool(data, "isMicEnabled")),
            is_broadcasting=bool(_optional_bool(data, "isBroadcasting")),
        ),
    )


def _parse_relay(kind: str, data: Dict[str, Any]) -> Relay:
    target = data.get("target")
    if target is None:
        target = data.get("targetId")
    if target is not None and not isinstance(target, str):
        raise ProtocolError("'target' must be a string")
    return Relay(type=kind, target=target or None, body=data)


def parse_message(raw: Union[str, bytes]) -> Message:
    """Parse one text frame into a Message, raising ProtocolError on bad input"""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid JSON: {e}") from None

    if not isinstance(data, dict):
        raise ProtocolError("frame is not a JSON object")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise ProtocolError("missing 'type'")

    if kind == "join":
        return _parse_join(data)
    if kind == "status-update":
        return StatusUpdate(
            is_mic_enabled=_optional_bool(data, "isMicEnabled"),
            is_broadcasting=_optional_bool(data, "isBroadcasting"),
        )
    if kind in RELAY_TYPES:
        return _parse_relay(kind, data)
    if kind == "leave":
        return Leave()
    if kind == "ping":
        return Ping()

    raise ProtocolError(f"unknown message type {kind!r}")
