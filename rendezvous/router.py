"""
Message routing helpers: payload builders and fan-out
"""
import json
import logging
from typing import Any, Dict, Iterable, List

from .state import Member

logger = logging.getLogger("rendezvous")


# ============================================================
# PAYLOADS
# ============================================================

def member_to_dict(member: Member) -> Dict[str, Any]:
    return {
        "id": member.id,
        "name": member.name,
        "role": member.role.value,
        "isMicEnabled": member.is_mic_enabled,
        "isBroadcasting": member.is_broadcasting,
    }


def roster_message(members: Iterable[Member]) -> Dict[str, Any]:
    return {"type": "roster-update", "roster": [member_to_dict(m) for m in members]}


def user_joined_message(member: Member) -> Dict[str, Any]:
    return {"type": "user-joined", **member_to_dict(member)}


def user_left_message(member: Member) -> Dict[str, Any]:
    return {"type": "user-left", "id": member.id, "name": member.name}


def status_message(member: Member) -> Dict[str, Any]:
    return {
        "type": "status-update",
        "id": member.id,
        "isMicEnabled": member.is_mic_enabled,
        "isBroadcasting": member.is_broadcasting,
    }


def encode(payload: Dict[str, Any]) -> str:
    return json.dumps(payload)


# ============================================================
# DELIVERY
# ============================================================

async def send_to(member: Member, payload: Dict[str, Any]) -> bool:
    ok = await member.connection.send(encode(payload))
    if not ok:
        logger.debug("Dropped %s for unreachable peer %s", payload.get("type"), member.id)
    return ok


async def fan_out(members: List[Member], payload: Dict[str, Any]) -> int:
    """Deliver one payload to each member in order; returns the delivered count.

    A failed send only affects its own recipient.
    """
    if not members:
        return 0

    message = encode(payload)
    delivered = 0
    for member in members:
        if await member.connection.send(message):
            delivered += 1
        else:
            logger.debug("Dropped %s for unreachable peer %s", payload.get("type"), member.id)
    return delivered
