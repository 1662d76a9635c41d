"""
Connection handle around an aiohttp WebSocket
"""
import asyncio
import logging
from typing import Optional

from aiohttp import ClientError, web

from .utils import generate_connection_label

logger = logging.getLogger("rendezvous")

# a peer that cannot take a frame within this many seconds is skipped
SEND_TIMEOUT = 5.0


class ConnectionHandle:
    """One client connection: send text, probe liveness, close."""

    def __init__(
        self,
        ws: web.WebSocketResponse,
        label: Optional[str] = None,
        send_timeout: float = SEND_TIMEOUT,
    ) -> None:
        self.ws = ws
        self.label = label or generate_connection_label()
        self.send_timeout = send_timeout
        self.answered = True

    def __repr__(self) -> str:
        return f"<ConnectionHandle {self.label}>"

    @property
    def is_open(self) -> bool:
        return not self.ws.closed

    def mark_alive(self) -> None:
        """Called on a pong or any inbound frame"""
        self.answered = True

    async def send(self, text: str) -> bool:
        """Send one text frame. Returns False instead of raising on failure."""
        if not self.is_open:
            return False
        try:
            await asyncio.wait_for(self.ws.send_str(text), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send to %s timed out after %ss", self.label, self.send_timeout)
            return False
        except (ConnectionError, RuntimeError, ClientError) as e:
            logger.debug("Send to %s failed: %s", self.label, e)
            return False
        return True

    async def ping(self) -> bool:
        if not self.is_open:
            return False
        try:
            await asyncio.wait_for(self.ws.ping(), self.send_timeout)
        except asyncio.TimeoutError:
            logger.debug("Ping to %s timed out", self.label)
            return False
        except (ConnectionError, RuntimeError, ClientError) as e:
            logger.debug("Ping to %s failed: %s", self.label, e)
            return False
        return True

    async def close(self) -> None:
        if self.is_open:
            await self.ws.close()
