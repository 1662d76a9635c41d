"""
Liveness monitor: periodic probes that reap silent connections
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from .connection import ConnectionHandle

logger = logging.getLogger("rendezvous")

TimeoutCallback = Callable[[], Awaitable[None]]


class LivenessMonitor:
    """Every period, close connections that missed the previous probe and probe the rest.

    A connection that stops answering is therefore gone after at most two
    periods. ``on_timeout`` runs before the handle is closed so the member is
    removed while the connection is still known.
    """

    def __init__(self, interval: float = 30.0) -> None:
        self.interval = interval
        self._tracked: Dict[ConnectionHandle, TimeoutCallback] = {}
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._tracked)

    def track(self, handle: ConnectionHandle, on_timeout: TimeoutCallback) -> None:
        handle.answered = True
        self._tracked[handle] = on_timeout

    def untrack(self, handle: ConnectionHandle) -> None:
        self._tracked.pop(handle, None)

    async def sweep(self) -> int:
        """Run one probe round; returns how many connections were reaped"""
        dead = []
        for handle, on_timeout in list(self._tracked.items()):
            if not handle.is_open:
                self.untrack(handle)
                continue

            if not handle.answered:
                logger.info("💀 %s missed its heartbeat, closing", handle.label)
                self.untrack(handle)
                try:
                    await on_timeout()
                except Exception:
                    logger.exception("Timeout handler for %s failed", handle.label)
                dead.append(handle)
                continue

            handle.answered = False
            await handle.ping()

        # close handshakes with dead peers wait for a timeout, run them together
        await asyncio.gather(*(h.close() for h in dead), return_exceptions=True)
        return len(dead)

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
