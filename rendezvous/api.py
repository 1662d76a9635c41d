"""
HTTP and WebSocket handlers for the rendezvous server
"""
import hashlib
import json
import logging

from aiohttp import web

from .config import Config
from .connection import ConnectionHandle
from .liveness import LivenessMonitor
from .router import member_to_dict
from .session import Session
from .state import RoomRegistry

logger = logging.getLogger("rendezvous")

config_key = web.AppKey("config", Config)
registry_key = web.AppKey("registry", RoomRegistry)
monitor_key = web.AppKey("monitor", LivenessMonitor)

# ============================================================
# WEBSOCKET SIGNALING
# ============================================================

async def ws_signaling(request: web.Request) -> web.WebSocketResponse:
    """WebSocket endpoint: one session per connection"""
    # pings and pongs are handled here so the liveness monitor sees the pongs
    ws = web.WebSocketResponse(autoping=False)
    await ws.prepare(request)

    registry = request.app[registry_key]
    monitor = request.app[monitor_key]

    handle = ConnectionHandle(ws)
    session = Session(registry, handle)

    monitor.track(handle, session.close)
    logger.info("📡 WebSocket client connected: %s", handle.label)

    try:
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT:
                await session.handle_frame(msg.data)
            elif msg.type == web.WSMsgType.PING:
                handle.mark_alive()
                await ws.pong(msg.data)
            elif msg.type == web.WSMsgType.PONG:
                handle.mark_alive()
            elif msg.type == web.WSMsgType.BINARY:
                logger.warning("Dropped binary frame from %s", handle.label)
            elif msg.type == web.WSMsgType.ERROR:
                logger.debug("WebSocket error on %s: %s", handle.label, ws.exception())
    finally:
        monitor.untrack(handle)
        await session.close()
        logger.info("📡 WebSocket client disconnected: %s", handle.label)

    return ws

# ============================================================
# DIAGNOSTICS
# ============================================================

def get_rooms_data(registry: RoomRegistry) -> list:
    return [
        {
            "id": room.id,
            "member_count": len(room.members),
            "roster": [member_to_dict(m) for m in room.roster()],
        }
        for room in registry.snapshot()
    ]


async def api_rooms(request: web.Request) -> web.Response:
    """List active rooms with ETag caching"""
    items = get_rooms_data(request.app[registry_key])

    content = json.dumps(items, sort_keys=True)
    etag = hashlib.md5(content.encode()).hexdigest()

    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304)

    response = web.json_response({"ok": True, "rooms": items})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "no-cache"
    return response


async def api_health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})

# ============================================================
# LIFECYCLE
# ============================================================

async def start_background_tasks(app: web.Application) -> None:
    app[monitor_key].start()


async def stop_background_tasks(app: web.Application) -> None:
    await app[monitor_key].stop()
