#!/usr/bin/env python3
"""
Rendezvous - signaling and room relay server for WebRTC audio rooms
"""
import argparse
import logging
import sys
from typing import List, Optional

from aiohttp import web

from rendezvous.api import (
    api_health, api_rooms, ws_signaling,
    config_key, registry_key, monitor_key,
    start_background_tasks, stop_background_tasks,
)
from rendezvous.config import Config
from rendezvous.liveness import LivenessMonitor
from rendezvous.state import RoomRegistry

logger = logging.getLogger("rendezvous")


def create_app(config: Optional[Config] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    config = config or Config.from_env()

    app = web.Application()
    app[config_key] = config
    app[registry_key] = RoomRegistry()
    app[monitor_key] = LivenessMonitor(config.heartbeat_interval)

    app.router.add_get("/ws", ws_signaling)
    app.router.add_get("/rooms", api_rooms)
    app.router.add_get("/health", api_health)

    app.on_startup.append(start_background_tasks)
    app.on_cleanup.append(stop_background_tasks)
    return app


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rendezvous signaling server")
    parser.add_argument("--host", help="Bind address (env SERVER_HOST)")
    parser.add_argument("--port", type=int, help="Listen port (env PORT)")
    parser.add_argument(
        "--heartbeat-interval-ms",
        type=int,
        help="Liveness probe period in milliseconds (env HEARTBEAT_INTERVAL_MS)",
    )
    parser.add_argument("--log-level", help="Logging level (env LOG_LEVEL)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = Config.from_env().with_overrides(
        host=args.host,
        port=args.port,
        heartbeat_interval_ms=args.heartbeat_interval_ms,
        log_level=args.log_level,
    )

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    app = create_app(config)
    logger.info(
        "🚀 Starting server on %s:%s (heartbeat %sms)",
        config.host, config.port, config.heartbeat_interval_ms,
    )

    try:
        web.run_app(app, host=config.host, port=config.port, print=None)
    except OSError as e:
        logger.critical("Cannot bind %s:%s: %s", config.host, config.port, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
