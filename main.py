#!/usr/bin/env python3
"""
Prompter Relay - Entry Point
WebSocket relay + rate limiting + cleanup tasks
"""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Optional

from aiohttp import web

from server.api import (
    api_health, api_host_ip, api_join_link, api_session_status, ws_relay,
    engine_key, hub_key, settings_key,
)
from server.config import ConfigurationError, Settings
from server.relay import RelayEngine
from server.transport import ConnectionHub
from server.utils import get_local_ip

logger = logging.getLogger("prompter_relay")

rate_limit_store_key = web.AppKey("rate_limit_store", defaultdict)


@web.middleware
async def rate_limit_middleware(request, handler):
    """Simple rate limiting: N requests per minute per IP"""
    ip = request.remote
    now = time.time()
    path = request.path

    # The relay socket is one long-lived request
    if path == "/ws":
        return await handler(request)

    store = request.app[rate_limit_store_key]
    limit = request.app[settings_key].rate_limit

    # Clean old entries
    store[ip] = [t for t in store[ip] if now - t < 60]

    if len(store[ip]) >= limit:
        logger.warning(f"Rate limit exceeded for {ip}")
        return web.json_response(
            {"ok": False, "error": "Rate limit exceeded"},
            status=429
        )

    store[ip].append(now)
    return await handler(request)


def prune_rate_limit_store(store: dict, now: float) -> list:
    """Forget IPs with no requests inside the rate-limit window"""
    idle = [ip for ip, stamps in store.items() if not any(now - t < 60 for t in stamps)]
    for ip in idle:
        del store[ip]
    return idle


async def cleanup_stale_data(app: web.Application):
    """Background task to cleanup idle rate-limit entries and stale sessions"""
    settings = app[settings_key]
    engine = app[engine_key]
    while True:
        await asyncio.sleep(settings.sweep_interval)
        try:
            prune_rate_limit_store(app[rate_limit_store_key], time.time())
            if settings.eviction_enabled:
                for session_id in engine.evict_idle(settings.session_ttl):
                    logger.info(f"🧹 Removing stale session: {session_id}")
        except Exception as e:
            logger.error(f"Cleanup task error: {e}")


async def background_tasks(app: web.Application):
    task = asyncio.create_task(cleanup_stale_data(app))
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def close_connections(app: web.Application):
    await app[hub_key].shutdown()


def create_app(settings: Optional[Settings] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    settings = settings or Settings()
    app = web.Application(middlewares=[rate_limit_middleware])

    hub = ConnectionHub(outbox_size=settings.outbox_size)
    app[settings_key] = settings
    app[hub_key] = hub
    app[engine_key] = RelayEngine(hub)
    app[rate_limit_store_key] = defaultdict(list)

    # Relay socket
    app.router.add_get("/ws", ws_relay)

    # API routes
    app.router.add_get("/api/host-ip", api_host_ip)
    app.router.add_get("/api/join-link", api_join_link)
    app.router.add_get("/api/sessions/{session_id}", api_session_status)
    app.router.add_get("/health", api_health)

    app.cleanup_ctx.append(background_tasks)
    app.on_shutdown.append(close_connections)

    logger.info("📺 Prompter relay ready")
    return app


def main():
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Could not load configuration: {e}")
        raise SystemExit(1)

    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    app = create_app(settings)
    local_ip = get_local_ip() or "localhost"

    logger.info(f"🚀 Starting server on {settings.host}:{settings.port}")
    logger.info(f"💡 Access at: http://{local_ip}:{settings.port}")

    web.run_app(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
