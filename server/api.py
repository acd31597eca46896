"""
HTTP and WebSocket handlers for the prompter relay
"""
import logging

from aiohttp import web

from . import protocol
from .config import Settings
from .relay import RelayEngine
from .transport import ConnectionHub
from .utils import build_join_url, generate_session_id, get_local_ip, pick_host_ip

logger = logging.getLogger("prompter_relay")

settings_key = web.AppKey("settings", Settings)
engine_key = web.AppKey("engine", RelayEngine)
hub_key = web.AppKey("hub", ConnectionHub)

# ============================================================
# WEBSOCKET RELAY
# ============================================================

async def ws_relay(request: web.Request) -> web.WebSocketResponse:
    """One relay connection: decode frames, hand them to the engine, clean up on close"""
    engine = request.app[engine_key]
    hub = request.app[hub_key]

    ws = web.WebSocketResponse()
    await ws.prepare(request)
    connection = hub.open(ws)

    try:
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT:
                # Keepalive
                if msg.data == "ping":
                    await ws.send_str("pong")
                    continue
                decoded = protocol.decode(msg.data)
                if decoded is None:
                    continue
                message_type, data = decoded
                engine.handle(connection.connection_id, message_type, data)
            elif msg.type == web.WSMsgType.ERROR:
                logger.debug(f"WebSocket {connection.connection_id} error: {ws.exception()}")
    finally:
        engine.disconnect(connection.connection_id)
        await hub.close(connection.connection_id)

    return ws

# ============================================================
# HOST ADDRESS / JOIN LINKS
# ============================================================

def _host_ip(request: web.Request) -> str:
    return pick_host_ip([get_local_ip() or "", request.host.split(":")[0]])


async def api_host_ip(request: web.Request) -> web.Response:
    """Best-effort LAN address for building a shareable join link"""
    return web.json_response({"ip": pick_host_ip([get_local_ip() or ""])})


async def api_join_link(request: web.Request) -> web.Response:
    """Join URL for a remote, generating a session id when none is given"""
    settings = request.app[settings_key]
    session_id = request.query.get("session") or generate_session_id()

    return web.json_response({
        "sessionId": session_id,
        "url": build_join_url(_host_ip(request), settings.join_port, session_id),
    })

# ============================================================
# INTROSPECTION
# ============================================================

async def api_session_status(request: web.Request) -> web.Response:
    """Current connectivity of one session"""
    session_id = request.match_info["session_id"]
    status = request.app[engine_key].status(session_id)
    if status is None:
        return web.json_response(
            {"ok": False, "error": "unknown session"},
            status=404
        )
    return web.json_response({"ok": True, "sessionId": session_id, **status})


async def api_health(request: web.Request) -> web.Response:
    engine = request.app[engine_key]
    return web.json_response({
        "ok": True,
        "sessions": engine.session_count(),
        "connections": len(request.app[hub_key]),
    })
