"""
Reconnecting relay client

Keeps a WebSocket to the relay open, re-sends the last join after every
reconnect, and hands incoming messages to per-type handlers. Remotes also
ask for the latest state after rejoining so they catch up on anything they
missed while offline.
"""
import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from . import protocol

logger = logging.getLogger("prompter_relay")

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class RelayClient:

    def __init__(self, url: str, reconnect_delay: float = 1.0,
                 http: Optional[aiohttp.ClientSession] = None):
        self._url = url
        self._reconnect_delay = reconnect_delay
        self._http = http
        self._owns_http = http is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._handlers: Dict[str, List[Handler]] = {}
        self._last_join: Optional[dict] = None
        self._closing = False
        self.connected = asyncio.Event()

    def on(self, message_type: str, handler: Handler):
        self._handlers.setdefault(message_type, []).append(handler)

    async def join(self, session_id: str, role: str, pin: Optional[str] = None):
        payload = {"sessionId": session_id, "role": role}
        if pin:
            payload["pin"] = pin
        self._last_join = payload
        if self.connected.is_set():
            await self._after_connect()

    async def send(self, message_type: str, data: Any = None):
        if self._ws is None or self._ws.closed:
            logger.debug(f"Not connected, dropping {message_type}")
            return
        await self._ws.send_str(protocol.encode(message_type, data))

    async def command(self, command: dict):
        if command.get("type") not in protocol.COMMAND_TYPES:
            raise ValueError(f"Unknown command type: {command.get('type')!r}")
        await self.send(protocol.COMMAND, command)

    async def state_update(self, state: dict):
        await self.send(protocol.STATE_UPDATE, state)

    async def request_state(self):
        await self.send(protocol.STATE_REQUEST)

    async def run(self):
        """Connect, and reconnect after every drop, until close() is called"""
        if self._http is None:
            self._http = aiohttp.ClientSession()
        try:
            while not self._closing:
                try:
                    async with self._http.ws_connect(self._url) as ws:
                        self._ws = ws
                        self.connected.set()
                        logger.info(f"Connected to relay at {self._url}")
                        await self._after_connect()
                        await self._read(ws)
                except aiohttp.ClientError as e:
                    logger.warning(f"Relay connection failed: {e}")
                finally:
                    self._ws = None
                    self.connected.clear()

                if not self._closing:
                    await asyncio.sleep(self._reconnect_delay)
        finally:
            if self._owns_http and self._http is not None:
                await self._http.close()

    async def close(self):
        self._closing = True
        if self._ws is not None:
            await self._ws.close()

    async def _after_connect(self):
        if self._last_join is None:
            return
        await self.send(protocol.JOIN, self._last_join)
        if self._last_join["role"] == protocol.ROLE_REMOTE:
            await self.request_state()

    async def _read(self, ws: aiohttp.ClientWebSocketResponse):
        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            if msg.data == "pong":
                continue
            try:
                packet = json.loads(msg.data)
            except (ValueError, RecursionError):
                logger.debug("Relay sent non-JSON data")
                continue
            if not isinstance(packet, dict):
                continue
            await self._dispatch(packet.get("type"), packet.get("data"))

    async def _dispatch(self, message_type: str, data: Any):
        for handler in self._handlers.get(message_type, []):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler for {message_type} failed")
