"""
WebSocket transport for the relay
Each connection gets a stable id and an outbound queue drained by its own writer task
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from . import protocol
from .utils import generate_connection_id

logger = logging.getLogger("prompter_relay")


class Connection:
    """An open WebSocket plus the queue of frames waiting to go out on it"""

    def __init__(self, connection_id: str, ws: web.WebSocketResponse, outbox_size: int):
        self.connection_id = connection_id
        self.ws = ws
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.writer: Optional[asyncio.Task] = None

    async def drain(self):
        """Writer loop: forward queued frames in order until the socket goes away"""
        while True:
            frame = await self.outbox.get()
            if frame is None:
                return
            if self.ws.closed:
                return
            try:
                await self.ws.send_str(frame)
            except (ConnectionResetError, RuntimeError) as e:
                logger.debug(f"Connection {self.connection_id} reset while sending: {e}")
                return


class ConnectionHub:
    """
    Owns the live connections. The relay engine only ever sees connection
    ids and calls send(); it never touches a socket.
    """

    def __init__(self, outbox_size: int = 256):
        self._outbox_size = outbox_size
        self._connections: Dict[str, Connection] = {}

    def open(self, ws: web.WebSocketResponse) -> Connection:
        connection_id = generate_connection_id()
        while connection_id in self._connections:
            connection_id = generate_connection_id()

        connection = Connection(connection_id, ws, self._outbox_size)
        connection.writer = asyncio.create_task(connection.drain())
        self._connections[connection_id] = connection
        logger.info(f"📡 WebSocket {connection_id} connected (total: {len(self._connections)})")
        return connection

    async def close(self, connection_id: str):
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return

        # Let frames already queued go out before the writer stops
        try:
            connection.outbox.put_nowait(None)
        except asyncio.QueueFull:
            connection.writer.cancel()
        try:
            await connection.writer
        except asyncio.CancelledError:
            pass
        logger.info(f"📡 WebSocket {connection_id} disconnected (remaining: {len(self._connections)})")

    def send(self, connection_id: str, message_type: str, data: Any) -> None:
        """Queue a message for one connection without waiting on it"""
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"Dropping {message_type} for unknown connection {connection_id}")
            return

        try:
            connection.outbox.put_nowait(protocol.encode(message_type, data))
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for {connection_id}, dropping {message_type}")

    async def shutdown(self):
        for connection_id in list(self._connections):
            connection = self._connections.get(connection_id)
            if connection is not None:
                await connection.ws.close()
            await self.close(connection_id)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self):
        return len(self._connections)
