"""Integration tests for the relay over real WebSockets.

Runs the aiohttp application in-process and drives it with WebSocket
clients playing the prompter and remote roles.
"""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from main import create_app
from server.api import engine_key
from server.config import Settings

pytestmark = pytest.mark.integration

STATUS_BOTH = {"connectedPrompter": True, "connectedRemote": True}


@pytest.fixture
def relay_app() -> web.Application:
    return create_app(Settings(session_ttl=0))


@pytest.fixture
async def client(relay_app: web.Application) -> AsyncGenerator[TestClient, None]:
    async with TestClient(TestServer(relay_app)) as client:
        yield client


async def join(ws: Any, session_id: str, role: str, pin: str = "") -> None:
    data = {"sessionId": session_id, "role": role}
    if pin:
        data["pin"] = pin
    await ws.send_json({"type": "join", "data": data})


async def receive(ws: Any) -> dict:
    return await ws.receive_json(timeout=2)


async def assert_silent(ws: Any) -> None:
    with pytest.raises(asyncio.TimeoutError):
        await ws.receive(timeout=0.2)


async def test_pair_control_and_sync(client: TestClient, prompter_state: dict) -> None:
    """Prompter and remote pair up, a command and a state update flow through."""
    a = await client.ws_connect("/ws")
    b = await client.ws_connect("/ws")

    await join(a, "s1", "prompter")
    assert await receive(a) == {
        "type": "session:status",
        "data": {"connectedPrompter": True, "connectedRemote": False},
    }

    await join(b, "s1", "remote")
    assert await receive(b) == {"type": "session:status", "data": STATUS_BOTH}
    assert await receive(a) == {"type": "session:status", "data": STATUS_BOTH}

    await b.send_json({"type": "command", "data": {"type": "PLAY"}})
    assert await receive(a) == {"type": "command", "data": {"type": "PLAY"}}

    await a.send_json({"type": "state:update", "data": prompter_state})
    assert await receive(b) == {"type": "state:update", "data": prompter_state}
    assert client.app[engine_key].session_info("s1")["lastState"] == prompter_state

    await a.close()
    await b.close()


async def test_late_remote_catches_up_alone(client: TestClient, prompter_state: dict) -> None:
    a = await client.ws_connect("/ws")
    b = await client.ws_connect("/ws")
    await join(a, "s1", "prompter")
    await receive(a)
    await join(b, "s1", "remote")
    await receive(b)
    await receive(a)
    await a.send_json({"type": "state:update", "data": prompter_state})
    await receive(b)

    c = await client.ws_connect("/ws")
    await join(c, "s1", "remote")

    assert await receive(c) == {"type": "session:status", "data": STATUS_BOTH}
    assert await receive(c) == {"type": "state:update", "data": prompter_state}
    assert await receive(b) == {"type": "session:status", "data": STATUS_BOTH}
    await assert_silent(b)

    for ws in (a, b, c):
        await ws.close()


async def test_new_prompter_takes_over(client: TestClient, prompter_state: dict) -> None:
    a = await client.ws_connect("/ws")
    b = await client.ws_connect("/ws")
    d = await client.ws_connect("/ws")
    await join(a, "s1", "prompter")
    await receive(a)
    await join(b, "s1", "remote")
    await receive(b)
    await receive(a)

    await join(d, "s1", "prompter")
    await receive(d)
    await receive(b)
    assert client.app[engine_key].session_info("s1")["prompter"] is not None

    await a.send_json({"type": "state:update", "data": prompter_state})
    await assert_silent(b)
    assert client.app[engine_key].session_info("s1")["lastState"] is None

    await b.send_json({"type": "command", "data": {"type": "PAUSE"}})
    assert await receive(d) == {"type": "command", "data": {"type": "PAUSE"}}
    await assert_silent(a)

    for ws in (a, b, d):
        await ws.close()


async def test_prompter_disconnect_is_broadcast(client: TestClient) -> None:
    a = await client.ws_connect("/ws")
    b = await client.ws_connect("/ws")
    other = await client.ws_connect("/ws")
    await join(a, "s1", "prompter")
    await receive(a)
    await join(b, "s1", "remote")
    await receive(b)
    await join(other, "s2", "remote")
    await receive(other)

    await a.close()

    assert await receive(b) == {
        "type": "session:status",
        "data": {"connectedPrompter": False, "connectedRemote": True},
    }
    await assert_silent(other)

    await b.close()
    await other.close()


async def test_pin_mismatch_gets_error(client: TestClient) -> None:
    a = await client.ws_connect("/ws")
    b = await client.ws_connect("/ws")
    await join(a, "s1", "prompter", pin="1234")
    await receive(a)

    await join(b, "s1", "remote", pin="0000")

    assert await receive(b) == {"type": "session:error", "data": {"message": "Invalid PIN"}}
    await assert_silent(a)
    assert client.app[engine_key].session_info("s1")["remotes"] == set()

    await a.close()
    await b.close()


async def test_command_before_join_is_dropped(client: TestClient) -> None:
    a = await client.ws_connect("/ws")
    stranger = await client.ws_connect("/ws")
    await join(a, "s1", "prompter")
    await receive(a)

    await stranger.send_json({"type": "command", "data": {"type": "PLAY"}})
    await stranger.send_str("garbage")
    await stranger.send_json({"type": "bogus"})

    await assert_silent(a)
    await assert_silent(stranger)

    await a.close()
    await stranger.close()


async def test_state_request(client: TestClient, prompter_state: dict) -> None:
    a = await client.ws_connect("/ws")
    b = await client.ws_connect("/ws")
    await join(a, "s1", "prompter")
    await receive(a)
    await join(b, "s1", "remote")
    await receive(b)
    await receive(a)

    await b.send_json({"type": "state:request"})
    await assert_silent(b)

    await a.send_json({"type": "state:update", "data": prompter_state})
    await receive(b)
    await b.send_json({"type": "state:request"})
    assert await receive(b) == {"type": "state:update", "data": prompter_state}

    await a.close()
    await b.close()


async def test_ping_pong(client: TestClient) -> None:
    ws = await client.ws_connect("/ws")
    await ws.send_str("ping")
    msg = await ws.receive(timeout=2)
    assert msg.data == "pong"
    await ws.close()


async def test_deeply_nested_frame_is_dropped(client: TestClient) -> None:
    ws = await client.ws_connect("/ws")
    depth = 200000
    await ws.send_str('{"type": "join", "data": ' + "[" * depth + "]" * depth + "}")

    await ws.send_str("ping")
    msg = await ws.receive(timeout=2)
    assert msg.data == "pong"

    await join(ws, "s1", "remote")
    assert await receive(ws) == {
        "type": "session:status",
        "data": {"connectedPrompter": False, "connectedRemote": True},
    }
    await ws.close()
