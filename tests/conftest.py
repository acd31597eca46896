"""Shared fixtures for relay tests."""

from typing import Any, Optional

import pytest

from server.relay import RelayEngine


class RecordingSender:
    """Collects what the engine sends instead of writing to sockets."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, Any]] = []
        self.failing: set[str] = set()

    def send(self, connection_id: str, message_type: str, data: Any) -> None:
        if connection_id in self.failing:
            raise ConnectionResetError(f"{connection_id} is gone")
        self.sent.append((connection_id, message_type, data))

    def to(self, connection_id: str, message_type: Optional[str] = None) -> list[Any]:
        return [
            data
            for recipient, kind, data in self.sent
            if recipient == connection_id and (message_type is None or kind == message_type)
        ]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def engine(sender: RecordingSender) -> RelayEngine:
    return RelayEngine(sender)


@pytest.fixture
def prompter_state() -> dict[str, Any]:
    return {
        "sessionId": "s1",
        "isPlaying": True,
        "speed": 40,
        "fontSize": 48,
        "mirror": False,
        "align": "center",
        "alignOffset": 0,
        "fontFamily": "system",
        "textColor": "#ffffff",
        "scriptTitle": "Keynote",
        "scrollPosition": 120,
    }
