"""
Wire protocol for the prompter relay
Message names, envelope parsing and the shapes clients exchange
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger("prompter_relay")

# ============================================================
# MESSAGE TYPES
# ============================================================

JOIN = "join"
COMMAND = "command"
STATE_UPDATE = "state:update"
STATE_REQUEST = "state:request"
SESSION_STATUS = "session:status"
SESSION_ERROR = "session:error"

CLIENT_MESSAGES = frozenset({JOIN, COMMAND, STATE_UPDATE, STATE_REQUEST})

ROLE_PROMPTER = "prompter"
ROLE_REMOTE = "remote"
ROLES = frozenset({ROLE_PROMPTER, ROLE_REMOTE})

INVALID_PIN = "Invalid PIN"

# Command types a remote may send. The relay forwards them untouched;
# these are here so clients agree on the names.
COMMAND_TYPES = frozenset({
    "PLAY", "PAUSE", "TOGGLE_PLAY",
    "SET_SPEED", "INC_SPEED", "DEC_SPEED",
    "SET_FONT_SIZE", "INC_FONT", "DEC_FONT",
    "TOGGLE_MIRROR",
    "SET_FONT_FAMILY", "SET_TEXT_COLOR",
    "SET_ALIGN", "NUDGE_ALIGN",
    "NUDGE_SCROLL", "RESET_SCROLL",
    "LOAD_SCRIPT",
})


@dataclass(frozen=True)
class JoinRequest:
    session_id: str
    role: str
    pin: Optional[str] = None


def parse_join(payload: Any) -> Optional[JoinRequest]:
    """Validate a join payload. Returns None when it should be dropped."""
    if not isinstance(payload, dict):
        return None

    session_id = payload.get("sessionId")
    role = payload.get("role")
    pin = payload.get("pin")

    if not isinstance(session_id, str) or not session_id:
        return None
    if role not in ROLES:
        return None
    if pin is not None and not isinstance(pin, str):
        return None

    return JoinRequest(session_id=session_id, role=role, pin=pin or None)


def encode(message_type: str, data: Any = None) -> str:
    """Serialize an outbound envelope"""
    return json.dumps({"type": message_type, "data": data})


def decode(raw: str) -> Optional[tuple[str, Any]]:
    """
    Parse an inbound text frame into (type, data).

    Frames that are not JSON objects with a known string "type" are noise
    on an untrusted network; they come back as None.
    """
    try:
        packet = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        logger.debug("Dropping non-JSON frame")
        return None

    if not isinstance(packet, dict):
        logger.debug("Dropping frame that is not an object")
        return None

    message_type = packet.get("type")
    if not isinstance(message_type, str) or message_type not in CLIENT_MESSAGES:
        logger.debug(f"Dropping frame with unknown type: {message_type!r}")
        return None

    return message_type, packet.get("data")


def status_payload(connected_prompter: bool, connected_remote: bool) -> dict:
    return {
        "connectedPrompter": connected_prompter,
        "connectedRemote": connected_remote,
    }


def error_payload(message: str) -> dict:
    return {"message": message}
