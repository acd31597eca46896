"""
Relay engine: session membership, command routing and state propagation
between a prompter display and its remotes
"""
import logging
from typing import Any, Callable, List, Optional, Protocol, Tuple

from . import protocol
from .protocol import ROLE_PROMPTER, ROLE_REMOTE
from .state import ConnectionInfo, ConnectionRegistry, Session, SessionStore

logger = logging.getLogger("prompter_relay")

Outbox = List[Tuple[str, str, Any]]


class Sender(Protocol):
    def send(self, connection_id: str, message_type: str, data: Any) -> None: ...


class RelayEngine:
    """
    One per process. Holds the session store and connection registry and
    turns inbound messages into outbound sends.

    Every operation mutates state under the session lock and only collects
    what needs sending; the sends go out after the lock is released, one at
    a time, each in its own failure boundary.
    """

    def __init__(self, sender: Sender, store: Optional[SessionStore] = None,
                 registry: Optional[ConnectionRegistry] = None):
        self._sender = sender
        self._store = store if store is not None else SessionStore()
        self._registry = registry if registry is not None else ConnectionRegistry()
        self._handlers: dict[str, Callable[[str, Any], None]] = {
            protocol.JOIN: self.join,
            protocol.COMMAND: self.command,
            protocol.STATE_UPDATE: self.state_update,
            protocol.STATE_REQUEST: self.state_request,
        }

    def handle(self, connection_id: str, message_type: str, data: Any = None):
        """Dispatch a decoded client message"""
        handler = self._handlers.get(message_type)
        if handler is None:
            logger.debug(f"Unknown message {message_type!r} from {connection_id}")
            return
        handler(connection_id, data)

    # ============================================================
    # JOIN
    # ============================================================

    def join(self, connection_id: str, payload: Any):
        request = protocol.parse_join(payload)
        if request is None:
            logger.debug(f"Dropping invalid join from {connection_id}")
            return

        if self._registry.is_bound_elsewhere(connection_id, request.session_id, request.role):
            logger.debug(f"Dropping join from {connection_id}: already joined with another session or role")
            return

        outbox: Outbox = []
        while True:
            session = self._store.get_or_create(request.session_id)
            with session.lock:
                # The sweeper can drop the record between lookup and lock
                if not session.evicted:
                    self._admit(session, request, connection_id, outbox)
                    break

        self._dispatch(outbox)

    def _admit(self, session: Session, request: protocol.JoinRequest, connection_id: str, outbox: Outbox):
        # caller holds session.lock
        if session.pin is not None and request.pin != session.pin:
            logger.warning("🔒 Rejected join to %s from %s: PIN mismatch", session.session_id, connection_id)
            outbox.append((connection_id, protocol.SESSION_ERROR, protocol.error_payload(protocol.INVALID_PIN)))
        elif not self._registry.bind(connection_id, request.session_id, request.role):
            logger.debug(f"Dropping join from {connection_id}: lost a race with another join")
        else:
            if session.pin is None and request.pin:
                session.pin = request.pin

            if request.role == ROLE_PROMPTER:
                if session.prompter not in (None, connection_id):
                    logger.info("🔁 Prompter %s displaced by %s in %s",
                                session.prompter, connection_id, session.session_id)
                session.prompter = connection_id
            else:
                session.remotes.add(connection_id)

            session.touch()
            logger.info("✅ %s joined %s as %s", connection_id, session.session_id, request.role)

            outbox.extend(self._status_sends(session))
            if request.role == ROLE_REMOTE and session.last_state is not None:
                outbox.append((connection_id, protocol.STATE_UPDATE, session.last_state))

    # ============================================================
    # ROUTING
    # ============================================================

    def command(self, connection_id: str, command: Any):
        session = self._session_for(connection_id, ROLE_REMOTE)
        if session is None:
            logger.debug(f"Dropping command from {connection_id}: not a joined remote")
            return

        with session.lock:
            prompter = session.prompter

        if prompter is None:
            logger.debug(f"Dropping command in {session.session_id}: no prompter connected")
            return
        self._dispatch([(prompter, protocol.COMMAND, command)])

    def state_update(self, connection_id: str, state: Any):
        session = self._session_for(connection_id, ROLE_PROMPTER)
        if session is None:
            logger.debug(f"Dropping state update from {connection_id}: not a joined prompter")
            return

        with session.lock:
            if session.prompter != connection_id:
                logger.debug(f"Dropping state update from displaced prompter {connection_id}")
                return
            session.last_state = state
            session.touch()
            outbox = [(remote, protocol.STATE_UPDATE, state) for remote in sorted(session.remotes)]

        self._dispatch(outbox)

    def state_request(self, connection_id: str, _data: Any = None):
        session = self._session_for(connection_id, ROLE_REMOTE)
        if session is None:
            logger.debug(f"Dropping state request from {connection_id}: not a joined remote")
            return

        with session.lock:
            state = session.last_state

        if state is not None:
            self._dispatch([(connection_id, protocol.STATE_UPDATE, state)])

    # ============================================================
    # DISCONNECT
    # ============================================================

    def disconnect(self, connection_id: str):
        info = self._registry.release(connection_id)
        if info is None:
            return

        session = self._store.get(info.session_id)
        if session is None:
            return

        with session.lock:
            if info.role == ROLE_PROMPTER and session.prompter == connection_id:
                session.prompter = None
            elif info.role == ROLE_REMOTE:
                session.remotes.discard(connection_id)
            session.touch()
            outbox = self._status_sends(session)

        logger.info("👋 %s (%s) left %s", connection_id, info.role, info.session_id)
        self._dispatch(outbox)

    # ============================================================
    # INTROSPECTION / HOUSEKEEPING
    # ============================================================

    def status(self, session_id: str) -> Optional[dict]:
        session = self._store.get(session_id)
        if session is None:
            return None
        with session.lock:
            return protocol.status_payload(session.prompter is not None, bool(session.remotes))

    def session_info(self, session_id: str) -> Optional[dict]:
        """Copy of one session's record, or None if there is no such session"""
        session = self._store.get(session_id)
        if session is None:
            return None
        with session.lock:
            return {
                "sessionId": session.session_id,
                "prompter": session.prompter,
                "remotes": set(session.remotes),
                "lastState": session.last_state,
                "hasPin": session.pin is not None,
            }

    def connection_info(self, connection_id: str) -> Optional[ConnectionInfo]:
        return self._registry.get(connection_id)

    def session_count(self) -> int:
        return len(self._store)

    def evict_idle(self, max_idle: float, now: Optional[float] = None) -> list:
        """Forget sessions nobody has been connected to for max_idle seconds"""
        return self._store.evict_idle(max_idle, now)

    # ============================================================
    # INTERNALS
    # ============================================================

    def _status_sends(self, session: Session) -> Outbox:
        # caller holds session.lock
        status = protocol.status_payload(session.prompter is not None, bool(session.remotes))
        return [(member, protocol.SESSION_STATUS, status) for member in session.members()]

    def _session_for(self, connection_id: str, role: str) -> Optional[Session]:
        info = self._registry.get(connection_id)
        if info is None or info.role != role:
            return None
        return self._store.get(info.session_id)

    def _dispatch(self, outbox: Outbox):
        for connection_id, message_type, data in outbox:
            try:
                self._sender.send(connection_id, message_type, data)
            except Exception as e:
                logger.warning(f"Send of {message_type} to {connection_id} failed: {e}")
