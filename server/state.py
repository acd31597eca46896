"""
In-memory state for relay sessions and the connections joined to them
Owned by a RelayEngine; nothing here is module-global
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Set


@dataclass
class Session:
    session_id: str
    prompter: Optional[str] = None
    remotes: Set[str] = field(default_factory=set)
    last_state: Optional[dict] = None
    pin: Optional[str] = None
    last_activity: float = field(default_factory=time.monotonic)
    evicted: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def members(self) -> list:
        """Connection ids that should hear about this session"""
        ids = [self.prompter] if self.prompter else []
        ids.extend(sorted(self.remotes))
        return ids

    def is_empty(self) -> bool:
        return self.prompter is None and not self.remotes

    def touch(self):
        self.last_activity = time.monotonic()


@dataclass(frozen=True)
class ConnectionInfo:
    connection_id: str
    session_id: str
    role: str


class ConnectionRegistry:
    """Tracks which (session, role) each live connection has joined"""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, ConnectionInfo] = {}

    def bind(self, connection_id: str, session_id: str, role: str) -> bool:
        """
        Attach session metadata to a connection.

        Binding is one-way: an unbound connection gets the pair, a connection
        already bound to the same pair is accepted again, and a connection
        bound to anything else is refused.
        """
        with self._lock:
            current = self._connections.get(connection_id)
            if current is None:
                self._connections[connection_id] = ConnectionInfo(connection_id, session_id, role)
                return True
            return current.session_id == session_id and current.role == role

    def get(self, connection_id: str) -> Optional[ConnectionInfo]:
        with self._lock:
            return self._connections.get(connection_id)

    def is_bound_elsewhere(self, connection_id: str, session_id: str, role: str) -> bool:
        current = self.get(connection_id)
        return current is not None and (current.session_id, current.role) != (session_id, role)

    def release(self, connection_id: str) -> Optional[ConnectionInfo]:
        with self._lock:
            return self._connections.pop(connection_id, None)

    def __len__(self):
        with self._lock:
            return len(self._connections)


class SessionStore:
    """Session id -> Session, created lazily, first write wins"""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def get_or_create(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(session_id)
                self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def evict_idle(self, max_idle: float, now: Optional[float] = None) -> list:
        """Drop sessions with nobody connected and no activity for max_idle seconds"""
        now = time.monotonic() if now is None else now
        evicted = []
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                with session.lock:
                    if session.is_empty() and now - session.last_activity > max_idle:
                        del self._sessions[session_id]
                        session.evicted = True
                        evicted.append(session_id)
        return evicted

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self):
        with self._lock:
            return len(self._sessions)
