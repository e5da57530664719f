import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from uploads_api.errors import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Upload session states"""
    CREATED = "created"         # Backend handle allocated, no parts yet
    RECEIVING = "receiving"     # At least one part accepted or authorized
    COMPLETING = "completing"   # Manifest validated, backend finalize in progress or failed
    DONE = "done"               # File record written, session evicted (terminal)
    ABORTED = "aborted"         # Explicitly aborted or reaped (terminal)


# Allowed transitions; anything else is an InvalidStateError.
TRANSITIONS = {
    SessionState.CREATED: {SessionState.RECEIVING, SessionState.COMPLETING, SessionState.ABORTED},
    SessionState.RECEIVING: {SessionState.RECEIVING, SessionState.COMPLETING, SessionState.ABORTED},
    SessionState.COMPLETING: {SessionState.COMPLETING, SessionState.DONE, SessionState.ABORTED},
    SessionState.DONE: set(),
    SessionState.ABORTED: set(),
}

TERMINAL_STATES = {SessionState.DONE, SessionState.ABORTED}


@dataclass
class UploadSession:
    """One in-progress multipart upload.

    ``received_parts`` maps a part number to its integrity token: the MD5 of
    the buffered bytes for direct-byte backends. Out-of-band backends confirm
    parts on their own side and only fill it, from the part listing, when
    completion starts.

    ``finalize_result`` is set once the backend has assembled the file, so a
    completion whose record write failed can be retried without finalizing
    again.
    """
    session_id: str
    file_id: str
    file_name: str
    declared_size: int
    backend_handle: Any
    state: SessionState = SessionState.CREATED
    received_parts: Dict[int, str] = field(default_factory=dict)
    finalize_result: Optional[Any] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: float = field(default_factory=time.monotonic)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def transition_to(self, new_state: SessionState) -> None:
        """Move to ``new_state``; caller must hold ``self.lock``."""
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidStateError(
                f"Session {self.session_id} cannot move from {self.state.value} to {new_state.value}"
            )
        if new_state != self.state:
            logger.info(f"Session {self.session_id} transitioned {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.touch()

    def require_state(self, *allowed: SessionState) -> None:
        if self.state not in allowed:
            raise InvalidStateError(
                f"Session {self.session_id} is {self.state.value}; "
                f"expected one of {[state.value for state in allowed]}"
            )

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class SessionRegistry:
    """Maps session ids to live :class:`UploadSession` objects.

    The registry lock guards only the table itself. Work on a session is
    serialized by that session's own lock.
    """

    def __init__(self):
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()
        self._closed = False

    def add(self, session: UploadSession) -> None:
        with self._lock:
            if self._closed:
                raise InvalidStateError("Session registry is closed")
            if session.session_id in self._sessions:
                raise InvalidStateError(f"Session {session.session_id} is already registered")
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> UploadSession:
        """Return the session or raise :class:`NotFoundError`; never creates one."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Upload session {session_id} not found")
        return session

    def evict(self, session_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def sessions(self) -> List[UploadSession]:
        with self._lock:
            return list(self._sessions.values())

    def idle_sessions(self, max_idle_seconds: float) -> List[UploadSession]:
        cutoff = time.monotonic() - max_idle_seconds
        return [session for session in self.sessions() if session.last_activity < cutoff]

    def close(self) -> List[UploadSession]:
        """Refuse new sessions and hand back the ones still open."""
        with self._lock:
            self._closed = True
            return list(self._sessions.values())

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
