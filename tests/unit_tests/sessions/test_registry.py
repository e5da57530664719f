import time

import pytest

from uploads_api.errors import InvalidStateError, NotFoundError
from uploads_api.sessions.registry import SessionRegistry, SessionState, UploadSession


def make_session(session_id: str = "s1") -> UploadSession:
    return UploadSession(
        session_id=session_id,
        file_id=f"file-{session_id}",
        file_name="a.txt",
        declared_size=5,
        backend_handle=f"file-{session_id}/a.txt",
    )


def test_happy_path_transitions():
    session = make_session()
    for state in (SessionState.RECEIVING, SessionState.RECEIVING, SessionState.COMPLETING, SessionState.DONE):
        session.transition_to(state)

    assert session.state == SessionState.DONE
    assert session.is_terminal


@pytest.mark.parametrize(
    "path",
    [
        [SessionState.DONE],
        [SessionState.COMPLETING, SessionState.RECEIVING],
        [SessionState.ABORTED, SessionState.RECEIVING],
        [SessionState.COMPLETING, SessionState.DONE, SessionState.ABORTED],
    ],
)
def test_illegal_transitions_raise(path):
    session = make_session()
    for state in path[:-1]:
        session.transition_to(state)

    with pytest.raises(InvalidStateError):
        session.transition_to(path[-1])


def test_require_state():
    session = make_session()
    session.require_state(SessionState.CREATED, SessionState.RECEIVING)

    session.transition_to(SessionState.ABORTED)
    with pytest.raises(InvalidStateError):
        session.require_state(SessionState.CREATED, SessionState.RECEIVING)


def test_get_never_creates_sessions():
    registry = SessionRegistry()

    with pytest.raises(NotFoundError):
        registry.get("missing")
    assert "missing" not in registry
    assert len(registry) == 0


def test_add_get_evict():
    registry = SessionRegistry()
    session = make_session()
    registry.add(session)

    assert registry.get("s1") is session
    assert "s1" in registry
    with pytest.raises(InvalidStateError):
        registry.add(make_session())

    assert registry.evict("s1") is session
    assert registry.evict("s1") is None
    assert "s1" not in registry


def test_close_refuses_new_sessions_and_returns_open_ones():
    registry = SessionRegistry()
    registry.add(make_session("s1"))
    registry.add(make_session("s2"))

    open_sessions = registry.close()

    assert {session.session_id for session in open_sessions} == {"s1", "s2"}
    assert registry.closed
    with pytest.raises(InvalidStateError):
        registry.add(make_session("s3"))


def test_idle_sessions():
    registry = SessionRegistry()
    stale, fresh = make_session("stale"), make_session("fresh")
    stale.last_activity = time.monotonic() - 120
    registry.add(stale)
    registry.add(fresh)

    assert [session.session_id for session in registry.idle_sessions(60)] == ["stale"]
