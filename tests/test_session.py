import pytest

from relayd.errors import StateError
from relayd.session import Connection, ParticipationState, Session


def test_new_session_is_unregistered() -> None:
    sess = Session()
    assert sess.state is ParticipationState.UNREGISTERED
    assert sess.nickname is None
    assert sess.room is None
    assert not sess.registered


def test_full_lifecycle() -> None:
    sess = Session()
    sess.register("alice")
    assert sess.state is ParticipationState.REGISTERED

    sess.enter_room("lobby")
    assert sess.state is ParticipationState.IN_ROOM
    assert sess.room == "lobby"

    assert sess.rename("alicia") == "alice"
    assert sess.state is ParticipationState.IN_ROOM

    assert sess.exit_room() == "lobby"
    assert sess.state is ParticipationState.REGISTERED
    assert sess.room is None


def test_illegal_transitions_are_refused() -> None:
    sess = Session()
    with pytest.raises(StateError):
        sess.enter_room("lobby")
    with pytest.raises(StateError):
        sess.exit_room()
    with pytest.raises(StateError):
        sess.rename("x")

    sess.register("alice")
    with pytest.raises(StateError):
        sess.register("again")
    with pytest.raises(StateError):
        sess.exit_room()

    sess.enter_room("lobby")
    with pytest.raises(StateError):
        sess.enter_room("other")
    assert sess.room == "lobby"


def test_connection_hashes_by_identity() -> None:
    a = Connection(sock=None)
    b = Connection(sock=None)
    assert a != b
    assert len({a, b, a}) == 2
    assert a.conn_id != b.conn_id
    assert a.session is not b.session
