from relayd.config import RelayRuntimeConfig
from relayd.service import RelayService
from relayd.session import Connection, ParticipationState

Outgoing = list[tuple[Connection, bytes]]


def _svc(**kwargs) -> RelayService:
    return RelayService(RelayRuntimeConfig(**kwargs))


def _conn(n: int) -> Connection:
    return Connection(sock=None, addr=("test", n))


def _send(svc: RelayService, conn: Connection, line: str | bytes) -> Outgoing:
    data = line.encode("utf-8") if isinstance(line, str) else line
    out: Outgoing = []
    svc.router.route_line(conn, data, out)
    return out


def _lines(out: Outgoing, conn: Connection) -> list[str]:
    return [p.decode("utf-8").rstrip("\n") for c, p in out if c is conn]


def test_nick_registers_and_replies_ok() -> None:
    svc = _svc()
    a = _conn(1)
    out = _send(svc, a, "/nick alice")
    assert _lines(out, a) == ["OK"]
    assert a.session.state is ParticipationState.REGISTERED
    assert svc.nicks.lookup("alice") is a


def test_nick_conflict_replies_error() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    _send(svc, a, "/nick alice")
    out = _send(svc, b, "/nick alice")
    assert _lines(out, b) == ["ERROR"]
    assert _lines(out, a) == []
    assert b.session.state is ParticipationState.UNREGISTERED
    assert svc.nicks.lookup("alice") is a


def test_nick_same_name_again_is_conflict() -> None:
    svc = _svc()
    a = _conn(1)
    _send(svc, a, "/nick alice")
    assert _lines(_send(svc, a, "/nick alice"), a) == ["ERROR"]
    assert svc.nicks.lookup("alice") is a


def test_rename_while_registered_releases_old_name() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    _send(svc, a, "/nick alice")
    assert _lines(_send(svc, a, "/nick alicia"), a) == ["OK"]
    assert "alice" not in svc.nicks
    assert _lines(_send(svc, b, "/nick alice"), b) == ["OK"]


def test_rename_in_room_broadcasts_newnick_to_everyone() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    for conn, nick in ((a, "alice"), (b, "bob")):
        _send(svc, conn, f"/nick {nick}")
        _send(svc, conn, "/join lobby")

    out = _send(svc, a, "/nick alicia")
    assert _lines(out, a) == ["OK", "NEWNICK alice alicia"]
    assert _lines(out, b) == ["NEWNICK alice alicia"]


def test_nick_too_long_is_rejected() -> None:
    svc = _svc(nick_max_chars=4)
    a = _conn(1)
    assert _lines(_send(svc, a, "/nick alice"), a) == ["ERROR"]
    assert _lines(_send(svc, a, "/nick ali"), a) == ["OK"]


def test_join_requires_registration_and_creates_no_room() -> None:
    svc = _svc()
    a = _conn(1)
    out = _send(svc, a, "/join lobby")
    assert _lines(out, a) == ["ERROR"]
    assert "lobby" not in svc.room_manager
    assert a.session.state is ParticipationState.UNREGISTERED


def test_join_replies_ok_and_broadcasts_joined_including_self() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    _send(svc, a, "/nick alice")
    _send(svc, b, "/nick bob")

    out = _send(svc, a, "/join room1")
    assert _lines(out, a) == ["OK", "JOINED alice"]

    out = _send(svc, b, "/join room1")
    assert _lines(out, b) == ["OK", "JOINED bob"]
    assert _lines(out, a) == ["JOINED bob"]
    assert svc.room_manager.get_room_members("room1") == {a, b}


def test_join_other_room_leaves_current_one() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    for conn, nick in ((a, "alice"), (b, "bob")):
        _send(svc, conn, f"/nick {nick}")
        _send(svc, conn, "/join old")

    out = _send(svc, a, "/join new")
    assert _lines(out, b) == ["LEFT alice"]
    assert _lines(out, a) == ["OK", "JOINED alice"]
    assert a.session.room == "new"
    assert svc.room_manager.get_room_members("old") == {b}
    assert svc.room_manager.get_room_members("new") == {a}


def test_join_other_room_deletes_emptied_room() -> None:
    svc = _svc()
    a = _conn(1)
    _send(svc, a, "/nick alice")
    _send(svc, a, "/join old")
    _send(svc, a, "/join new")
    assert "old" not in svc.room_manager
    assert "new" in svc.room_manager


def test_leave_broadcasts_left_excluding_self() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    for conn, nick in ((a, "alice"), (b, "bob")):
        _send(svc, conn, f"/nick {nick}")
        _send(svc, conn, "/join lobby")

    out = _send(svc, b, "/leave")
    assert _lines(out, a) == ["LEFT bob"]
    assert _lines(out, b) == ["OK"]
    assert b.session.state is ParticipationState.REGISTERED
    assert b.session.room is None


def test_leave_twice_is_ok_then_error() -> None:
    svc = _svc()
    a = _conn(1)
    _send(svc, a, "/nick alice")
    _send(svc, a, "/join lobby")

    assert _lines(_send(svc, a, "/leave"), a) == ["OK"]
    assert "lobby" not in svc.room_manager
    assert _lines(_send(svc, a, "/leave"), a) == ["ERROR"]


def test_plain_message_goes_to_whole_room() -> None:
    svc = _svc()
    a, b, c = _conn(1), _conn(2), _conn(3)
    for conn, nick in ((a, "alice"), (b, "bob"), (c, "carol")):
        _send(svc, conn, f"/nick {nick}")
    _send(svc, a, "/join lobby")
    _send(svc, b, "/join lobby")
    _send(svc, c, "/join elsewhere")

    out = _send(svc, a, "hello  world")
    assert _lines(out, a) == ["MESSAGE alice hello  world"]
    assert _lines(out, b) == ["MESSAGE alice hello  world"]
    assert _lines(out, c) == []


def test_plain_message_outside_room_is_error() -> None:
    svc = _svc()
    a = _conn(1)
    assert _lines(_send(svc, a, "hello"), a) == ["ERROR"]
    _send(svc, a, "/nick alice")
    assert _lines(_send(svc, a, "hello"), a) == ["ERROR"]


def test_priv_delivers_only_to_target() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    _send(svc, a, "/nick alice")
    _send(svc, b, "/nick bob")

    out = _send(svc, a, "/priv bob hey  there")
    assert _lines(out, b) == ["PRIVATE alice hey  there"]
    assert _lines(out, a) == []


def test_priv_errors() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    _send(svc, b, "/nick bob")

    # Sender has no nickname yet.
    out = _send(svc, a, "/priv bob hi")
    assert _lines(out, a) == ["ERROR"]
    assert _lines(out, b) == []

    _send(svc, a, "/nick alice")
    assert _lines(_send(svc, a, "/priv nobody hi"), a) == ["ERROR"]


def test_unknown_and_malformed_commands_are_errors() -> None:
    svc = _svc()
    a = _conn(1)
    for line in ("/shout hi", "/nick", "/nick a b", "/leave now", "/"):
        assert _lines(_send(svc, a, line), a) == ["ERROR"]
    assert a.session.state is ParticipationState.UNREGISTERED
    assert svc.stats_manager.get("protocol_errors") == 5
    assert svc.stats_manager.get("errors_sent") == 5


def test_invalid_utf8_is_error() -> None:
    svc = _svc()
    a = _conn(1)
    assert _lines(_send(svc, a, b"/nick \xff"), a) == ["ERROR"]


def test_empty_line_is_ignored() -> None:
    svc = _svc()
    a = _conn(1)
    assert _send(svc, a, "") == []
    assert svc.stats_manager.get("errors_sent") == 0


def test_whitespace_only_line_is_chat_text() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    assert _lines(_send(svc, a, "   "), a) == ["ERROR"]

    for conn, nick in ((a, "alice"), (b, "bob")):
        _send(svc, conn, f"/nick {nick}")
        _send(svc, conn, "/join lobby")

    out = _send(svc, a, "   ")
    assert _lines(out, a) == ["MESSAGE alice    "]
    assert _lines(out, b) == ["MESSAGE alice    "]


def test_bye_cleans_up_and_marks_closing() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    for conn, nick in ((a, "alice"), (b, "bob")):
        _send(svc, conn, f"/nick {nick}")
        _send(svc, conn, "/join lobby")

    out = _send(svc, a, "/bye")
    assert _lines(out, b) == ["LEFT alice"]
    assert _lines(out, a) == ["BYE"]
    assert a.closing
    assert "alice" not in svc.nicks
    assert svc.room_manager.get_room_members("lobby") == {b}
    assert a.session.state is ParticipationState.REGISTERED


def test_bye_when_unregistered() -> None:
    svc = _svc()
    a = _conn(1)
    assert _lines(_send(svc, a, "/bye"), a) == ["BYE"]
    assert a.closing


def test_disconnect_cleanup_matches_leave() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)
    for conn, nick in ((a, "alice"), (b, "bob")):
        _send(svc, conn, f"/nick {nick}")
        _send(svc, conn, "/join lobby")

    out: Outgoing = []
    nick, room = svc.session_manager.on_connection_closed(b, out)
    assert (nick, room) == ("bob", "lobby")
    assert _lines(out, a) == ["LEFT bob"]
    assert _lines(out, b) == []
    assert "bob" not in svc.nicks

    out = []
    svc.session_manager.on_connection_closed(a, out)
    assert out == []
    assert "lobby" not in svc.room_manager
    assert len(svc.nicks) == 0


def test_two_client_scenario() -> None:
    svc = _svc()
    a, b = _conn(1), _conn(2)

    assert _lines(_send(svc, a, "/nick alice"), a) == ["OK"]
    assert _lines(_send(svc, b, "/nick alice"), b) == ["ERROR"]
    assert _lines(_send(svc, b, "/nick bob"), b) == ["OK"]

    out = _send(svc, a, "/join room1")
    assert _lines(out, a) == ["OK", "JOINED alice"]
    out = _send(svc, b, "/join room1")
    assert _lines(out, b) == ["OK", "JOINED bob"]
    assert _lines(out, a) == ["JOINED bob"]

    out = _send(svc, a, "hi")
    assert _lines(out, a) == ["MESSAGE alice hi"]
    assert _lines(out, b) == ["MESSAGE alice hi"]

    out = _send(svc, b, "/leave")
    assert _lines(out, a) == ["LEFT bob"]
    assert _lines(out, b) == ["OK"]

    out = _send(svc, a, "/priv bob hey")
    assert _lines(out, b) == ["PRIVATE alice hey"]
    assert _lines(out, a) == []


def test_nick_registry_never_holds_duplicates() -> None:
    svc = _svc()
    conns = [_conn(i) for i in range(4)]
    names = ["a", "b", "a", "c", "b", "a", "d"]
    for i, name in enumerate(names * 3):
        _send(svc, conns[i % len(conns)], f"/nick {name}")
        bound = [c.session.nickname for c in conns if c.session.registered]
        assert len(bound) == len(set(bound))
        for c in conns:
            if c.session.registered:
                assert svc.nicks.lookup(c.session.nickname) is c


def test_stats_report_mentions_activity() -> None:
    svc = _svc()
    a = _conn(1)
    _send(svc, a, "/nick alice")
    _send(svc, a, "/join lobby")
    _send(svc, a, "hi")
    report = svc.stats_manager.format_stats()
    assert "joins=1" in report
    assert "msgs_fwd=1" in report
    assert "rooms=1 memberships=1" in report
