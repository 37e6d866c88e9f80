import pytest

from lrcd.config import RelayRuntimeConfig
from lrcd.constants import S_INIT, S_INSIDE, S_OUTSIDE
from lrcd.service import RelayService


@pytest.fixture
def relay():
    svc = RelayService(RelayRuntimeConfig())
    yield svc
    svc.close_all()


def _conn(relay: RelayService):
    # Socketless connections: frames stay in the output queue for inspection.
    return relay.session_manager.open(None, ("test", 0))


def _take(conn) -> list[str]:
    lines = [bytes(f.data).decode("utf-8").rstrip("\n") for f in conn.outbound.frames]
    conn.outbound.clear()
    return lines


def _send(relay: RelayService, conn, *lines: str) -> None:
    for line in lines:
        relay.router.route_line(conn, line)


def _check_invariants(relay: RelayService) -> None:
    for conn in relay.session_manager.sessions.values():
        if not conn.live:
            continue
        assert (conn.room is not None) == (conn.state == S_INSIDE)
        assert (conn.nick is not None) == (conn.state in (S_OUTSIDE, S_INSIDE))
        if conn.room is not None:
            assert conn.conn_id in relay.room_manager.get_room_members(conn.room)
        if conn.nick is not None:
            assert relay.session_manager.nick_owner(conn.nick) is conn
    for members in relay.room_manager.rooms.values():
        assert members


def _joined(relay: RelayService, nick: str, room: str):
    conn = _conn(relay)
    _send(relay, conn, f"/nick {nick}", f"/join {room}")
    _take(conn)
    return conn


def test_nick_moves_init_to_outside(relay) -> None:
    a = _conn(relay)
    assert a.state == S_INIT
    _send(relay, a, "/nick alice")
    assert _take(a) == ["OK"]
    assert a.state == S_OUTSIDE
    assert a.nick == "alice"
    _check_invariants(relay)


def test_nick_must_be_unique(relay) -> None:
    a = _conn(relay)
    b = _conn(relay)
    _send(relay, a, "/nick bob")
    _send(relay, b, "/nick bob")
    assert _take(a) == ["OK"]
    assert _take(b) == ["ERROR"]
    assert b.state == S_INIT
    assert relay.session_manager.nick_owner("bob") is a


@pytest.mark.parametrize("line", ["/nick", "/nick ", "/nick    ", "/nick two words"])
def test_nick_rejects_unusable_names(relay, line) -> None:
    a = _conn(relay)
    _send(relay, a, line)
    assert _take(a) == ["ERROR"]
    assert a.state == S_INIT


def test_nick_length_policy() -> None:
    strict = RelayService(RelayRuntimeConfig(nick_max_chars=4))
    try:
        a = strict.session_manager.open(None, None)
        strict.router.route_line(a, "/nick abcde")
        strict.router.route_line(a, "/nick abcd")
        assert _take(a) == ["ERROR", "OK"]
    finally:
        strict.close_all()


def test_command_names_are_case_insensitive(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "/NICK alice", "/Join lobby")
    assert _take(a) == ["OK", "JOINED alice", "OK"]


def test_same_nick_again_is_a_no_op(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    _send(relay, a, "/nick alice")
    assert _take(a) == ["OK"]


def test_join_requires_nick(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "/join lobby")
    assert _take(a) == ["ERROR"]
    assert a.state == S_INIT
    assert not relay.room_manager.has_room("lobby")


def test_join_requires_room_name(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "/nick alice", "/join", "/join   ")
    assert _take(a) == ["OK", "ERROR", "ERROR"]
    assert a.state == S_OUTSIDE


def test_join_broadcasts_before_reply(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _conn(relay)
    _send(relay, b, "/nick bob", "/join lobby")
    assert _take(b) == ["OK", "JOINED bob", "OK"]
    assert _take(a) == ["JOINED bob"]
    assert relay.room_manager.get_room_members("lobby") == {a.conn_id, b.conn_id}
    _check_invariants(relay)


def test_room_names_are_case_sensitive(relay) -> None:
    a = _joined(relay, "alice", "Lobby")
    b = _joined(relay, "bob", "lobby")
    assert a.room != b.room
    assert len(relay.room_manager.rooms) == 2


def test_message_round_trip(relay) -> None:
    a = _joined(relay, "A", "lobby")
    b = _joined(relay, "B", "lobby")
    _take(a)
    _send(relay, a, "hello")
    assert _take(b) == ["MESSAGE A hello"]
    assert _take(a) == ["MESSAGE A hello"]


def test_message_keeps_inner_spacing(relay) -> None:
    a = _joined(relay, "A", "lobby")
    _send(relay, a, "  hello   world  ")
    assert _take(a) == ["MESSAGE A hello   world"]


def test_message_outside_room_is_error(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "hello")
    _send(relay, a, "/nick alice", "hello")
    assert _take(a) == ["ERROR", "OK", "ERROR"]


def test_messages_do_not_cross_rooms(relay) -> None:
    a = _joined(relay, "alice", "one")
    b = _joined(relay, "bob", "two")
    _send(relay, a, "hi")
    assert _take(b) == []


def test_escaped_slash_is_ordinary_text(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    _send(relay, a, "///secret", "//x", "/ not a command")
    assert _take(a) == ["MESSAGE alice //secret", "MESSAGE alice /x", "ERROR"]


def test_escaped_slash_outside_room_is_error(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "//nick bob")
    assert _take(a) == ["ERROR"]
    assert a.nick is None


def test_unknown_command(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    _send(relay, a, "/dance", "/")
    assert _take(a) == ["ERROR", "ERROR"]


def test_empty_lines_are_ignored(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    _send(relay, a, "", "   ", "\r")
    assert _take(a) == []


def test_leave_requires_room(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "/leave", "/nick alice", "/leave")
    assert _take(a) == ["ERROR", "OK", "ERROR"]


def test_leave_notifies_remaining_members(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    _take(a)
    _send(relay, b, "/leave")
    assert _take(b) == ["OK"]
    assert _take(a) == ["LEFT bob"]
    assert b.state == S_OUTSIDE
    assert b.room is None
    _check_invariants(relay)


def test_last_member_leaving_deletes_room(relay) -> None:
    a = _joined(relay, "A", "lobby")
    _send(relay, a, "secret stuff", "/leave")
    assert _take(a) == ["MESSAGE A secret stuff", "OK"]
    assert not relay.room_manager.has_room("lobby")

    b = _conn(relay)
    _send(relay, b, "/nick B", "/join lobby")
    assert _take(b) == ["OK", "JOINED B", "OK"]
    assert relay.room_manager.get_room_members("lobby") == {b.conn_id}


def test_join_switches_rooms(relay) -> None:
    a = _joined(relay, "alice", "one")
    b = _joined(relay, "bob", "one")
    c = _joined(relay, "carol", "two")
    _take(a)
    _send(relay, a, "/join two")
    assert _take(b) == ["LEFT alice"]
    assert _take(c) == ["JOINED alice"]
    assert _take(a) == ["JOINED alice", "OK"]
    assert relay.room_manager.get_room_members("one") == {b.conn_id}

    _send(relay, b, "/join two")
    assert not relay.room_manager.has_room("one")
    _check_invariants(relay)


def test_rejoining_current_room(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    _take(a)
    _send(relay, a, "/join lobby")
    assert _take(b) == ["LEFT alice", "JOINED alice"]
    assert _take(a) == ["JOINED alice", "OK"]
    assert a.state == S_INSIDE


def test_rename_inside_room_broadcasts_newnick(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    _take(a)
    _send(relay, a, "/nick alicia")
    assert _take(a) == ["NEWNICK alice alicia", "OK"]
    assert _take(b) == ["NEWNICK alice alicia"]
    assert relay.session_manager.nick_owner("alice") is None
    assert relay.session_manager.nick_owner("alicia") is a

    c = _conn(relay)
    _send(relay, c, "/nick alice")
    assert _take(c) == ["OK"]
    _check_invariants(relay)


def test_rename_outside_room_is_silent(relay) -> None:
    a = _conn(relay)
    b = _joined(relay, "bob", "lobby")
    _send(relay, a, "/nick x", "/nick y")
    assert _take(a) == ["OK", "OK"]
    assert _take(b) == []
    assert a.state == S_OUTSIDE


def test_priv_delivers_only_to_target(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    c = _joined(relay, "carol", "lobby")
    _take(a)
    _take(b)
    _send(relay, a, "/priv bob see you at  noon")
    assert _take(a) == ["OK"]
    assert _take(b) == ["PRIVATE alice see you at  noon"]
    assert _take(c) == []


def test_priv_works_outside_rooms(relay) -> None:
    a = _conn(relay)
    b = _conn(relay)
    _send(relay, a, "/nick alice")
    _send(relay, b, "/nick bob")
    _take(a)
    _take(b)
    _send(relay, a, "/priv bob hi")
    assert _take(a) == ["OK"]
    assert _take(b) == ["PRIVATE alice hi"]


def test_priv_unknown_target(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    _take(a)
    _send(relay, a, "/priv carol hi")
    assert _take(a) == ["ERROR"]
    assert _take(b) == []


@pytest.mark.parametrize("line", ["/priv", "/priv bob", "/priv bob ", "/priv  "])
def test_priv_malformed(relay, line) -> None:
    a = _conn(relay)
    b = _conn(relay)
    _send(relay, a, "/nick alice")
    _send(relay, b, "/nick bob")
    _take(a)
    _send(relay, a, line)
    assert _take(a) == ["ERROR"]
    assert _take(b) == []


def test_priv_requires_sender_nick(relay) -> None:
    a = _conn(relay)
    b = _conn(relay)
    _send(relay, b, "/nick bob")
    _take(b)
    _send(relay, a, "/priv bob hi")
    assert _take(a) == ["ERROR"]
    assert _take(b) == []


def test_bye_leaves_room_and_frees_nick(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    _take(a)
    _send(relay, b, "/bye")
    assert _take(a) == ["LEFT bob"]
    assert b.closing
    assert [bytes(f.data) for f in b.outbound.frames] == [b"BYE\n"]
    assert relay.session_manager.nick_owner("bob") is None

    # Input after /bye is ignored.
    _send(relay, b, "/nick zed")
    assert [bytes(f.data) for f in b.outbound.frames] == [b"BYE\n"]

    c = _conn(relay)
    _send(relay, c, "/nick bob")
    assert _take(c) == ["OK"]
    _check_invariants(relay)


def test_bye_from_init_state(relay) -> None:
    a = _conn(relay)
    _send(relay, a, "/bye")
    assert [bytes(f.data) for f in a.outbound.frames] == [b"BYE\n"]
    assert a.closing


def test_priv_to_draining_connection_is_error(relay) -> None:
    a = _conn(relay)
    b = _conn(relay)
    _send(relay, a, "/nick alice")
    _send(relay, b, "/nick bob", "/bye")
    _take(a)
    _send(relay, a, "/priv bob hi")
    assert _take(a) == ["ERROR"]


def test_close_broadcasts_left_once(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    b = _joined(relay, "bob", "lobby")
    _take(a)
    relay.close_connection(b, "eof")
    relay.close_connection(b, "eof")
    assert _take(a) == ["LEFT bob"]
    assert b.closed
    assert relay.session_manager.get_session(b.conn_id) is None
    assert relay.session_manager.nick_owner("bob") is None
    _check_invariants(relay)


def test_close_of_last_member_deletes_room(relay) -> None:
    a = _joined(relay, "alice", "lobby")
    relay.close_connection(a, "eof")
    assert not relay.room_manager.has_room("lobby")
    assert relay.session_manager.nick_owner("alice") is None


def test_invariants_hold_through_mixed_traffic(relay) -> None:
    conns = [_conn(relay) for _ in range(4)]
    script = [
        (0, "/nick n0"),
        (1, "/join r"),
        (1, "/nick n1"),
        (1, "/join r"),
        (0, "/join r"),
        (2, "/nick n0"),
        (2, "/nick n2"),
        (2, "/join s"),
        (0, "/nick n3"),
        (3, "/nick n0"),
        (3, "/join s"),
        (1, "/leave"),
        (2, "/join r"),
        (0, "/bye"),
        (3, "hello"),
    ]
    for idx, line in script:
        relay.router.route_line(conns[idx], line)
        _check_invariants(relay)

    assert relay.room_manager.get_room_members("r") == {conns[2].conn_id}
    assert relay.room_manager.get_room_members("s") == {conns[3].conn_id}
