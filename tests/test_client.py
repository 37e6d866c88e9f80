import io

import pytest

from lrcd.client import ChatClient, escape_outgoing, format_event


@pytest.mark.parametrize(
    ("typed", "sent"),
    [
        ("hello", "hello"),
        ("/join lobby", "/join lobby"),
        ("//not a command", "///not a command"),
        ("///x", "////x"),
    ],
)
def test_escape_outgoing(typed, sent) -> None:
    assert escape_outgoing(typed) == sent


@pytest.mark.parametrize(
    ("line", "shown"),
    [
        ("MESSAGE alice hi there", "alice: hi there"),
        ("PRIVATE bob psst", "[private] bob: psst"),
        ("NEWNICK alice alicia", "alice is now known as alicia"),
        ("JOINED carol", "carol joined the room"),
        ("LEFT carol", "carol left the room"),
        ("OK", "OK"),
        ("ERROR", "ERROR"),
        ("BYE", "BYE"),
    ],
)
def test_format_event(line, shown) -> None:
    assert format_event(line) == shown


def test_handle_server_data_renders_complete_lines() -> None:
    out = io.StringIO()
    client = ChatClient("localhost", 1, stdin=io.StringIO(), stdout=out)

    client.handle_server_data(b"OK\nMESSAGE a hel")
    assert out.getvalue() == "OK\n"

    client.handle_server_data(b"lo\r\nBYE\n")
    assert out.getvalue() == "OK\na: hello\nBYE\n"
    assert client.done


def test_send_text_requires_connection() -> None:
    client = ChatClient("localhost", 1, stdin=io.StringIO(), stdout=io.StringIO())
    with pytest.raises(RuntimeError):
        client.send_text("hi")


def test_send_text_escapes_and_frames() -> None:
    class _Sock:
        def __init__(self) -> None:
            self.sent = b""

        def sendall(self, data: bytes) -> None:
            self.sent += data

    client = ChatClient("localhost", 1, stdin=io.StringIO(), stdout=io.StringIO())
    client.sock = _Sock()
    client.send_text("//slash")
    assert client.sock.sent == b"///slash\n"


class _ScriptedSock:
    def __init__(self, *results) -> None:
        self.results = list(results)

    def recv(self, _size: int) -> bytes:
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def test_read_server_renders_data() -> None:
    out = io.StringIO()
    client = ChatClient("localhost", 1, stdin=io.StringIO(), stdout=out)
    client.sock = _ScriptedSock(b"JOINED a\n")
    client.read_server()
    assert out.getvalue() == "a joined the room\n"
    assert not client.done


def test_read_server_treats_eof_as_close() -> None:
    out = io.StringIO()
    client = ChatClient("localhost", 1, stdin=io.StringIO(), stdout=out)
    client.sock = _ScriptedSock(b"")
    client.read_server()
    assert client.done
    assert out.getvalue() == "connection closed by server\n"


def test_read_server_treats_reset_as_close() -> None:
    out = io.StringIO()
    client = ChatClient("localhost", 1, stdin=io.StringIO(), stdout=out)
    client.sock = _ScriptedSock(ConnectionResetError(104, "Connection reset by peer"))
    client.read_server()
    assert client.done
    assert out.getvalue().startswith("connection closed by server")
