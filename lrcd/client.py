"""Minimal terminal client for the relay.

Speaks the line protocol on one socket and renders server events for a
human. The stdin/socket multiplexing relies on selectable stdin (POSIX).
"""

from __future__ import annotations

import argparse
import selectors
import socket
import sys
from typing import TextIO

from .constants import (
    CMD_PREFIX,
    E_JOINED,
    E_LEFT,
    E_MESSAGE,
    E_NEWNICK,
    E_PRIVATE,
    ENCODING,
    ESCAPED_PREFIX,
    R_BYE,
)
from .framing import FrameAssembler
from .messages import encode_line


def escape_outgoing(text: str) -> str:
    """Apply the leading-slash escape to a typed line before sending it."""
    if text.startswith(ESCAPED_PREFIX):
        return CMD_PREFIX + text
    return text


def format_event(line: str) -> str:
    """Render one server line as human-readable text."""
    kind, _, rest = line.partition(" ")
    if kind == E_MESSAGE:
        nick, _, text = rest.partition(" ")
        return f"{nick}: {text}"
    if kind == E_PRIVATE:
        nick, _, text = rest.partition(" ")
        return f"[private] {nick}: {text}"
    if kind == E_NEWNICK:
        old, _, new = rest.partition(" ")
        return f"{old} is now known as {new}"
    if kind == E_JOINED and rest:
        return f"{rest} joined the room"
    if kind == E_LEFT and rest:
        return f"{rest} left the room"
    return line


class ChatClient:
    """Relays typed lines to the server and prints what comes back."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.sock: socket.socket | None = None
        self.inbound = FrameAssembler(max_line_bytes=0)
        self.done = False

    def connect(self) -> None:
        self.sock = socket.create_connection((self.host, self.port))

    def send_text(self, text: str) -> None:
        if self.sock is None:
            raise RuntimeError("not connected")
        self.sock.sendall(encode_line(escape_outgoing(text)))

    def handle_server_data(self, data: bytes) -> None:
        self.inbound.feed(data)
        for raw in self.inbound.lines():
            line = raw.decode(ENCODING, "replace").rstrip("\r")
            self.stdout.write(format_event(line) + "\n")
            if line == R_BYE:
                self.done = True
        self.stdout.flush()

    def read_server(self) -> None:
        """Read once from the socket; EOF or a reset ends the session."""
        try:
            data = self.sock.recv(4096)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            self.stdout.write(f"connection closed by server ({e})\n")
            self.stdout.flush()
            self.done = True
            return
        if not data:
            self.stdout.write("connection closed by server\n")
            self.stdout.flush()
            self.done = True
            return
        self.handle_server_data(data)

    def run(self) -> None:
        if self.sock is None:
            self.connect()

        sel = selectors.DefaultSelector()
        sel.register(self.sock, selectors.EVENT_READ, data="server")
        sel.register(self.stdin, selectors.EVENT_READ, data="stdin")
        try:
            while not self.done:
                for key, _ in sel.select():
                    if key.data == "server":
                        self.read_server()
                        if self.done:
                            break
                    else:
                        text = self.stdin.readline()
                        if not text:
                            # stdin closed: leave politely and wait for BYE.
                            sel.unregister(self.stdin)
                            self.send_text("/bye")
                            continue
                        text = text.rstrip("\r\n")
                        if text.strip():
                            self.send_text(text)
        except KeyboardInterrupt:
            try:
                self.send_text("/bye")
            except OSError:
                pass
        finally:
            sel.close()
            self.sock.close()
            self.sock = None


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="lrc", description="Terminal client for an lrcd relay")
    p.add_argument("host", help="Relay host name or address")
    p.add_argument("port", type=int, help="Relay TCP port")
    args = p.parse_args(sys.argv[1:] if argv is None else argv)

    client = ChatClient(args.host, args.port)
    try:
        client.connect()
    except OSError as e:
        print(f"lrc: cannot connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        raise SystemExit(1) from e
    client.run()


if __name__ == "__main__":
    main()
