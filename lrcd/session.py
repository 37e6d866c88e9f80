from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .constants import S_INIT
from .framing import FrameAssembler
from .outbound import OutputQueue

if TYPE_CHECKING:
    from .service import RelayService


@dataclass(eq=False)
class Connection:
    """
    State for one accepted socket.

    For live connections `room` is set exactly when `state` is inside, and
    `nick` is set exactly when `state` is outside or inside.
    """

    conn_id: int
    sock: socket.socket | None
    addr: Any
    inbound: FrameAssembler
    outbound: OutputQueue
    nick: str | None = None
    room: str | None = None
    state: str = S_INIT
    # /bye was acknowledged; the socket stays open only to drain output.
    closing: bool = False
    closed: bool = False
    events: int = field(default=0, repr=False)

    @property
    def live(self) -> bool:
        return not (self.closing or self.closed)


class SessionManager:
    """
    Connection table and nickname registry for the relay.

    This class is responsible for:
    - Allocating stable connection ids
    - Creating per-connection framing and output state
    - Keeping the nickname -> connection index unique
    - Dropping connections from the table on teardown
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lrcd.session")
        self.sessions: dict[int, Connection] = {}
        self._index_by_nick: dict[str, int] = {}
        self._next_id = 1

    def open(self, sock: socket.socket | None, addr: Any = None) -> Connection:
        """Create and register a new connection in the init state."""
        conn = Connection(
            conn_id=self._next_id,
            sock=sock,
            addr=addr,
            inbound=FrameAssembler(self.hub.config.max_line_bytes),
            outbound=OutputQueue(self.hub.config.max_outbound_bytes),
        )
        self._next_id += 1
        self.sessions[conn.conn_id] = conn
        self.log.debug("Session created conn_id=%s peer=%s", conn.conn_id, addr)
        return conn

    def get_session(self, conn_id: int) -> Connection | None:
        return self.sessions.get(conn_id)

    def remove(self, conn: Connection) -> None:
        """Drop a connection from the table, releasing its nickname if still held."""
        self.release_nick(conn)
        self.sessions.pop(conn.conn_id, None)

    def nick_owner(self, nick: str) -> Connection | None:
        """Look up the live connection that owns `nick`."""
        conn_id = self._index_by_nick.get(nick)
        if conn_id is None:
            return None
        return self.sessions.get(conn_id)

    def is_nick_available(self, nick: str, conn: Connection) -> bool:
        owner = self.nick_owner(nick)
        return owner is None or owner is conn

    def set_nick(self, conn: Connection, new_nick: str) -> str | None:
        """
        Move `conn` to `new_nick`, releasing its previous entry.

        Callers must check availability first. Returns the previous nickname.
        """
        owner = self.nick_owner(new_nick)
        if owner is not None and owner is not conn:
            raise ValueError(f"nickname {new_nick!r} is taken")

        old_nick = conn.nick
        if old_nick is not None and self._index_by_nick.get(old_nick) == conn.conn_id:
            self._index_by_nick.pop(old_nick, None)

        self._index_by_nick[new_nick] = conn.conn_id
        conn.nick = new_nick
        return old_nick

    def release_nick(self, conn: Connection) -> str | None:
        """Free the connection's nickname for reuse. Safe to call repeatedly."""
        nick = conn.nick
        if nick is not None and self._index_by_nick.get(nick) == conn.conn_id:
            self._index_by_nick.pop(nick, None)
            return nick
        return None

    def nicks(self) -> list[str]:
        return sorted(self._index_by_nick)

    def clear_all(self) -> list[Connection]:
        """Clear all sessions and return them for teardown."""
        conns = list(self.sessions.values())
        self.sessions.clear()
        self._index_by_nick.clear()
        return conns

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics for monitoring."""
        total = len(self.sessions)
        named = sum(1 for c in self.sessions.values() if c.nick is not None and c.live)
        draining = sum(1 for c in self.sessions.values() if c.closing)
        pending = sum(c.outbound.pending_bytes for c in self.sessions.values())

        return {
            "total": total,
            "named": named,
            "draining": draining,
            "indexed_by_nick": len(self._index_by_nick),
            "pending_out_bytes": pending,
        }
