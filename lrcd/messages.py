"""Frame building and queueing utilities for the relay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import (
    E_JOINED,
    E_LEFT,
    E_MESSAGE,
    E_NEWNICK,
    E_PRIVATE,
    ENCODING,
    LINE_END,
    R_ERROR,
)
from .outbound import OutboundOverflow

if TYPE_CHECKING:
    from .service import RelayService
    from .session import Connection


def encode_line(text: str) -> bytes:
    return text.encode(ENCODING) + LINE_END


def message_event(nick: str, text: str) -> str:
    return f"{E_MESSAGE} {nick} {text}"


def joined_event(nick: str) -> str:
    return f"{E_JOINED} {nick}"


def left_event(nick: str) -> str:
    return f"{E_LEFT} {nick}"


def newnick_event(old_nick: str, new_nick: str) -> str:
    return f"{E_NEWNICK} {old_nick} {new_nick}"


def private_event(nick: str, text: str) -> str:
    return f"{E_PRIVATE} {nick} {text}"


class MessageHelper:
    """
    Helper methods for queueing frames to connections.

    Handles:
    - Encoding protocol lines
    - Per-connection queueing and write-interest arming
    - Room broadcast
    - Slow-consumer detection (outbound cap)
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lrcd.relay")

    def queue_line(self, conn: Connection, text: str) -> bool:
        """Queue one line to `conn`. Returns False if it was dropped."""
        if conn.closed:
            return False

        payload = encode_line(text)
        try:
            conn.outbound.enqueue(payload)
        except OutboundOverflow as e:
            self.log.debug("Frame dropped conn_id=%s: %s", conn.conn_id, e)
            self.hub.schedule_close(conn, "outbound overflow")
            return False

        self.hub.stats_manager.inc("frames_out")
        self.hub.want_write(conn)
        return True

    def emit_error(self, conn: Connection) -> None:
        self.hub.stats_manager.inc("errors_sent")
        self.queue_line(conn, R_ERROR)

    def broadcast(self, room: str, text: str) -> int:
        """Queue `text` to every current member of `room`. Returns recipients."""
        sent = 0
        for conn_id in list(self.hub.room_manager.get_room_members(room)):
            member = self.hub.session_manager.get_session(conn_id)
            if member is None or member.closed:
                continue
            if self.queue_line(member, text):
                sent += 1
        return sent
