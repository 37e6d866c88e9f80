from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import (
    C_BYE,
    C_JOIN,
    C_LEAVE,
    C_NICK,
    C_PRIV,
    CMD_PREFIX,
    ESCAPED_PREFIX,
    R_BYE,
    R_OK,
    S_INIT,
    S_INSIDE,
    S_OUTSIDE,
)
from .messages import (
    joined_event,
    left_event,
    message_event,
    newnick_event,
    private_event,
)
from .util import normalize_name

if TYPE_CHECKING:
    from .service import RelayService
    from .session import Connection


class MessageRouter:
    """
    Per-connection protocol state machine.

    This class is responsible for:
    - Applying the leading-slash escape rule
    - Dispatching commands (/nick, /join, /leave, /bye, /priv)
    - Broadcasting room messages
    - Keeping nickname and room registries consistent with connection state

    Broadcasts caused by a command are queued before the sender's own reply.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lrcd.router")

    def route_line(self, conn: Connection, line: str) -> None:
        """Main entry point for one inbound line (trailing CR already removed)."""
        if not conn.live:
            return

        self.hub.stats_manager.inc("lines_in")

        line = line.strip()
        if not line:
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn_id=%s nick=%r state=%s line=%r",
                conn.conn_id,
                conn.nick,
                conn.state,
                line,
            )

        if line.startswith(ESCAPED_PREFIX):
            self._handle_message(conn, line[1:])
            return

        if not line.startswith(CMD_PREFIX):
            self._handle_message(conn, line)
            return

        name, _, arg = line[1:].partition(" ")
        cmd = name.lower()

        if cmd == C_NICK:
            self._handle_nick(conn, arg)
        elif cmd == C_JOIN:
            self._handle_join(conn, arg)
        elif cmd == C_LEAVE:
            self._handle_leave(conn)
        elif cmd == C_BYE:
            self._handle_bye(conn)
        elif cmd == C_PRIV:
            self._handle_priv(conn, arg)
        else:
            self.hub.message_helper.emit_error(conn)

    def _handle_message(self, conn: Connection, text: str) -> None:
        """Handle an ordinary (non-command) line."""
        if conn.state != S_INSIDE or conn.room is None or conn.nick is None:
            self.hub.message_helper.emit_error(conn)
            return

        recipients = self.hub.message_helper.broadcast(conn.room, message_event(conn.nick, text))
        self.hub.stats_manager.inc("msgs_forwarded")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Forwarded nick=%r room=%s recipients=%s",
                conn.nick,
                conn.room,
                recipients,
            )

    def _handle_nick(self, conn: Connection, arg: str) -> None:
        """Handle /nick <name>."""
        nick = normalize_name(arg, max_chars=self.hub.config.nick_max_chars)
        if nick is None or not self.hub.session_manager.is_nick_available(nick, conn):
            self.hub.message_helper.emit_error(conn)
            return

        if nick == conn.nick:
            self.hub.message_helper.queue_line(conn, R_OK)
            return

        old_nick = self.hub.session_manager.set_nick(conn, nick)
        self.hub.stats_manager.inc("nick_changes")

        if old_nick is None:
            conn.state = S_OUTSIDE
        elif conn.state == S_INSIDE and conn.room is not None:
            self.hub.message_helper.broadcast(conn.room, newnick_event(old_nick, nick))

        self.log.info("NICK conn_id=%s old=%r new=%r", conn.conn_id, old_nick, nick)
        self.hub.message_helper.queue_line(conn, R_OK)

    def _handle_join(self, conn: Connection, arg: str) -> None:
        """Handle /join <room>."""
        room = normalize_name(arg, max_chars=self.hub.config.max_room_name_len)
        if conn.state == S_INIT or conn.nick is None or room is None:
            self.hub.message_helper.emit_error(conn)
            return

        if conn.room is not None:
            self.leave_room(conn)

        self.hub.room_manager.add_member(room, conn.conn_id)
        conn.room = room
        conn.state = S_INSIDE
        self.hub.stats_manager.inc("joins")

        self.hub.message_helper.broadcast(room, joined_event(conn.nick))

        self.log.info("JOIN conn_id=%s nick=%r room=%s", conn.conn_id, conn.nick, room)
        self.hub.message_helper.queue_line(conn, R_OK)

    def _handle_leave(self, conn: Connection) -> None:
        """Handle /leave."""
        if conn.state != S_INSIDE or conn.room is None:
            self.hub.message_helper.emit_error(conn)
            return

        self.leave_room(conn)
        self.hub.message_helper.queue_line(conn, R_OK)

    def _handle_bye(self, conn: Connection) -> None:
        """Handle /bye: release everything, acknowledge, then drain and close."""
        self.hub.release_connection(conn)
        self.hub.message_helper.queue_line(conn, R_BYE)
        self.log.info("BYE conn_id=%s nick=%r", conn.conn_id, conn.nick)
        self.hub.begin_drain(conn)

    def _handle_priv(self, conn: Connection, arg: str) -> None:
        """Handle /priv <nick> <text>."""
        if conn.state == S_INIT or conn.nick is None:
            self.hub.message_helper.emit_error(conn)
            return

        target_nick, _, text = arg.lstrip().partition(" ")
        if not target_nick or not text:
            self.hub.message_helper.emit_error(conn)
            return

        target = self.hub.session_manager.nick_owner(target_nick)
        if target is None or not target.live:
            self.hub.message_helper.emit_error(conn)
            return

        self.hub.message_helper.queue_line(target, private_event(conn.nick, text))
        self.hub.stats_manager.inc("privs_forwarded")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Private from=%r to=%r conn_id=%s",
                conn.nick,
                target_nick,
                target.conn_id,
            )

        self.hub.message_helper.queue_line(conn, R_OK)

    def leave_room(self, conn: Connection) -> None:
        """
        Take `conn` out of its current room and notify the remaining members.

        Safe to call when the connection is not in a room.
        """
        room = conn.room
        if room is None:
            return

        conn.room = None
        if conn.state == S_INSIDE:
            conn.state = S_OUTSIDE
        self.hub.stats_manager.inc("leaves")

        deleted = self.hub.room_manager.remove_member(room, conn.conn_id)
        if not deleted and conn.nick is not None:
            self.hub.message_helper.broadcast(room, left_event(conn.nick))

        self.log.info("LEAVE conn_id=%s nick=%r room=%s", conn.conn_id, conn.nick, room)
