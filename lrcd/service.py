from __future__ import annotations

import logging
import selectors
import signal
import socket
import threading
import time
from typing import Any

from .config import RelayRuntimeConfig, validate_config
from .constants import ACCEPT_RETRY_DELAY, ENCODING
from .framing import LineTooLong
from .messages import MessageHelper
from .rooms import RoomManager
from .router import MessageRouter
from .session import Connection, SessionManager
from .stats import StatsManager


class RelayService:
    """
    Single-threaded, non-blocking relay built on `selectors`.

    All mutable state (connection table, nickname index, rooms) is owned by
    this object and only touched from the thread running `poll_once`, so no
    locking is needed. Handlers run to completion between selects.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("lrcd.relay")

        self._shutdown = threading.Event()
        self.selector = selectors.DefaultSelector()

        # Statistics tracking
        self.stats_manager = StatsManager(self)

        # Connection table and nickname registry
        self.session_manager = SessionManager(self)

        # Room membership
        self.room_manager = RoomManager(self)

        # Outbound frame queueing and broadcast
        self.message_helper = MessageHelper(self)

        # Protocol state machine
        self.router = MessageRouter(self)

        self._listener: socket.socket | None = None
        self._pending_close: dict[int, tuple[Connection, str]] = {}
        self._accept_resume_at: float | None = None

    @property
    def address(self) -> Any:
        """Bound listener address, or None before `start()`."""
        if self._listener is None:
            return None
        return self._listener.getsockname()

    def _fmt_peer(self, addr: Any) -> str:
        if isinstance(addr, tuple) and len(addr) >= 2:
            return f"{addr[0]}:{addr[1]}"
        return "-" if not addr else str(addr)

    def start(self) -> None:
        validate_config(self.config)
        self.stats_manager.set_start_time()

        host = str(self.config.host)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        lsock = socket.socket(family, socket.SOCK_STREAM)
        try:
            lsock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            lsock.bind((host, int(self.config.port)))
            lsock.listen(int(self.config.backlog))
            lsock.setblocking(False)
        except OSError:
            lsock.close()
            raise

        self._listener = lsock
        self.selector.register(lsock, selectors.EVENT_READ, data=None)

        self.log.info("Relay listening on %s", self._fmt_peer(lsock.getsockname()))
        self.log.info(
            "Policy max_line_bytes=%s max_outbound_bytes=%s nick_max_chars=%s max_room_name_len=%s",
            self.config.max_line_bytes,
            self.config.max_outbound_bytes,
            self.config.nick_max_chars,
            self.config.max_room_name_len,
        )

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, lambda *_: self.stop())
            signal.signal(signal.SIGTERM, lambda *_: self.stop())

        try:
            while not self._shutdown.is_set():
                self.poll_once(timeout=1.0)
        finally:
            self.close_all()

    def stop(self) -> None:
        self._shutdown.set()

    def poll_once(self, timeout: float | None = None) -> int:
        """
        Run one loop iteration: wait for readiness, dispatch every ready
        event, then perform deferred closes. Returns the number of events.
        """
        self._resume_accepting()
        if self._accept_resume_at is not None:
            wait = max(0.0, self._accept_resume_at - time.monotonic())
            timeout = wait if timeout is None else min(timeout, wait)

        events = self.selector.select(timeout)
        for key, mask in events:
            if key.data is None:
                self._accept(key.fileobj)
                continue

            conn = self.session_manager.get_session(key.data)
            if conn is None or conn.closed:
                continue

            if mask & selectors.EVENT_READ:
                self._on_readable(conn)
            if mask & selectors.EVENT_WRITE and not conn.closed:
                self._on_writable(conn)

        self._run_pending_closes()
        return len(events)

    def _accept(self, lsock: Any) -> None:
        while True:
            try:
                sock, addr = lsock.accept()
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                self.log.warning(
                    "Accept failed: %s; pausing accepts for %.1fs", e, ACCEPT_RETRY_DELAY
                )
                self._pause_accepting()
                return
            self.adopt(sock, addr)

    def _pause_accepting(self) -> None:
        # The listener stays readable while the backlog is non-empty, so keep
        # it out of the selector until the retry time.
        if self._listener is None or self._accept_resume_at is not None:
            return
        try:
            self.selector.unregister(self._listener)
        except (KeyError, ValueError):
            return
        self._accept_resume_at = time.monotonic() + ACCEPT_RETRY_DELAY

    def _resume_accepting(self) -> None:
        if self._accept_resume_at is None or time.monotonic() < self._accept_resume_at:
            return
        self._accept_resume_at = None
        if self._listener is not None:
            self.selector.register(self._listener, selectors.EVENT_READ, data=None)
            self.log.info("Accepting connections again")

    def adopt(self, sock: socket.socket, addr: Any = None) -> Connection:
        """Register an already-connected socket as a new client connection."""
        sock.setblocking(False)
        conn = self.session_manager.open(sock, addr)
        self.selector.register(sock, selectors.EVENT_READ, data=conn.conn_id)
        conn.events = selectors.EVENT_READ
        self.stats_manager.inc("conns_accepted")
        self.log.info(
            "Connection accepted conn_id=%s peer=%s", conn.conn_id, self._fmt_peer(addr)
        )
        return conn

    def _on_readable(self, conn: Connection) -> None:
        try:
            data = conn.sock.recv(int(self.config.read_chunk_bytes))
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            self.close_connection(conn, f"read error: {e}")
            return

        if not data:
            self.close_connection(conn, "eof")
            return

        self.stats_manager.inc("bytes_in", len(data))
        conn.inbound.feed(data)

        try:
            for raw in conn.inbound.lines():
                self._deliver_line(conn, raw)
                if not conn.live:
                    break
        except LineTooLong as e:
            self.stats_manager.inc("lines_too_long")
            self.log.warning("Line too long conn_id=%s: %s", conn.conn_id, e)
            self.close_connection(conn, "line too long")

    def _deliver_line(self, conn: Connection, raw: bytes) -> None:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        try:
            line = raw.decode(ENCODING)
        except UnicodeDecodeError as e:
            self.stats_manager.inc("lines_bad")
            self.log.debug("Undecodable line conn_id=%s bytes=%s err=%s", conn.conn_id, len(raw), e)
            return
        self.router.route_line(conn, line)

    def _on_writable(self, conn: Connection) -> None:
        before = conn.outbound.pending_bytes
        try:
            drained = conn.outbound.flush(conn.sock.send)
        except OSError as e:
            self.close_connection(conn, f"write error: {e}")
            return
        self.stats_manager.inc("bytes_out", before - conn.outbound.pending_bytes)

        if drained and conn.closing:
            self._teardown(conn, "bye")
            return
        self._update_interest(conn)

    def want_write(self, conn: Connection) -> None:
        """Arm write interest for a connection that has pending output."""
        self._update_interest(conn)

    def _update_interest(self, conn: Connection) -> None:
        # Write interest only while output is pending, otherwise select would
        # report the socket writable on every iteration.
        if conn.closed or conn.sock is None:
            return
        events = 0
        if not conn.closing:
            events |= selectors.EVENT_READ
        if conn.outbound:
            events |= selectors.EVENT_WRITE
        if events == conn.events or events == 0:
            return
        self.selector.modify(conn.sock, events, data=conn.conn_id)
        conn.events = events

    def release_connection(self, conn: Connection) -> None:
        """Remove a connection from its room and free its nickname.

        Idempotent: a second call neither broadcasts nor raises.
        """
        self.router.leave_room(conn)
        self.session_manager.release_nick(conn)

    def begin_drain(self, conn: Connection) -> None:
        """Stop reading from `conn` and close it once its output is flushed."""
        if conn.closed:
            return
        conn.closing = True
        conn.inbound.clear()
        if not conn.outbound:
            self._teardown(conn, "bye")
            return
        self._update_interest(conn)

    def schedule_close(self, conn: Connection, reason: str) -> None:
        """Close `conn` at the end of the current loop iteration."""
        if conn.closed or conn.conn_id in self._pending_close:
            return
        self.stats_manager.inc("overflow_closes")
        self.log.warning(
            "Scheduling close conn_id=%s nick=%r reason=%s", conn.conn_id, conn.nick, reason
        )
        self._pending_close[conn.conn_id] = (conn, reason)

    def _run_pending_closes(self) -> None:
        while self._pending_close:
            conn_id = next(iter(self._pending_close))
            conn, reason = self._pending_close.pop(conn_id)
            self.close_connection(conn, reason)

    def close_connection(self, conn: Connection, reason: str) -> None:
        """Abortive close: release registries, discard output, close the socket."""
        if conn.closed:
            return
        self.release_connection(conn)
        self._teardown(conn, reason)

    def _teardown(self, conn: Connection, reason: str) -> None:
        if conn.closed:
            return
        conn.closed = True
        conn.inbound.clear()
        conn.outbound.clear()

        if conn.sock is not None:
            try:
                self.selector.unregister(conn.sock)
            except (KeyError, ValueError):
                pass
            try:
                conn.sock.close()
            except OSError:
                pass

        self.session_manager.remove(conn)
        self.stats_manager.inc("conns_closed")
        self.log.info(
            "Connection closed conn_id=%s peer=%s nick=%r reason=%s",
            conn.conn_id,
            self._fmt_peer(conn.addr),
            conn.nick,
            reason,
        )

    def close_all(self) -> None:
        """Tear down every connection and the listener without notifications."""
        conns = self.session_manager.clear_all()
        self.room_manager.clear_all()
        self._pending_close.clear()

        for conn in conns:
            self._teardown(conn, "server shutdown")

        if self._listener is not None:
            try:
                self.selector.unregister(self._listener)
            except (KeyError, ValueError):
                pass
            try:
                self._listener.close()
            except OSError:
                pass
            self._listener = None

        self.log.info("Relay stopped\n%s", self.stats_manager.format_stats())
        self.selector.close()
