"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Manages relay statistics collection and reporting.

    Tracks counters for:
    - Connections accepted/closed
    - Bytes and lines in/out
    - Errors sent
    - Room joins/leaves
    - Messages and private messages forwarded
    - Connections dropped for protocol limits
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = hub.log

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "conns_accepted": 0,
            "conns_closed": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "lines_in": 0,
            "lines_bad": 0,
            "frames_out": 0,
            "errors_sent": 0,
            "joins": 0,
            "leaves": 0,
            "nick_changes": 0,
            "msgs_forwarded": 0,
            "privs_forwarded": 0,
            "lines_too_long": 0,
            "overflow_closes": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        return int(self._counters.get(key, 0))

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        session_stats = self.hub.session_manager.get_stats()
        room_stats = self.hub.room_manager.get_stats()
        top_rooms = room_stats["top_rooms"]
        c = dict(self._counters)

        lines: list[str] = []
        lines.append(f"lrcd {__version__} stats")
        if self.started_wall_time is not None:
            started = time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.started_wall_time))
            lines.append(f"started={started} uptime_s={uptime_s:.1f}")
        else:
            lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={session_stats['total']} "
            f"clients_named={session_stats['named']} "
            f"clients_draining={session_stats['draining']} "
            f"pending_out_bytes={session_stats['pending_out_bytes']}"
        )
        lines.append(f"rooms={room_stats['rooms_total']} memberships={room_stats['memberships']}")

        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))

        lines.append(
            f"limits: max_line_bytes={self.hub.config.max_line_bytes} "
            f"max_outbound_bytes={self.hub.config.max_outbound_bytes}"
        )
        lines.append(
            "io: conns_accepted={} conns_closed={} bytes_in={} bytes_out={} lines_in={} "
            "lines_bad={} frames_out={}".format(
                c.get("conns_accepted", 0),
                c.get("conns_closed", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
                c.get("lines_in", 0),
                c.get("lines_bad", 0),
                c.get("frames_out", 0),
            )
        )
        lines.append(
            "events: joins={} leaves={} nick_changes={} msgs_fwd={} privs_fwd={} errors_sent={}".format(
                c.get("joins", 0),
                c.get("leaves", 0),
                c.get("nick_changes", 0),
                c.get("msgs_forwarded", 0),
                c.get("privs_forwarded", 0),
                c.get("errors_sent", 0),
            )
        )
        lines.append(
            "drops: lines_too_long={} overflow_closes={}".format(
                c.get("lines_too_long", 0),
                c.get("overflow_closes", 0),
            )
        )

        return "\n".join(lines)
