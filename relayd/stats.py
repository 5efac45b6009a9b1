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
    - Protocol errors and ERROR replies sent
    - Room joins/leaves and nickname changes
    - Chat and private messages forwarded
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "conns_accepted": 0,
            "conns_closed": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "lines_in": 0,
            "protocol_errors": 0,
            "errors_sent": 0,
            "joins": 0,
            "leaves": 0,
            "nick_changes": 0,
            "msgs_forwarded": 0,
            "privs_forwarded": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        session_stats = self.hub.session_manager.get_stats()
        room_stats = self.hub.room_manager.get_stats()
        top_rooms = room_stats["top_rooms"]
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"relayd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={session_stats['total']} "
            f"clients_registered={session_stats['registered']} "
            f"clients_in_room={session_stats['in_room']} "
            f"nicks={len(self.hub.nicks)}"
        )
        lines.append(
            f"rooms={room_stats['rooms_total']} memberships={room_stats['memberships']}"
        )

        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))

        lines.append(
            "io: conns_accepted={} conns_closed={} lines_in={} bytes_in={} bytes_out={}".format(
                c.get("conns_accepted", 0),
                c.get("conns_closed", 0),
                c.get("lines_in", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: joins={} leaves={} nick_changes={} msgs_fwd={} privs_fwd={} "
            "protocol_errors={} errors_sent={}".format(
                c.get("joins", 0),
                c.get("leaves", 0),
                c.get("nick_changes", 0),
                c.get("msgs_forwarded", 0),
                c.get("privs_forwarded", 0),
                c.get("protocol_errors", 0),
                c.get("errors_sent", 0),
            )
        )

        return "\n".join(lines)
