"""Message queueing utilities for the relay (unicast and room multicast)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .codec import encode_line
from .constants import R_ERROR

if TYPE_CHECKING:
    from .service import RelayService
    from .session import Connection


class MessageHelper:
    """
    Helper methods for queueing outbound lines.

    Handlers never write to sockets. They append (connection, payload) pairs
    to an outgoing list, which the reactor moves into per-connection send
    buffers once the line has been fully handled.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

    def queue_payload(
        self, outgoing: list[tuple[Connection, bytes]], conn: Connection, payload: bytes
    ) -> None:
        """Add a raw payload to the outgoing queue."""
        outgoing.append((conn, payload))

    def unicast(
        self, outgoing: list[tuple[Connection, bytes]], conn: Connection, text: str
    ) -> None:
        """Encode and queue one line for a single connection."""
        self.queue_payload(outgoing, conn, encode_line(text))

    def multicast(
        self,
        outgoing: list[tuple[Connection, bytes]],
        room: str,
        text: str,
        *,
        exclude: Connection | None = None,
    ) -> int:
        """Queue one line for every current member of a room.

        Members are visited once, in connection order. Returns the number of
        recipients.
        """
        payload = encode_line(text)
        members = sorted(
            self.hub.room_manager.get_room_members(room), key=lambda c: c.conn_id
        )
        sent = 0
        for member in members:
            if member is exclude:
                continue
            self.queue_payload(outgoing, member, payload)
            sent += 1
        return sent

    def emit_error(
        self, outgoing: list[tuple[Connection, bytes]], conn: Connection
    ) -> None:
        """Queue an ERROR reply."""
        self.hub.stats_manager.inc("errors_sent")
        self.unicast(outgoing, conn, R_ERROR)
