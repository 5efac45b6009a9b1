"""Room management for the relay.

This module handles room membership tracking. Rooms exist only while they
have members: a room is created by the first join and dropped from the
registry by the leave that empties it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .service import RelayService
    from .session import Connection


@dataclass(eq=False)
class Room:
    name: str
    # Membership only; connections are owned by the reactor.
    members: set[Connection] = field(default_factory=set)


class RoomManager:
    """Manages room memberships."""

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("relayd.rooms")
        self.rooms: dict[str, Room] = {}

    def __contains__(self, room: str) -> bool:
        return room in self.rooms

    def clear_all(self) -> None:
        """Clear all room state. Called during shutdown."""
        self.rooms.clear()

    def get_room_members(self, room: str) -> set[Connection]:
        """Get set of connections currently in a room."""
        r = self.rooms.get(room)
        return r.members if r is not None else set()

    def add_member(self, room: str, conn: Connection) -> Room:
        """Add a connection to a room, creating the room if needed."""
        r = self.rooms.get(room)
        if r is None:
            r = Room(room)
            self.rooms[room] = r
            self.log.debug("Room created room=%s", room)

        r.members.add(conn)
        return r

    def remove_member(self, room: str, conn: Connection) -> set[Connection]:
        """Remove a connection from a room, deleting the room if it empties.

        Returns the members that remain (empty if the room was deleted).
        """
        r = self.rooms.get(room)
        if r is None:
            return set()

        r.members.discard(conn)
        if not r.members:
            self.rooms.pop(room, None)
            self.log.debug("Room deleted room=%s", room)
            return set()

        return set(r.members)

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics."""
        rooms_total = len(self.rooms)
        memberships = sum(len(r.members) for r in self.rooms.values())
        top_rooms = sorted(
            ((name, len(r.members)) for name, r in self.rooms.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
