from __future__ import annotations

import enum
import itertools
import logging
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .codec import LineBuffer
from .errors import StateError

if TYPE_CHECKING:
    from .service import RelayService


class ParticipationState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    IN_ROOM = "in_room"


@dataclass
class Session:
    """Per-connection protocol state.

    State only moves UNREGISTERED -> REGISTERED -> IN_ROOM and back from
    IN_ROOM to REGISTERED. The transition methods raise StateError for
    anything else, so nickname and room stay consistent with the state.
    """

    nickname: str | None = None
    state: ParticipationState = ParticipationState.UNREGISTERED
    room: str | None = None

    @property
    def registered(self) -> bool:
        return self.state is not ParticipationState.UNREGISTERED

    @property
    def in_room(self) -> bool:
        return self.state is ParticipationState.IN_ROOM

    def register(self, nickname: str) -> None:
        if self.state is not ParticipationState.UNREGISTERED:
            raise StateError("session is already registered")
        self.nickname = nickname
        self.state = ParticipationState.REGISTERED

    def rename(self, nickname: str) -> str | None:
        """Replace the nickname; returns the previous one."""
        if not self.registered:
            raise StateError("session has no nickname to change")
        old, self.nickname = self.nickname, nickname
        return old

    def enter_room(self, room: str) -> None:
        if self.state is not ParticipationState.REGISTERED:
            raise StateError("session must be registered and outside a room")
        self.room = room
        self.state = ParticipationState.IN_ROOM

    def exit_room(self) -> str | None:
        """Leave the current room; returns its name."""
        if self.state is not ParticipationState.IN_ROOM:
            raise StateError("session is not in a room")
        room, self.room = self.room, None
        self.state = ParticipationState.REGISTERED
        return room


_conn_ids = itertools.count(1)


@dataclass(eq=False)
class Connection:
    """One accepted client socket and everything the reactor keeps for it.

    Hashes by identity, so it can be used directly in room member sets and
    as a registry value.
    """

    sock: socket.socket | None
    addr: Any = None
    session: Session = field(default_factory=Session)
    decoder: LineBuffer = field(default_factory=LineBuffer)
    outbuf: bytearray = field(default_factory=bytearray)
    conn_id: int = field(default_factory=lambda: next(_conn_ids))
    # Set by /bye: stop reading, close once outbuf has drained.
    closing: bool = False
    closed: bool = False


class SessionManager:
    """
    Manages connection lifecycle for the relay.

    This class is responsible for:
    - Connection record creation at accept time
    - Connection tracking by socket
    - Releasing room membership and nickname when a session ends
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("relayd.session")
        self.connections: dict[socket.socket, Connection] = {}

    def on_connection_accepted(self, sock: socket.socket, addr: Any) -> Connection:
        conn = Connection(
            sock=sock,
            addr=addr,
            decoder=LineBuffer(self.hub.config.max_line_bytes),
        )
        self.connections[sock] = conn

        self.log.info("Session created conn=%s", self.hub._fmt_conn(conn))
        return conn

    def release(
        self, conn: Connection, outgoing: list[tuple[Connection, bytes]]
    ) -> tuple[str | None, str | None]:
        """
        Force a room leave (if in a room) and a nickname release (if registered).

        Safe to call more than once. Returns (nick, room) as they were before
        the release, for logging.
        """
        sess = conn.session
        nick = sess.nickname
        room = sess.room

        if sess.in_room:
            self.hub.router.leave_room(conn, outgoing)

        if nick is not None:
            self.hub.nicks.release(nick, conn)

        return nick, room

    def on_connection_closed(
        self, conn: Connection, outgoing: list[tuple[Connection, bytes]]
    ) -> tuple[str | None, str | None]:
        """
        Drop the connection record and run disconnect cleanup.

        Broadcasts caused by the cleanup (LEFT) are appended to outgoing.
        """
        if conn.sock is not None:
            self.connections.pop(conn.sock, None)
        return self.release(conn, outgoing)

    def clear_all(self) -> list[Connection]:
        conns = list(self.connections.values())
        self.connections.clear()
        return conns

    def get_stats(self) -> dict[str, Any]:
        total = len(self.connections)
        registered = sum(1 for c in self.connections.values() if c.session.registered)
        in_room = sum(1 for c in self.connections.values() if c.session.in_room)

        return {
            "total": total,
            "registered": registered,
            "in_room": in_room,
        }
