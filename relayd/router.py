from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import decode_line
from .commands import Command, parse_line
from .constants import (
    CMD_BYE,
    CMD_JOIN,
    CMD_LEAVE,
    CMD_NICK,
    CMD_PRIV,
    R_BYE,
    R_JOINED,
    R_LEFT,
    R_MESSAGE,
    R_NEWNICK,
    R_OK,
    R_PRIVATE,
)
from .errors import (
    NicknameConflict,
    ProtocolError,
    RelayError,
    StateError,
    TargetNotFound,
)
from .replies import make_reply
from .util import normalize_nick, normalize_room

if TYPE_CHECKING:
    from .service import RelayService
    from .session import Connection


class MessageRouter:
    """
    Handles line dispatching for the relay.

    This class is responsible for:
    - Decoding incoming lines
    - Dispatching commands (/nick, /join, /leave, /priv, /bye) and chat text
    - Applying the participation-state policy of each command
    - Queueing replies and room broadcasts

    Handlers raise RelayError subclasses before changing any state; every
    such error is answered with ERROR to the sender.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("relayd.router")

    def route_line(
        self,
        conn: Connection,
        data: bytes,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Main entry point for one complete line received from conn."""
        self.hub.stats_manager.inc("lines_in")

        try:
            line = decode_line(data)
            if not line:
                return

            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug(
                    "RX conn=%s nick=%r state=%s line=%r",
                    self.hub._fmt_conn(conn),
                    conn.session.nickname,
                    conn.session.state.value,
                    line,
                )

            cmd = parse_line(line)
            if cmd is None:
                self._handle_message(conn, line, outgoing)
            else:
                self._dispatch(conn, cmd, outgoing)
        except RelayError as e:
            if isinstance(e, ProtocolError):
                self.hub.stats_manager.inc("protocol_errors")
            self.log.debug(
                "Rejected line conn=%s err=%s: %s",
                self.hub._fmt_conn(conn),
                type(e).__name__,
                e,
            )
            self.hub.message_helper.emit_error(outgoing, conn)

    def _dispatch(
        self,
        conn: Connection,
        cmd: Command,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        if cmd.verb == CMD_NICK:
            self._handle_nick(conn, cmd.args[0], outgoing)
        elif cmd.verb == CMD_JOIN:
            self._handle_join(conn, cmd.args[0], outgoing)
        elif cmd.verb == CMD_LEAVE:
            self._handle_leave(conn, outgoing)
        elif cmd.verb == CMD_PRIV:
            self._handle_priv(conn, cmd.args[0], cmd.text or "", outgoing)
        elif cmd.verb == CMD_BYE:
            self._handle_bye(conn, outgoing)
        else:
            raise ProtocolError(f"unhandled command {cmd.verb!r}")

    def _handle_nick(
        self,
        conn: Connection,
        name: str,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Handle /nick <name>."""
        nick = normalize_nick(name, self.hub.config.nick_max_chars)
        if nick is None:
            raise ProtocolError("invalid nickname")

        if nick in self.hub.nicks:
            raise NicknameConflict(f"nickname {nick!r} is in use")

        sess = conn.session
        helper = self.hub.message_helper

        if not sess.registered:
            self.hub.nicks.bind(nick, conn)
            sess.register(nick)
            helper.unicast(outgoing, conn, R_OK)
            self.log.info("NICK conn=%s nick=%r", self.hub._fmt_conn(conn), nick)
            return

        old = sess.nickname
        self.hub.nicks.rename(old, nick, conn)
        sess.rename(nick)
        self.hub.stats_manager.inc("nick_changes")
        helper.unicast(outgoing, conn, R_OK)

        if sess.in_room and sess.room is not None:
            helper.multicast(outgoing, sess.room, make_reply(R_NEWNICK, old or "", nick))

        self.log.info(
            "NICK conn=%s old=%r new=%r room=%s",
            self.hub._fmt_conn(conn),
            old,
            nick,
            sess.room,
        )

    def _handle_join(
        self,
        conn: Connection,
        name: str,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Handle /join <room>."""
        room = normalize_room(name, self.hub.config.max_room_name_len)
        if room is None:
            raise ProtocolError("invalid room name")

        sess = conn.session
        # Checked before the room is looked up, so a rejected join never
        # leaves an empty room behind.
        if not sess.registered:
            raise StateError("/join requires a nickname")

        if sess.in_room:
            self.leave_room(conn, outgoing)

        self.hub.room_manager.add_member(room, conn)
        sess.enter_room(room)
        self.hub.stats_manager.inc("joins")

        helper = self.hub.message_helper
        helper.unicast(outgoing, conn, R_OK)
        helper.multicast(outgoing, room, make_reply(R_JOINED, sess.nickname or ""))

        self.log.info(
            "JOIN conn=%s nick=%r room=%s",
            self.hub._fmt_conn(conn),
            sess.nickname,
            room,
        )

    def _handle_leave(
        self,
        conn: Connection,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Handle /leave."""
        if not conn.session.in_room:
            raise StateError("/leave requires being in a room")

        self.leave_room(conn, outgoing)
        self.hub.message_helper.unicast(outgoing, conn, R_OK)

    def leave_room(
        self,
        conn: Connection,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """
        Take conn out of its current room without replying to it.

        Remaining members are told LEFT; if nobody remains the room is gone
        and nothing is broadcast. Used by /leave, by /join when switching
        rooms, and by disconnect cleanup.
        """
        sess = conn.session
        room = sess.exit_room()
        if room is None:
            return

        remaining = self.hub.room_manager.remove_member(room, conn)
        self.hub.stats_manager.inc("leaves")

        if remaining:
            self.hub.message_helper.multicast(
                outgoing,
                room,
                make_reply(R_LEFT, sess.nickname or ""),
                exclude=conn,
            )

        self.log.info(
            "LEAVE conn=%s nick=%r room=%s remaining=%s",
            self.hub._fmt_conn(conn),
            sess.nickname,
            room,
            len(remaining),
        )

    def _handle_priv(
        self,
        conn: Connection,
        target: str,
        text: str,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Handle /priv <nick> <message...>."""
        sess = conn.session
        if not sess.registered:
            raise StateError("/priv requires a nickname")

        target_conn = self.hub.nicks.lookup(target)
        if target_conn is None:
            raise TargetNotFound(f"no such nickname {target!r}")

        self.hub.message_helper.unicast(
            outgoing, target_conn, make_reply(R_PRIVATE, sess.nickname or "", text)
        )
        self.hub.stats_manager.inc("privs_forwarded")

    def _handle_bye(
        self,
        conn: Connection,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Handle /bye: clean up, say BYE, close once BYE has been sent."""
        nick, room = self.hub.session_manager.release(conn, outgoing)
        self.hub.message_helper.unicast(outgoing, conn, R_BYE)
        conn.closing = True

        self.log.info(
            "BYE conn=%s nick=%r room=%s",
            self.hub._fmt_conn(conn),
            nick,
            room,
        )

    def _handle_message(
        self,
        conn: Connection,
        line: str,
        outgoing: list[tuple[Connection, bytes]],
    ) -> None:
        """Handle a plain chat line."""
        sess = conn.session
        if not sess.in_room or sess.room is None:
            raise StateError("chat text requires being in a room")

        self.hub.message_helper.multicast(
            outgoing, sess.room, make_reply(R_MESSAGE, sess.nickname or "", line)
        )
        self.hub.stats_manager.inc("msgs_forwarded")
