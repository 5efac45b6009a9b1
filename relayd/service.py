from __future__ import annotations

import logging
import selectors
import signal
import socket
import threading
import time

from .codec import encode_line
from .config import RelayRuntimeConfig
from .constants import R_BYE
from .errors import LineTooLong, TransportError
from .messages import MessageHelper
from .nicks import NickRegistry
from .rooms import RoomManager
from .router import MessageRouter
from .session import Connection, SessionManager
from .stats import StatsManager


class RelayService:
    """Single-threaded chat relay built on a selectors event loop.

    The selector poll is the only place the loop waits. Each complete line
    is dispatched to completion before the next readiness event is looked
    at, so the nickname and room registries need no locking. Replies are
    queued per connection and written when the socket accepts them.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("relayd.service")

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager(self)

        # Registries shared by all connections; only touched from the loop.
        self.nicks = NickRegistry()
        self.room_manager = RoomManager(self)

        # Connection lifecycle
        self.session_manager = SessionManager(self)

        # Reply queueing (unicast / room multicast)
        self.message_helper = MessageHelper(self)

        # Line dispatching
        self.router = MessageRouter(self)

        self.selector: selectors.BaseSelector | None = None
        self._listener: socket.socket | None = None
        self._last_stats_log: float | None = None

    def _fmt_conn(self, conn: Connection) -> str:
        addr = conn.addr
        if isinstance(addr, tuple) and len(addr) >= 2:
            return f"{addr[0]}:{addr[1]}#{conn.conn_id}"
        return f"#{conn.conn_id}"

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound (host, port) of the listening socket, once started."""
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        """Bind and register the listening socket.

        Raises OSError if the port cannot be bound.
        """
        self.stats_manager.set_start_time()
        self._last_stats_log = time.monotonic()

        lsock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            lsock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            lsock.bind((self.config.host, int(self.config.port)))
            lsock.listen(int(self.config.listen_backlog))
            lsock.setblocking(False)
        except OSError:
            lsock.close()
            raise

        self._listener = lsock
        self.selector = selectors.DefaultSelector()
        self.selector.register(lsock, selectors.EVENT_READ, data=None)

        host, port = self.address or ("", 0)
        self.log.info("Listening on %s:%s", host or "*", port)
        self.log.info(
            "Policy nick_max_chars=%s max_room_name_len=%s max_line_bytes=%s max_outbuf_bytes=%s",
            self.config.nick_max_chars,
            self.config.max_room_name_len,
            self.config.max_line_bytes,
            self.config.max_outbuf_bytes,
        )

    def run_forever(self) -> None:
        if self.selector is None:
            self.start()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, lambda *_: self.stop())
            signal.signal(signal.SIGTERM, lambda *_: self.stop())

        try:
            while not self._shutdown.is_set():
                self.poll_once(float(self.config.select_timeout_s))
        finally:
            self.close()

    def stop(self) -> None:
        """Ask the loop to exit after the current poll."""
        self._shutdown.set()

    def poll_once(self, timeout: float | None = None) -> None:
        """Wait for readiness once and handle every ready socket."""
        if self.selector is None:
            raise RuntimeError("service is not started")

        events = self.selector.select(timeout=timeout)
        for key, mask in events:
            if key.data is None:
                self._accept()
                continue

            conn: Connection = key.data
            if conn.closed:
                continue
            if mask & selectors.EVENT_READ and not conn.closing:
                self._on_readable(conn)
            if mask & selectors.EVENT_WRITE and not conn.closed:
                self._flush(conn)

        self._maybe_log_stats()

    def close(self) -> None:
        """Close every connection and the listener."""
        for conn in self.session_manager.clear_all():
            self._close_socket(conn)
        self.nicks.clear()
        self.room_manager.clear_all()

        if self._listener is not None:
            if self.selector is not None:
                try:
                    self.selector.unregister(self._listener)
                except (KeyError, ValueError):
                    pass
            self._listener.close()
            self._listener = None

        if self.selector is not None:
            self.selector.close()
            self.selector = None

        self.log.info("Relay stopped\n%s", self.stats_manager.format_stats())

    def _maybe_log_stats(self) -> None:
        interval = float(self.config.stats_log_interval_s)
        if interval <= 0:
            return
        now = time.monotonic()
        if self._last_stats_log is None or now - self._last_stats_log >= interval:
            self._last_stats_log = now
            self.log.info("%s", self.stats_manager.format_stats())

    def _accept(self) -> None:
        if self._listener is None or self.selector is None:
            return

        while True:
            try:
                sock, addr = self._listener.accept()
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                self.log.warning("Accept failed err=%s", e)
                return

            sock.setblocking(False)
            conn = self.session_manager.on_connection_accepted(sock, addr)
            self.selector.register(sock, selectors.EVENT_READ, data=conn)
            self.stats_manager.inc("conns_accepted")
            self.log.info(
                "Connection accepted conn=%s clients=%s",
                self._fmt_conn(conn),
                len(self.session_manager.connections),
            )

    def _recv(self, conn: Connection) -> bytes | None:
        """Read what is available. None means nothing to read right now."""
        if conn.sock is None:
            raise TransportError("connection has no socket")
        try:
            data = conn.sock.recv(int(self.config.recv_bufsize))
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            raise TransportError(str(e)) from e
        if not data:
            raise TransportError("closed by peer")
        return data

    def _on_readable(self, conn: Connection) -> None:
        try:
            data = self._recv(conn)
        except TransportError as e:
            self._teardown(conn, str(e))
            return
        if data is None:
            return

        self.stats_manager.inc("bytes_in", len(data))

        overflow: LineTooLong | None = None
        try:
            lines = conn.decoder.feed(data)
        except LineTooLong as e:
            self.stats_manager.inc("protocol_errors")
            overflow = e
            lines = e.lines

        outgoing: list[tuple[Connection, bytes]] = []
        for raw in lines:
            if conn.closing:
                # Anything after /bye is discarded.
                break
            self.router.route_line(conn, raw, outgoing)

        self._deliver(outgoing)

        if overflow is not None:
            self._teardown(conn, str(overflow))
            return

        if conn.closing and not conn.closed and not conn.outbuf:
            self._finish(conn, "bye")

    def _deliver(self, outgoing: list[tuple[Connection, bytes]]) -> None:
        """Move queued payloads into send buffers and try to flush them."""
        if not outgoing:
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Sending %d line(s)", len(outgoing))

        touched: dict[Connection, None] = {}
        for conn, payload in outgoing:
            if conn.closed:
                continue
            conn.outbuf.extend(payload)
            touched[conn] = None

        for conn in touched:
            self._flush(conn)

    def _flush(self, conn: Connection) -> None:
        if conn.closed or conn.sock is None:
            return

        while conn.outbuf:
            try:
                sent = conn.sock.send(conn.outbuf)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as e:
                self._teardown(conn, f"send failed: {e}")
                return
            self.stats_manager.inc("bytes_out", sent)
            del conn.outbuf[:sent]

        if len(conn.outbuf) > int(self.config.max_outbuf_bytes):
            self._teardown(conn, f"send buffer overflow ({len(conn.outbuf)} bytes)")
            return

        if conn.closing and not conn.outbuf:
            self._finish(conn, "bye")
            return

        self._update_interest(conn)

    def _update_interest(self, conn: Connection) -> None:
        if self.selector is None or conn.sock is None:
            return
        events = 0 if conn.closing else selectors.EVENT_READ
        if conn.outbuf:
            events |= selectors.EVENT_WRITE
        if not events:
            return
        try:
            key = self.selector.get_key(conn.sock)
        except KeyError:
            return
        if key.events != events:
            self.selector.modify(conn.sock, events, data=conn)

    def _teardown(self, conn: Connection, reason: str) -> None:
        """
        Drop a connection after a transport failure, EOF or fatal protocol error.

        Runs the same room-leave and nickname release as /bye; the BYE line
        and any broadcasts are best-effort. Never raises into the loop.
        """
        if conn.closed:
            return

        if not conn.closing and conn.sock is not None:
            conn.outbuf.extend(encode_line(R_BYE))
            try:
                conn.sock.send(conn.outbuf)
            except OSError:
                self.log.debug("BYE not delivered conn=%s", self._fmt_conn(conn))

        self._finish(conn, reason)

    def _finish(self, conn: Connection, reason: str) -> None:
        if conn.closed:
            return

        conn.closed = True
        self._close_socket(conn)

        outgoing: list[tuple[Connection, bytes]] = []
        nick, room = self.session_manager.on_connection_closed(conn, outgoing)
        self.stats_manager.inc("conns_closed")

        self.log.info(
            "Connection closed conn=%s nick=%r room=%s reason=%s",
            self._fmt_conn(conn),
            nick,
            room,
            reason,
        )

        self._deliver(outgoing)

    def _close_socket(self, conn: Connection) -> None:
        conn.closed = True
        conn.outbuf.clear()
        conn.decoder.clear()
        sock = conn.sock
        if sock is None:
            return
        if self.selector is not None:
            try:
                self.selector.unregister(sock)
            except (KeyError, ValueError):
                pass
        try:
            sock.close()
        except OSError as e:
            self.log.debug("Error closing conn=%s err=%s", self._fmt_conn(conn), e)

