"""Terminal client for the relay.

Sends every line typed on stdin to the server and prints server lines in a
human-readable form. Exits when the server closes the connection.
"""

from __future__ import annotations

import argparse
import logging
import os
import selectors
import socket
import sys
from typing import TextIO

from .codec import LineBuffer, decode_line, encode_line
from .constants import R_JOINED, R_LEFT, R_MESSAGE, R_NEWNICK, R_PRIVATE
from .errors import LineTooLong, ProtocolError
from .replies import parse_reply
from .util import port_arg

log = logging.getLogger("relayd.client")


def render_line(line: str) -> str:
    """Turn one server line into the text shown to the user."""
    parsed = parse_reply(line)
    if parsed is None:
        return line

    kind, fields = parsed
    if kind == R_NEWNICK:
        return f"{fields[0]} changed his nickname to: {fields[1]}"
    if kind == R_JOINED:
        return f"{fields[0]} joined the room"
    if kind == R_LEFT:
        return f"{fields[0]} left the room"
    if kind in (R_MESSAGE, R_PRIVATE):
        return f"{fields[0]}:{fields[1]}"
    return line


class ChatClient:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.sock: socket.socket | None = None
        # Server lines carry a nick prefix on top of the relayed line.
        self._decoder = LineBuffer(max_line_bytes=1024 * 1024)
        self._input = LineBuffer(max_line_bytes=1024 * 1024)

    def connect(self) -> None:
        self.sock = socket.create_connection((self.host, self.port))

    def send_line(self, text: str) -> None:
        if self.sock is None:
            raise RuntimeError("not connected")
        self.sock.sendall(encode_line(text))

    def handle_data(self, data: bytes) -> None:
        for raw in self._decoder.feed(data):
            try:
                line = decode_line(raw).strip()
            except ProtocolError as e:
                log.debug("Undecodable server line: %s", e)
                continue
            print(render_line(line), file=self.stdout, flush=True)

    def _send_input(self, raw: bytes) -> None:
        try:
            text = decode_line(raw)
        except ProtocolError as e:
            log.debug("Undecodable input line: %s", e)
            return
        self.send_line(text)

    def run(self) -> None:
        """Relay stdin to the server and server lines to stdout until EOF."""
        if self.sock is None:
            self.connect()
        sock = self.sock
        if sock is None:
            raise RuntimeError("not connected")

        # Raw reads: a buffered readline() would hold back pasted lines.
        stdin_fd = self.stdin.fileno()

        sel = selectors.DefaultSelector()
        sel.register(sock, selectors.EVENT_READ, data="server")
        sel.register(stdin_fd, selectors.EVENT_READ, data="stdin")
        stdin_open = True

        try:
            while True:
                for key, _ in sel.select():
                    if key.data == "server":
                        data = sock.recv(4096)
                        if not data:
                            return
                        self.handle_data(data)
                    elif stdin_open:
                        data = os.read(stdin_fd, 4096)
                        if not data:
                            rest = self._input.flush()
                            if rest:
                                self._send_input(rest)
                            # Keep listening until the server hangs up.
                            sel.unregister(stdin_fd)
                            stdin_open = False
                            continue
                        try:
                            lines = self._input.feed(data)
                        except LineTooLong as e:
                            log.warning("Input line dropped: %s", e)
                            lines = e.lines
                        for raw in lines:
                            self._send_input(raw)
        finally:
            sel.close()
            sock.close()
            self.sock = None


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="relayd-client", description="Connect to a chat relay")
    p.add_argument("host", help="Relay host name or address")
    p.add_argument("port", type=port_arg, help="Relay TCP port")
    return p


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    client = ChatClient(args.host, args.port)
    try:
        client.connect()
    except OSError as e:
        print(f"cannot connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    try:
        client.run()
    except KeyboardInterrupt:
        pass
    except OSError as e:
        print(f"connection lost: {e}", file=sys.stderr)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
