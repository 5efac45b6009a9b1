"""Error taxonomy for the relay protocol.

Everything derived from RelayError is answered with a single ERROR line to
the originating connection; the connection stays open. LineTooLong is the
exception: the reactor treats it as fatal to the connection.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for errors reported to a client as ERROR."""


class ProtocolError(RelayError):
    """Unrecognized verb, wrong argument count or malformed line."""


class LineTooLong(ProtocolError):
    """A line (or pending partial line) exceeded the configured limit.

    ``lines`` carries the complete lines read before the oversized one, so
    they can still be handled before the connection is dropped.
    """

    def __init__(self, message: str, lines: list[bytes] | None = None) -> None:
        super().__init__(message)
        self.lines: list[bytes] = list(lines or [])


class StateError(RelayError):
    """Verb is not valid in the session's current participation state."""


class NicknameConflict(RelayError):
    """Requested nickname is already bound to a connection."""


class TargetNotFound(RelayError):
    """Private message target is not a bound nickname."""


class TransportError(Exception):
    """I/O failure or peer close on a single connection."""
