"""Command line parsing for client input."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import CMD_PRIV, COMMAND_ARITY, COMMAND_MARKER
from .errors import ProtocolError


@dataclass(frozen=True)
class Command:
    verb: str
    args: tuple[str, ...] = ()
    # Free text trailing the arguments (only /priv carries one).
    text: str | None = None


def is_command(line: str) -> bool:
    return line.startswith(COMMAND_MARKER)


def parse_line(line: str) -> Command | None:
    """Parse one decoded line.

    Returns None for a plain chat line. Raises ProtocolError for an unknown
    verb or a wrong number of arguments.
    """
    if not is_command(line):
        return None

    body = line[len(COMMAND_MARKER):]
    parts = body.split()
    if not parts:
        raise ProtocolError("empty command")

    verb = parts[0]
    arity = COMMAND_ARITY.get(verb)
    if arity is None:
        raise ProtocolError(f"unknown command {verb!r}")

    lo, hi = arity
    nargs = len(parts) - 1
    if nargs < lo or (hi is not None and nargs > hi):
        expected = str(lo) if hi == lo else f"at least {lo}"
        raise ProtocolError(f"/{verb} takes {expected} argument(s), got {nargs}")

    if verb == CMD_PRIV:
        # Keep the message's own spacing: everything after the target token.
        _, target, text = body.split(None, 2)
        return Command(verb, (target,), text)

    return Command(verb, tuple(parts[1:]))
