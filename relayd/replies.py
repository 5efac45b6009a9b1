from __future__ import annotations

from .constants import (
    R_BYE,
    R_ERROR,
    R_JOINED,
    R_LEFT,
    R_MESSAGE,
    R_NEWNICK,
    R_OK,
    R_PRIVATE,
)

# Replies that carry a free-text payload after their fixed fields.
_TEXT_REPLIES = frozenset((R_MESSAGE, R_PRIVATE))

_FIELD_COUNTS = {
    R_OK: 0,
    R_ERROR: 0,
    R_BYE: 0,
    R_NEWNICK: 2,
    R_JOINED: 1,
    R_LEFT: 1,
}


def make_reply(kind: str, *fields: str) -> str:
    """Build one server -> client line (without terminator)."""
    if not fields:
        return kind
    return " ".join((kind, *fields))


def parse_reply(line: str) -> tuple[str, list[str]] | None:
    """Split a server line into (kind, fields).

    For MESSAGE and PRIVATE the last field is the message text with its
    spacing preserved. Returns None for lines that are not a known reply or
    do not carry the expected number of fields.
    """
    kind, _, rest = line.partition(" ")

    if kind in _TEXT_REPLIES:
        nick, sep, text = rest.partition(" ")
        if not nick or not sep:
            return None
        return kind, [nick, text]

    count = _FIELD_COUNTS.get(kind)
    if count is None:
        return None

    fields = rest.split() if rest else []
    if len(fields) != count:
        return None
    return kind, fields
