from __future__ import annotations

import argparse
import os

from .constants import NICK_MAX_CHARS, ROOM_NAME_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _clean_token(value, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    # Tokens come from whitespace splitting, but keep control characters that
    # break line framing out of nicknames and room names regardless.
    if any(ch.isspace() for ch in s) or "\x00" in s:
        return None

    return s


def normalize_nick(value, max_chars: int = NICK_MAX_CHARS) -> str | None:
    return _clean_token(value, max_chars)


def normalize_room(value, max_chars: int = ROOM_NAME_MAX_CHARS) -> str | None:
    return _clean_token(value, max_chars)


def port_arg(text: str) -> int:
    """argparse type for a TCP port given as a plain digit string."""
    # No sign, no spaces, no hex.
    if not text or not (text.isascii() and text.isdigit()):
        raise argparse.ArgumentTypeError(f"port must be a non-negative integer: {text!r}")
    port = int(text)
    if port > 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port
