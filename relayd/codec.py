from __future__ import annotations

from .constants import DEFAULT_MAX_LINE_BYTES, LINE_TERMINATOR
from .errors import LineTooLong, ProtocolError


def encode_line(text: str) -> bytes:
    return text.encode("utf-8") + LINE_TERMINATOR


def decode_line(raw: bytes) -> str:
    try:
        return raw.decode("utf-8", "strict")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"line is not valid UTF-8: {e.reason}") from e


class LineBuffer:
    """Reassembles newline-terminated lines from a stream of reads.

    Bytes after the last terminator are kept until a later read completes
    them, so a line fragmented across reads (or a multi-byte character split
    between reads) is delivered intact.
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self.max_line_bytes = int(max_line_bytes)
        self._buf = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        """Append data and return every complete line, without terminators.

        A trailing carriage return is stripped from each line. If a complete
        line, or the remaining partial line, is larger than max_line_bytes,
        the buffer is emptied and LineTooLong is raised; its ``lines``
        attribute holds the complete lines that preceded the oversized one.
        """
        self._buf.extend(data)

        lines: list[bytes] = []
        start = 0
        while True:
            nl = self._buf.find(LINE_TERMINATOR, start)
            if nl < 0:
                break
            line = bytes(self._buf[start:nl])
            if len(line) > self.max_line_bytes:
                self._buf.clear()
                raise LineTooLong(f"line of {len(line)} bytes exceeds limit", lines)
            if line.endswith(b"\r"):
                line = line[:-1]
            lines.append(line)
            start = nl + 1

        del self._buf[:start]

        if len(self._buf) > self.max_line_bytes:
            size = len(self._buf)
            self._buf.clear()
            raise LineTooLong(f"partial line of {size} bytes exceeds limit", lines)

        return lines

    def flush(self) -> bytes:
        """Return and drop the unterminated remainder (used at end of input)."""
        rest = bytes(self._buf)
        self._buf.clear()
        if rest.endswith(b"\r"):
            rest = rest[:-1]
        return rest

    def clear(self) -> None:
        self._buf.clear()
