"""Nickname registry: the global nickname -> connection binding."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import NicknameConflict

if TYPE_CHECKING:
    from .session import Connection


class NickRegistry:
    """Maps each bound nickname to exactly one connection.

    Names are compared exactly (case-sensitive). A name is bound to at most
    one live connection at any instant.
    """

    def __init__(self) -> None:
        self._by_nick: dict[str, Connection] = {}

    def __contains__(self, nick: str) -> bool:
        return nick in self._by_nick

    def __len__(self) -> int:
        return len(self._by_nick)

    def lookup(self, nick: str) -> Connection | None:
        return self._by_nick.get(nick)

    def bind(self, nick: str, conn: Connection) -> None:
        if nick in self._by_nick:
            raise NicknameConflict(f"nickname {nick!r} is in use")
        self._by_nick[nick] = conn

    def rename(self, old: str | None, new: str, conn: Connection) -> None:
        """Bind new to conn and drop old, as one step."""
        self.bind(new, conn)
        if old is not None:
            self.release(old, conn)

    def release(self, nick: str, conn: Connection) -> bool:
        """Drop nick if it is bound to conn. Returns True if removed."""
        if self._by_nick.get(nick) is not conn:
            return False
        del self._by_nick[nick]
        return True

    def clear(self) -> None:
        self._by_nick.clear()
