from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import (
    DEFAULT_MAX_LINE_BYTES,
    DEFAULT_MAX_OUTBUF_BYTES,
    DEFAULT_RECV_BUFSIZE,
    NICK_MAX_CHARS,
    ROOM_NAME_MAX_CHARS,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = ""
    port: int = 0
    listen_backlog: int = 128
    recv_bufsize: int = DEFAULT_RECV_BUFSIZE
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    max_outbuf_bytes: int = DEFAULT_MAX_OUTBUF_BYTES
    nick_max_chars: int = NICK_MAX_CHARS
    max_room_name_len: int = ROOM_NAME_MAX_CHARS
    select_timeout_s: float = 1.0
    stats_log_interval_s: float = 0.0
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None
    # (component, level) pairs, e.g. (("router", "DEBUG"),)
    log_levels: tuple[tuple[str, str], ...] = ()


_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
    "levels": "log_levels",
}


def merge_log_levels(
    current: tuple[tuple[str, str], ...], extra: Any
) -> tuple[tuple[str, str], ...]:
    """Merge a component -> level mapping (or pairs) over current pairs."""
    if isinstance(extra, dict):
        extra = extra.items()
    elif not isinstance(extra, (list, tuple)):
        raise ValueError("logging levels must be a table of component = level")

    merged = dict(current)
    for name, level in extra:
        merged[str(name)] = str(level)
    return tuple(sorted(merged.items()))


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: RelayRuntimeConfig, data: dict[str, Any]) -> RelayRuntimeConfig:
    """Merge a parsed TOML document into cfg.

    Keys may sit at the top level or in a [server] table; a [logging] table
    maps level/console/file/format/datefmt onto the log_* fields and its
    [logging.levels] sub-table onto per-component levels. Unknown keys are
    ignored.
    """
    if not isinstance(data, dict):
        return cfg

    server = data.get("server")
    if isinstance(server, dict):
        data = {**data, **server}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped = {_LOGGING_KEYS[k]: v for k, v in log_table.items() if k in _LOGGING_KEYS}
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the file came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in ("log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    if "log_levels" in updates:
        updates["log_levels"] = merge_log_levels((), updates["log_levels"])

    return replace(cfg, **updates) if updates else cfg


def load_config_file(cfg: RelayRuntimeConfig, path: str) -> RelayRuntimeConfig:
    cfg = apply_config_data(cfg, load_toml(path))
    return replace(cfg, config_path=path)
