"""Logging setup for relayd.

Every part of the relay logs under its own ``relayd.<component>`` logger.
``log_level`` sets the overall threshold; ``log_levels`` lets one component
be turned up or down on its own, e.g. DEBUG line tracing for the router
while the reactor stays at INFO.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig
from .util import expand_path

COMPONENTS = ("service", "router", "session", "rooms")

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LEVEL_NAMES: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def parse_level(value: Any) -> int:
    """Level name or number -> logging level. Raises ValueError."""
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if text in _LEVEL_NAMES:
        return _LEVEL_NAMES[text]
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"unknown log level {value!r}") from None


def component_logger(name: str) -> str:
    """Map ``router`` or ``relayd.router`` to the component's logger name."""
    short = name.strip()
    if short.startswith("relayd."):
        short = short[len("relayd."):]
    if short not in COMPONENTS:
        raise ValueError(
            f"unknown log component {name!r} (expected one of {', '.join(COMPONENTS)})"
        )
    return f"relayd.{short}"


def component_levels(cfg: RelayRuntimeConfig) -> dict[str, int]:
    return {component_logger(name): parse_level(level) for name, level in cfg.log_levels}


def _build_handlers(cfg: RelayRuntimeConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    if cfg.log_file:
        path = Path(expand_path(cfg.log_file))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    fmt = (cfg.log_format or "").strip() or DEFAULT_LOG_FORMAT
    formatter = logging.Formatter(fmt=fmt, datefmt=cfg.log_datefmt or None)
    for h in handlers:
        h.setFormatter(formatter)
    return handlers


def configure_logging(cfg: RelayRuntimeConfig) -> None:
    """Install the relay's handlers on the root logger and set levels.

    Raises ValueError for an unknown level or component before anything is
    changed. Calling it again replaces the handlers and resets component
    levels that the new config no longer names.
    """
    level = parse_level(cfg.log_level or "INFO")
    levels = component_levels(cfg)
    handlers = _build_handlers(cfg)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)

    for short in COMPONENTS:
        name = f"relayd.{short}"
        logging.getLogger(name).setLevel(levels.get(name, logging.NOTSET))

    logging.captureWarnings(True)
