from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace

from .config import RelayRuntimeConfig, load_config_file, merge_log_levels
from .logging_config import configure_logging
from .paths import default_config_path
from .service import RelayService
from .util import expand_path, port_arg


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="relayd", description="Run a line-based chat relay")

    p.add_argument("port", type=port_arg, help="TCP port to listen on")

    p.add_argument(
        "--config",
        default=None,
        help=f"Path to a TOML config file (default: {default_config_path()} if it exists)",
    )
    p.add_argument(
        "--host",
        default=None,
        help="Address to bind (default: all interfaces)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )
    p.add_argument(
        "--log-component",
        action="append",
        default=[],
        metavar="NAME=LEVEL",
        help="Per-component level, e.g. router=DEBUG (repeatable)",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    cfg = RelayRuntimeConfig()

    if args.config is not None:
        cfg = load_config_file(cfg, expand_path(str(args.config)))
    else:
        default_path = str(default_config_path())
        if os.path.exists(default_path):
            cfg = load_config_file(cfg, default_path)

    cfg = replace(cfg, port=int(args.port))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    if args.log_component:
        pairs = []
        for item in args.log_component:
            name, sep, level = str(item).partition("=")
            if not sep or not name.strip() or not level.strip():
                raise ValueError(f"--log-component expects NAME=LEVEL, got {item!r}")
            pairs.append((name.strip(), level.strip()))
        cfg = replace(cfg, log_levels=merge_log_levels(cfg.log_levels, pairs))

    return cfg


def main(argv: list[str] | None = None) -> None:
    parser = _build_arg_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = build_config(args)
    except (OSError, ValueError, TypeError) as e:
        parser.error(f"cannot load config: {e}")

    try:
        configure_logging(cfg)
    except (OSError, ValueError) as e:
        parser.error(f"cannot configure logging: {e}")

    svc = RelayService(cfg)
    try:
        svc.start()
    except OSError as e:
        logging.getLogger("relayd").error(
            "Cannot listen on %s:%s: %s", cfg.host or "*", cfg.port, e
        )
        raise SystemExit(1) from e

    svc.run_forever()


if __name__ == "__main__":
    main()
