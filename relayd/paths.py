from __future__ import annotations

import os
from pathlib import Path


def default_relayd_dir() -> Path:
    override = os.environ.get("RELAYD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".relayd"


def default_config_path() -> Path:
    return default_relayd_dir() / "relayd.toml"
