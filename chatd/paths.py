from __future__ import annotations

import os
from pathlib import Path


def default_chatd_dir() -> Path:
    override = os.environ.get("CHATD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".chatd"


def default_config_path() -> Path:
    return default_chatd_dir() / "chatd.toml"
