from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import ServerConfig

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default

    if text == "WARN":
        text = "WARNING"
    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level

    try:
        return int(text)
    except ValueError:
        return default


def _clean_optional_path(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    if not s.strip():
        return None
    return s


def configure_logging(
    cfg: ServerConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure Python logging for chatd.

    Replaces any handlers already installed on the root logger, so calling
    it twice does not duplicate output.
    """

    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []

    if bool(cfg.log_console):
        handlers.append(logging.StreamHandler())

    log_file = _clean_optional_path(override_file) if override_file is not None else None
    if log_file is None:
        log_file = _clean_optional_path(cfg.log_file)

    if log_file:
        p = Path(os.path.expanduser(log_file))
        p.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(p, encoding="utf-8"))

    fmt = str(cfg.log_format).strip() or _DEFAULT_FORMAT
    formatter = logging.Formatter(fmt=fmt, datefmt=_clean_optional_path(cfg.log_datefmt))
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    for h in handlers:
        root.addHandler(h)

    root.setLevel(level)

    logging.captureWarnings(True)
