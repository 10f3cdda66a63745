from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import DEFAULT_PORT, MAX_FRAME_BYTES, USERNAME_MAX_CHARS


@dataclass(frozen=True)
class ServerConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    backlog: int = 16
    handshake_timeout_s: float = 10.0
    send_timeout_s: float = 10.0
    accept_poll_s: float = 0.5
    outbox_max: int = 256
    max_sessions: int = 0  # 0 disables the limit
    max_frame_bytes: int = MAX_FRAME_BYTES
    username_max_chars: int = USERNAME_MAX_CHARS
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: ServerConfig, data: dict) -> ServerConfig:
    """Overlay a parsed TOML document onto ``cfg``.

    Keys may sit at the top level or under ``[server]``; ``[logging]`` keys
    are mapped onto the ``log_*`` fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    server = data.get("server")
    if isinstance(server, dict):
        data = {**data, **server}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped = {
            field: log_table[key] for key, field in _LOGGING_KEYS.items() if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # Where the config came from is decided by the caller, not the file.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in ("log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None
    return replace(cfg, **updates) if updates else cfg
