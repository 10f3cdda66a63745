from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace

from .client import ChatClient
from .config import ServerConfig, apply_config_data, load_toml
from .constants import DEFAULT_PORT
from .errors import BindError
from .logging_config import configure_logging
from .paths import default_config_path
from .server import ChatServer
from .util import expand_path


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatd", description="Run a chatd server")

    p.add_argument(
        "port",
        nargs="?",
        type=int,
        default=None,
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    p.add_argument("--host", default=None, help="Address to bind (default: 0.0.0.0)")
    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (optional)",
    )
    p.add_argument(
        "--max-sessions",
        type=int,
        default=None,
        help="Refuse connections beyond this many sessions (0 disables)",
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
    return p


def build_config(args: argparse.Namespace) -> ServerConfig:
    config_path = expand_path(str(args.config))
    cfg = ServerConfig(config_path=config_path)

    if os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.max_sessions is not None:
        cfg = replace(cfg, max_sessions=int(args.max_sessions))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)
    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    server = ChatServer(cfg)
    try:
        server.startup()
    except BindError as e:
        logging.getLogger("chatd").error("%s", e)
        raise SystemExit(1) from e


def _build_client_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatd-client", description="Chat with a chatd server")
    p.add_argument("server", help="Server host name or address")
    p.add_argument("username", help="Name shown to other users")
    p.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help=f"Server port (default: {DEFAULT_PORT})"
    )
    p.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    return p


def client_main(argv: list[str] | None = None) -> None:
    args = _build_client_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    configure_logging(ServerConfig(), override_level=args.log_level)

    client = ChatClient(args.server, args.port, args.username)
    if not client.start():
        print("Failed to connect to server.", file=sys.stderr)
        raise SystemExit(1)
    client.run_console()


if __name__ == "__main__":
    main()
