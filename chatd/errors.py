"""Error kinds, exceptions and the policy that maps one to the other."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass


class ChatError(Exception):
    """Base class for chatd errors."""


class BindError(ChatError):
    """The server could not bind its listening socket."""


class FrameError(ChatError):
    """A frame was truncated, oversized or not valid CBOR."""


class HandshakeError(ChatError):
    """The client did not send an acceptable username."""


class RegistryFull(ChatError):
    """The registry reached its configured session limit."""


class UnknownMessageType(ChatError):
    """A well-formed envelope carried a type this server does not handle."""

    def __init__(self, msg_type: int) -> None:
        super().__init__(f"unknown message type {msg_type}")
        self.msg_type = msg_type


class ErrorKind(enum.Enum):
    CLOSED = "closed"
    TRANSPORT = "transport"
    MALFORMED = "malformed"
    HANDSHAKE = "handshake"
    UNKNOWN_TYPE = "unknown_type"
    BIND = "bind"


class Action(enum.Enum):
    CLOSE_SESSION = "close_session"
    LOG_ONLY = "log_only"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class Policy:
    action: Action
    level: int


POLICY: dict[ErrorKind, Policy] = {
    ErrorKind.CLOSED: Policy(Action.CLOSE_SESSION, logging.INFO),
    ErrorKind.TRANSPORT: Policy(Action.CLOSE_SESSION, logging.WARNING),
    ErrorKind.MALFORMED: Policy(Action.CLOSE_SESSION, logging.WARNING),
    ErrorKind.HANDSHAKE: Policy(Action.CLOSE_SESSION, logging.WARNING),
    ErrorKind.UNKNOWN_TYPE: Policy(Action.LOG_ONLY, logging.DEBUG),
    ErrorKind.BIND: Policy(Action.ESCALATE, logging.ERROR),
}


def policy_for(kind: ErrorKind) -> Policy:
    return POLICY[kind]
