"""Message records exchanged between clients and the server."""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace

from .constants import (
    K_BODY,
    K_SRC,
    K_T,
    SERVER_ID,
    T_BLOCK,
    T_LOGOUT,
    T_SHUTDOWN,
    T_TEXT,
    T_UNBLOCK,
)
from .envelope import make_envelope, validate_envelope
from .errors import UnknownMessageType


class MessageType(enum.IntEnum):
    TEXT = T_TEXT
    LOGOUT = T_LOGOUT
    SHUTDOWN = T_SHUTDOWN
    BLOCK = T_BLOCK
    UNBLOCK = T_UNBLOCK


@dataclass(frozen=True)
class Message:
    """An immutable chat message.

    ``body`` holds free text for TEXT and the target username for
    BLOCK/UNBLOCK. It is empty for the other types.
    """

    sender_id: int
    type: MessageType
    body: str = ""

    @property
    def is_notice(self) -> bool:
        return self.sender_id == SERVER_ID

    def with_sender(self, sender_id: int) -> Message:
        if sender_id == self.sender_id:
            return self
        return replace(self, sender_id=sender_id)

    def to_envelope(self) -> dict:
        return make_envelope(int(self.type), src=self.sender_id, body=self.body)

    @classmethod
    def from_envelope(cls, env: dict) -> Message:
        """Build a Message from a decoded envelope.

        Raises TypeError/ValueError for a malformed envelope and
        UnknownMessageType for a valid envelope with an unhandled type.
        """
        validate_envelope(env)
        t = env[K_T]
        try:
            msg_type = MessageType(t)
        except ValueError:
            raise UnknownMessageType(t) from None
        return cls(sender_id=env[K_SRC], type=msg_type, body=env.get(K_BODY, ""))


def notice(text: str) -> Message:
    return Message(SERVER_ID, MessageType.TEXT, text)


def shutdown_notice(text: str = "Server is shutting down.") -> Message:
    return Message(SERVER_ID, MessageType.SHUTDOWN, text)


def logout_notice(username: str) -> Message:
    return notice(f"User {username} has logged out.")


def connect_notice(username: str) -> Message:
    return notice(f"User {username} has connected.")


def disconnect_notice(username: str) -> Message:
    return notice(f"User {username} has disconnected.")


def block_notice(username: str, target: str) -> Message:
    return notice(f"User {username} has blocked {target}.")


def unblock_notice(username: str, target: str) -> Message:
    return notice(f"User {username} has unblocked {target}.")
