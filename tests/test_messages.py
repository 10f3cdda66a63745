import pytest

from chatd.constants import K_T, SERVER_ID
from chatd.envelope import make_envelope
from chatd.errors import UnknownMessageType
from chatd.messages import Message, MessageType, notice, shutdown_notice


def test_message_envelope_round_trip() -> None:
    msg = Message(7, MessageType.BLOCK, "mallory")
    assert Message.from_envelope(msg.to_envelope()) == msg


def test_missing_body_decodes_as_empty() -> None:
    msg = Message.from_envelope(make_envelope(int(MessageType.LOGOUT), src=2))
    assert msg == Message(2, MessageType.LOGOUT, "")


def test_unknown_type_is_reported_separately() -> None:
    env = Message(1, MessageType.TEXT, "hi").to_envelope()
    env[K_T] = 99
    with pytest.raises(UnknownMessageType) as exc:
        Message.from_envelope(env)
    assert exc.value.msg_type == 99


def test_with_sender_replaces_only_the_sender() -> None:
    msg = Message(0, MessageType.TEXT, "hi")
    stamped = msg.with_sender(5)
    assert stamped == Message(5, MessageType.TEXT, "hi")
    assert msg.sender_id == 0
    assert stamped.with_sender(5) is stamped


def test_messages_are_immutable() -> None:
    msg = Message(1, MessageType.TEXT, "hi")
    with pytest.raises(AttributeError):
        msg.body = "changed"  # type: ignore[misc]


def test_notices_come_from_the_server() -> None:
    assert notice("hello").sender_id == SERVER_ID
    assert notice("hello").is_notice
    assert shutdown_notice().type is MessageType.SHUTDOWN
    assert not Message(1, MessageType.TEXT, "x").is_notice
