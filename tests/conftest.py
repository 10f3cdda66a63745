from __future__ import annotations

import queue
import socket
import threading

import pytest

from chatd.channel import Channel, Received
from chatd.config import ServerConfig
from chatd.errors import ErrorKind
from chatd.messages import Message, MessageType
from chatd.server import ChatServer

TIMEOUT = 5.0


class Peer:
    """Raw protocol client used to drive a server from tests."""

    def __init__(self, address, username: str, *, wait_registered: bool = True) -> None:
        self.username = username
        sock = socket.create_connection(address, timeout=TIMEOUT)
        sock.settimeout(None)
        self.channel = Channel(sock)
        self.inbox: queue.Queue[Received] = queue.Queue()
        self._reader = threading.Thread(target=self._read, daemon=True)
        self._reader.start()
        self.channel.send_obj(username)
        if wait_registered:
            self.expect_notice(f"User {username} has connected.")

    def _read(self) -> None:
        while True:
            result = self.channel.receive()
            self.inbox.put(result)
            if result.error is not None and result.error is not ErrorKind.UNKNOWN_TYPE:
                return

    def send(self, msg_type: MessageType, body: str = "") -> None:
        assert self.channel.send(Message(0, msg_type, body)) is None

    def say(self, text: str) -> None:
        self.send(MessageType.TEXT, text)

    def recv(self, timeout: float = TIMEOUT) -> Message:
        result = self.inbox.get(timeout=timeout)
        assert result.ok, result
        return result.message

    def recv_until(self, predicate, timeout: float = TIMEOUT) -> list[Message]:
        """Collect messages up to and including the first matching one."""
        seen: list[Message] = []
        while True:
            msg = self.recv(timeout)
            seen.append(msg)
            if predicate(msg):
                return seen

    def expect_text(self, body: str) -> list[Message]:
        return self.recv_until(lambda m: m.type is MessageType.TEXT and m.body == body)

    def expect_notice(self, body: str) -> list[Message]:
        return self.recv_until(lambda m: m.is_notice and m.body == body)

    def expect_closed(self, timeout: float = TIMEOUT) -> list[Message]:
        seen: list[Message] = []
        while True:
            result = self.inbox.get(timeout=timeout)
            if not result.ok:
                return seen
            seen.append(result.message)

    def close(self) -> None:
        self.channel.close()


@pytest.fixture
def server():
    cfg = ServerConfig(
        host="127.0.0.1",
        port=0,
        accept_poll_s=0.05,
        handshake_timeout_s=2.0,
        send_timeout_s=2.0,
    )
    srv = ChatServer(cfg)
    srv.start()
    yield srv
    srv.shutdown()
    srv.wait(TIMEOUT)


@pytest.fixture
def connect(server):
    peers: list[Peer] = []

    def _connect(username: str, **kwargs) -> Peer:
        peer = Peer(server.address, username, **kwargs)
        peers.append(peer)
        return peer

    yield _connect
    for peer in peers:
        peer.close()
