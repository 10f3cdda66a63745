"""Console client for a chatd server."""

from __future__ import annotations

import logging
import socket
import sys
import threading
from typing import IO

from .channel import Channel
from .constants import DEFAULT_PORT
from .errors import ErrorKind
from .messages import Message, MessageType


class ChatClient:
    """
    Connects to a server, sends console input and prints what arrives.

    A listener thread reads from the server while the caller feeds lines
    to ``handle_line`` (usually through ``run_console``).
    """

    def __init__(
        self,
        server: str,
        port: int = DEFAULT_PORT,
        username: str = "",
        *,
        out: IO[str] | None = None,
        connect_timeout_s: float = 10.0,
    ) -> None:
        self.server = server
        self.port = int(port)
        self.username = username
        self.out = out if out is not None else sys.stdout
        self.connect_timeout_s = connect_timeout_s
        self.log = logging.getLogger("chatd.client")

        self.channel: Channel | None = None
        self._running = threading.Event()
        self._listener: threading.Thread | None = None
        self._out_lock = threading.Lock()
        self._leaving = False

    @property
    def carry_on(self) -> bool:
        return self._running.is_set()

    def _emit(self, text: str) -> None:
        with self._out_lock:
            print(text, file=self.out, flush=True)

    def start(self) -> bool:
        try:
            sock = socket.create_connection(
                (self.server, self.port), timeout=self.connect_timeout_s
            )
        except OSError as e:
            self.log.error("Cannot connect to %s:%s: %s", self.server, self.port, e)
            return False
        sock.settimeout(None)

        self.channel = Channel(sock, peer=f"{self.server}:{self.port}")
        if self.channel.send_obj(self.username) is not None:
            self.log.error("Handshake with %s:%s failed", self.server, self.port)
            self.channel.close()
            return False

        self._running.set()
        self._listener = threading.Thread(
            target=self._listen, name="chatd-listener", daemon=True
        )
        self._listener.start()
        self._emit("Connected to server.")
        return True

    def send_message(self, message: Message) -> bool:
        if self.channel is None:
            return False
        err = self.channel.send(message)
        if err is not None:
            self.log.warning("Send failed kind=%s", err.value)
            self.disconnect()
            return False
        return True

    def handle_line(self, line: str) -> bool:
        """Turn one console line into a message. Returns False to stop."""
        text = line.strip()
        if text.lower() == "logout":
            self.logout()
            return False

        cmd, _, arg = text.partition(" ")
        cmd = cmd.lower()
        if cmd == "/block" and arg.strip():
            return self.send_message(Message(0, MessageType.BLOCK, arg.strip()))
        if cmd == "/unblock" and arg.strip():
            return self.send_message(Message(0, MessageType.UNBLOCK, arg.strip()))
        if cmd == "/shutdown" and not arg:
            return self.send_message(Message(0, MessageType.SHUTDOWN))

        return self.send_message(Message(0, MessageType.TEXT, line))

    def run_console(self, stream: IO[str] | None = None) -> None:
        stream = stream if stream is not None else sys.stdin
        try:
            for raw in stream:
                if not self.carry_on:
                    break
                if not self.handle_line(raw.rstrip("\r\n")):
                    break
        except KeyboardInterrupt:
            self.logout()
        finally:
            self.disconnect()

    def logout(self, timeout: float = 5.0) -> None:
        """Send LOGOUT and wait for the server to close the connection."""
        if self.channel is None or not self.carry_on:
            return
        self._leaving = True
        if self.send_message(Message(0, MessageType.LOGOUT)):
            self.channel.shutdown_write()
            self.join(timeout)
            self._emit("You have been logged out.")
        self.disconnect()

    def disconnect(self) -> None:
        self._running.clear()
        if self.channel is not None:
            self.channel.close()

    def join(self, timeout: float | None = None) -> None:
        if self._listener is not None and self._listener is not threading.current_thread():
            self._listener.join(timeout)

    def _listen(self) -> None:
        assert self.channel is not None
        while self._running.is_set():
            result = self.channel.receive()
            if not result.ok:
                if result.error is ErrorKind.UNKNOWN_TYPE:
                    self.log.debug("Ignoring message: %s", result.detail)
                    continue
                if self._running.is_set() and not self._leaving:
                    self.log.debug("Receive failed kind=%s detail=%s", result.error.value, result.detail)
                    self._emit("Disconnected from server.")
                self.disconnect()
                return

            msg = result.message
            if msg.type is MessageType.TEXT:
                if msg.is_notice:
                    self._emit(f"* {msg.body}")
                else:
                    self._emit(f"{msg.sender_id}: {msg.body}")
            elif msg.type is MessageType.LOGOUT:
                if msg.body:
                    self._emit(f"* {msg.body}")
                self._emit("You have been logged out.")
                self.disconnect()
            elif msg.type is MessageType.SHUTDOWN:
                self._emit("Server has been shut down.")
                self.disconnect()
