"""Framed message transport over one connected socket."""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass

from .codec import frame, parse_header, unframe
from .constants import FRAME_HEADER_BYTES, MAX_FRAME_BYTES
from .errors import ErrorKind, FrameError, HandshakeError, UnknownMessageType
from .messages import Message
from .util import fmt_addr, normalize_username


class _EndOfStream(Exception):
    pass


@dataclass(frozen=True)
class Received:
    """Outcome of one receive: either a message or an error kind."""

    message: Message | None = None
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


class Channel:
    """
    Owns a connected socket and moves whole frames across it.

    Receives are expected from a single thread. Sends are serialized with a
    lock so frames never interleave. ``close()`` shuts the socket down
    before closing it, which wakes up a thread blocked in ``recv``.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        max_frame_bytes: int = MAX_FRAME_BYTES,
        peer: str | None = None,
    ) -> None:
        self.sock = sock
        self.max_frame_bytes = int(max_frame_bytes)
        self.log = logging.getLogger("chatd.channel")
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        if peer is None:
            try:
                peer = fmt_addr(sock.getpeername())
            except OSError:
                peer = "-"
        self.peer = peer

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def settimeout(self, timeout: float | None) -> None:
        try:
            self.sock.settimeout(timeout)
        except OSError:
            pass

    def _recv_exact(self, n: int, *, patient: bool) -> bytes:
        # The socket timeout bounds sends. A patient reader keeps waiting
        # through it; an impatient one (the handshake) gives up.
        buf = bytearray()
        while len(buf) < n:
            try:
                chunk = self.sock.recv(n - len(buf))
            except socket.timeout:
                if patient and not self.closed:
                    continue
                raise
            if not chunk:
                raise _EndOfStream()
            buf.extend(chunk)
        return bytes(buf)

    def _read_obj(self, *, patient: bool = True):
        header = self._recv_exact(FRAME_HEADER_BYTES, patient=patient)
        length = parse_header(header, max_bytes=self.max_frame_bytes)
        return unframe(self._recv_exact(length, patient=patient))

    def receive(self) -> Received:
        """Block until one message arrives or the channel fails."""
        if self.closed:
            return Received(error=ErrorKind.CLOSED, detail="channel closed")
        try:
            env = self._read_obj()
        except _EndOfStream:
            return Received(error=ErrorKind.CLOSED, detail="end of stream")
        except FrameError as e:
            return Received(error=ErrorKind.MALFORMED, detail=str(e))
        except OSError as e:
            # A local close() surfaces as an OSError in the reading thread.
            kind = ErrorKind.CLOSED if self.closed else ErrorKind.TRANSPORT
            return Received(error=kind, detail=str(e) or type(e).__name__)

        try:
            return Received(message=Message.from_envelope(env))
        except UnknownMessageType as e:
            return Received(error=ErrorKind.UNKNOWN_TYPE, detail=str(e))
        except (TypeError, ValueError) as e:
            return Received(error=ErrorKind.MALFORMED, detail=str(e))

    def read_handshake(self, *, max_chars: int) -> str:
        """Read the username frame that opens every connection."""
        try:
            value = self._read_obj(patient=False)
        except _EndOfStream:
            raise HandshakeError("connection closed before username") from None
        except socket.timeout:
            raise HandshakeError("timed out waiting for username") from None
        except (FrameError, OSError) as e:
            raise HandshakeError(f"bad handshake frame: {e}") from e

        username = normalize_username(value, max_chars=max_chars)
        if username is None:
            raise HandshakeError(f"invalid username {value!r}")
        return username

    def send_obj(self, obj) -> ErrorKind | None:
        if self.closed:
            return ErrorKind.CLOSED
        try:
            data = frame(obj, max_bytes=self.max_frame_bytes)
        except FrameError as e:
            self.log.warning("Dropping oversized frame peer=%s err=%s", self.peer, e)
            return ErrorKind.MALFORMED
        try:
            with self._send_lock:
                self.sock.sendall(data)
        except OSError as e:
            if self.closed:
                return ErrorKind.CLOSED
            self.log.debug("Send failed peer=%s err=%s", self.peer, e)
            return ErrorKind.TRANSPORT
        return None

    def send(self, message: Message) -> ErrorKind | None:
        return self.send_obj(message.to_envelope())

    def shutdown_write(self) -> None:
        """Signal end of stream to the peer while still reading its replies."""
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError:
            pass

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError:
            pass
