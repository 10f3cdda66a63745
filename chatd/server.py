from __future__ import annotations

import logging
import signal
import socket
import threading
import time

from .channel import Channel
from .config import ServerConfig
from .constants import SERVER_ID
from .errors import BindError, ErrorKind, HandshakeError, RegistryFull, policy_for
from .messages import Message, MessageType, connect_notice, shutdown_notice
from .registry import Registry
from .session import Session
from .util import fmt_addr


class ChatServer:
    """
    Accepts client connections and owns the global start/stop lifecycle.

    The accept loop runs on its own thread. Each accepted connection gets a
    thread that performs the username handshake and then runs the session's
    receive loop, so a slow or silent client never holds up ``accept``.
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config = config or ServerConfig()
        self.log = logging.getLogger("chatd.server")
        self.registry = Registry(max_sessions=self.config.max_sessions)

        # Serializes admission against shutdown so no session can be
        # registered after shutdown has taken its snapshot.
        self._lifecycle_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._stopped = threading.Event()
        self._drained = threading.Event()

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._closing: list[Session] = []
        self.address: tuple[str, int] | None = None

    def start(self, port: int | None = None) -> tuple[str, int]:
        """Bind, listen and start accepting. Returns the bound address.

        Raises BindError if the listening socket cannot be set up.
        """
        if self._accept_thread is not None:
            raise RuntimeError("server already started")

        host = self.config.host
        port = self.config.port if port is None else int(port)

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((host, port))
            listener.listen(self.config.backlog)
        except (OSError, OverflowError, TypeError, ValueError) as e:
            # Bad host/port types from a config file fail here too.
            listener.close()
            self.log.log(
                policy_for(ErrorKind.BIND).level, "Bind failed host=%s port=%s err=%s", host, port, e
            )
            raise BindError(f"cannot listen on {host}:{port}: {e}") from e

        # Accept wakes up periodically to notice shutdown.
        listener.settimeout(self.config.accept_poll_s)
        self._listener = listener
        self.address = listener.getsockname()[:2]

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="chatd-accept", daemon=True
        )
        self._accept_thread.start()

        self.log.info("Server started on %s", fmt_addr(self.address))
        self.log.info(
            "Policy max_sessions=%s outbox_max=%s handshake_timeout_s=%s send_timeout_s=%s",
            self.config.max_sessions,
            self.config.outbox_max,
            self.config.handshake_timeout_s,
            self.config.send_timeout_s,
        )
        return self.address

    def startup(self, port: int | None = None) -> None:
        """Start the server and block until it has shut down."""
        self.start(port)

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, lambda *_: self.shutdown())
            signal.signal(signal.SIGTERM, lambda *_: self.shutdown())

        while not self._shutdown.is_set():
            time.sleep(0.25)

        self.wait()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until the accept loop has exited and notices are flushed."""
        if not self._stopped.wait(timeout):
            return False
        if not self._drained.wait(timeout):
            return False
        for session in self._closing:
            session.join(self.config.send_timeout_s)
        return True

    def shutdown(self) -> None:
        """Stop accepting and close every session with a SHUTDOWN notice.

        Safe to call more than once and from any thread.
        """
        with self._lifecycle_lock:
            if self._shutdown.is_set():
                return
            sessions = self.registry.clear_all()
            self._closing = sessions
            self._shutdown.set()

        self.log.info("Shutting down sessions=%s", len(sessions))

        notice = shutdown_notice()
        for session in sessions:
            session.close(notice=notice, reason="server shutdown")

        self._drained.set()
        if self._accept_thread is None:
            self._stopped.set()

    def _accept_loop(self) -> None:
        listener = self._listener
        assert listener is not None
        try:
            while not self._shutdown.is_set():
                try:
                    sock, addr = listener.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._shutdown.is_set():
                        break
                    self.log.warning("Accept failed err=%s", e)
                    time.sleep(self.config.accept_poll_s)
                    continue

                threading.Thread(
                    target=self._serve_connection,
                    args=(sock, addr),
                    name=f"chatd-conn-{fmt_addr(addr)}",
                    daemon=True,
                ).start()
        finally:
            try:
                listener.close()
            except OSError:
                pass
            self.log.info("No longer accepting connections")
            self._stopped.set()

    def _serve_connection(self, sock: socket.socket, addr) -> None:
        peer = fmt_addr(addr)
        self.log.info("Connection accepted peer=%s", peer)

        channel = Channel(sock, max_frame_bytes=self.config.max_frame_bytes, peer=peer)
        channel.settimeout(self.config.handshake_timeout_s or None)
        try:
            username = channel.read_handshake(max_chars=self.config.username_max_chars)
        except HandshakeError as e:
            self.log.log(
                policy_for(ErrorKind.HANDSHAKE).level, "Handshake failed peer=%s err=%s", peer, e
            )
            channel.close()
            return

        channel.settimeout(self.config.send_timeout_s or None)
        session = Session(
            channel,
            username,
            registry=self.registry,
            on_shutdown=self.shutdown,
            outbox_max=self.config.outbox_max,
            username_max_chars=self.config.username_max_chars,
        )

        refusal: Message | None = None
        with self._lifecycle_lock:
            if self._shutdown.is_set():
                refusal = shutdown_notice()
            else:
                try:
                    session.activate()
                except RegistryFull as e:
                    self.log.warning("Refusing peer=%s username=%r: %s", peer, username, e)
                    refusal = Message(SERVER_ID, MessageType.LOGOUT, "Server is full.")

        if refusal is not None:
            channel.send(refusal)
            channel.close()
            return

        self.log.info("Session active id=%s username=%r peer=%s", session.id, username, peer)
        self.registry.broadcast(connect_notice(username))

        try:
            session.run()
        finally:
            session.close(reason="receive loop ended")
