from __future__ import annotations

import enum
import logging
import queue
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from .channel import Channel, Received
from .constants import USERNAME_MAX_CHARS
from .errors import Action, ErrorKind, policy_for
from .messages import (
    Message,
    MessageType,
    block_notice,
    disconnect_notice,
    logout_notice,
    unblock_notice,
)
from .util import normalize_username

if TYPE_CHECKING:
    from .registry import Registry


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


_STOP = object()


class Session:
    """
    Server-side handler for one connected client.

    A session owns its channel, its username and its blacklist. The receive
    loop (``run``) executes on the connection's thread; outbound messages
    are queued by any thread and written by a per-session delivery thread,
    so a slow client never stalls the thread that broadcast to it.

    The blacklist is only written from the receive loop. It is a frozenset
    replaced on every change, which lets the registry read it from other
    threads without further locking.
    """

    def __init__(
        self,
        channel: Channel,
        username: str,
        *,
        registry: Registry,
        on_shutdown: Callable[[], None] | None = None,
        outbox_max: int = 256,
        username_max_chars: int = USERNAME_MAX_CHARS,
    ) -> None:
        self.id: int | None = None
        self.username = username
        self.channel = channel
        self.registry = registry
        self.log = logging.getLogger("chatd.session")

        self._on_shutdown = on_shutdown
        self._outbox_max = int(outbox_max)
        self._username_max_chars = int(username_max_chars)
        self._blacklist: frozenset[str] = frozenset()

        self._state = SessionState.CONNECTING
        self._state_lock = threading.Lock()
        self._outbox: queue.Queue = queue.Queue()
        self._writer: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"<Session id={self.id} username={self.username!r} state={self._state.value}>"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def blacklist(self) -> frozenset[str]:
        return self._blacklist

    def is_blocked(self, username: str) -> bool:
        return username in self._blacklist

    # Lifecycle

    def activate(self) -> int:
        """Register with the registry and start outbound delivery.

        Raises RegistryFull if the registry refuses the session.
        """
        with self._state_lock:
            if self._state is not SessionState.CONNECTING:
                raise RuntimeError(f"cannot activate session in state {self._state.value}")
            sid = self.registry.register(self)
            self._state = SessionState.ACTIVE

        self._writer = threading.Thread(
            target=self._deliver_loop, name=f"chatd-out-{sid}", daemon=True
        )
        self._writer.start()
        return sid

    def close(self, *, notice: Message | None = None, reason: str = "") -> bool:
        """
        Enter CLOSED. Only the first call has any effect.

        The session leaves the registry immediately. ``notice``, if given, is
        written after anything already queued, then the channel is closed.
        Returns True if this call performed the transition.
        """
        with self._state_lock:
            if self._state is SessionState.CLOSED:
                return False
            self._state = SessionState.CLOSED

        if self.id is not None:
            self.registry.remove(self.id)

        if self._writer is None:
            self.channel.close()
        else:
            if notice is not None:
                self._outbox.put(notice)
            self._outbox.put(_STOP)

        self.log.info(
            "Session closed id=%s username=%r reason=%s",
            self.id,
            self.username,
            reason or "-",
        )
        return True

    def join(self, timeout: float | None = None) -> None:
        """Wait for queued output to be flushed after close."""
        if self._writer is not None and self._writer is not threading.current_thread():
            self._writer.join(timeout)

    # Outbound

    def send(self, message: Message) -> bool:
        """Queue ``message`` for this client. Never raises.

        Returns False if the session is closed, or if its backlog is full,
        in which case the session is closed as too slow.
        """
        if self._state is SessionState.CLOSED:
            return False
        if self._outbox_max > 0 and self._outbox.qsize() >= self._outbox_max:
            self.log.warning(
                "Outbox full id=%s username=%r backlog=%s",
                self.id,
                self.username,
                self._outbox.qsize(),
            )
            # Registry.broadcast delivers outside its lock, so re-entering it is safe.
            self._drop("outbox full")
            return False
        self._outbox.put(message)
        return True

    def _deliver_loop(self) -> None:
        while True:
            item = self._outbox.get()
            if item is _STOP:
                break
            err = self.channel.send(item)
            if err is ErrorKind.MALFORMED:
                # Oversized for the wire; the channel already logged it.
                continue
            if err is not None:
                self._handle_error(err, "send failed")
                break
        self.channel.close()

    # Inbound

    def run(self) -> None:
        """Receive and dispatch messages until the session is closed."""
        try:
            while self._state is not SessionState.CLOSED:
                result = self.channel.receive()
                if not result.ok:
                    if self._on_receive_error(result):
                        break
                    continue
                self.dispatch(result.message)
        except Exception:
            self.log.exception("Session failed id=%s username=%r", self.id, self.username)
            self._drop("internal error")

    def _on_receive_error(self, result: Received) -> bool:
        """Apply the error policy. Returns True when the loop must stop."""
        if result.error is ErrorKind.CLOSED and self._state is SessionState.CLOSED:
            return True
        return self._handle_error(result.error, result.detail)

    def _handle_error(self, kind: ErrorKind, detail: str) -> bool:
        policy = policy_for(kind)
        self.log.log(
            policy.level,
            "Session error id=%s username=%r kind=%s detail=%s",
            self.id,
            self.username,
            kind.value,
            detail,
        )
        if policy.action is Action.LOG_ONLY:
            return False
        if policy.action is Action.ESCALATE and self._on_shutdown is not None:
            self._on_shutdown()
        self._drop(f"{kind.value}: {detail}")
        return True

    def _drop(self, reason: str) -> None:
        if self.close(reason=reason):
            self.registry.broadcast(disconnect_notice(self.username))

    def dispatch(self, message: Message) -> None:
        t = message.type

        if t is MessageType.TEXT:
            # The sender id on the wire is not trusted.
            self.registry.broadcast(message.with_sender(self.id))
            return

        if t is MessageType.LOGOUT:
            if self.close(reason="logout"):
                self.registry.broadcast(logout_notice(self.username))
            return

        if t is MessageType.SHUTDOWN:
            self.log.info("Shutdown requested id=%s username=%r", self.id, self.username)
            if self._on_shutdown is not None:
                self._on_shutdown()
            self.close(reason="shutdown requested")
            return

        if t is MessageType.BLOCK:
            target = self._target(message)
            if target is None:
                return
            self._blacklist = self._blacklist | {target}
            self.registry.broadcast(block_notice(self.username, target))
            return

        if t is MessageType.UNBLOCK:
            target = self._target(message)
            if target is None:
                return
            self._blacklist = self._blacklist - {target}
            self.registry.broadcast(unblock_notice(self.username, target))
            return

        self.log.debug("Ignoring message type=%r id=%s", t, self.id)

    def _target(self, message: Message) -> str | None:
        target = normalize_username(message.body, max_chars=self._username_max_chars)
        if target is None:
            self.log.debug(
                "Ignoring %s with bad target id=%s body=%r",
                message.type.name,
                self.id,
                message.body,
            )
        return target
