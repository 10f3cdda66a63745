from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING

from .errors import RegistryFull
from .messages import Message

if TYPE_CHECKING:
    from .session import Session


class Registry:
    """
    Directory of live sessions, keyed by session id.

    This class is responsible for:
    - Assigning ids (monotonic, starting at 1, never reused)
    - Atomic admission and removal of sessions
    - Broadcast fan-out over a point-in-time snapshot of the roster

    All access to the roster goes through one lock. No I/O is performed
    while the lock is held; deliveries happen after the snapshot is taken.
    """

    def __init__(self, *, max_sessions: int = 0) -> None:
        self.log = logging.getLogger("chatd.registry")
        self.max_sessions = int(max_sessions)
        self._lock = threading.Lock()
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)

    def register(self, session: Session) -> int:
        with self._lock:
            if self.max_sessions > 0 and len(self._sessions) >= self.max_sessions:
                raise RegistryFull(f"session limit {self.max_sessions} reached")
            sid = next(self._ids)
            session.id = sid
            self._sessions[sid] = session

        self.log.info("Registered id=%s username=%r", sid, session.username)
        return sid

    def remove(self, sid: int) -> Session | None:
        """Remove a session. Removing an absent id is a no-op."""
        with self._lock:
            session = self._sessions.pop(sid, None)

        if session is not None:
            self.log.info("Removed id=%s username=%r", sid, session.username)
        return session

    def get(self, sid: int) -> Session | None:
        with self._lock:
            return self._sessions.get(sid)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def clear_all(self) -> list[Session]:
        """Empty the registry and return the sessions that were in it."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        return sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, sid: object) -> bool:
        with self._lock:
            return sid in self._sessions

    def broadcast(self, message: Message) -> int:
        """
        Hand ``message`` to every registered session whose blacklist does not
        name the sender.

        Returns the number of sessions that accepted the message. Notices
        from the server, and messages whose sender has already left, are
        not filtered.
        """
        with self._lock:
            sender_name = None
            if not message.is_notice:
                sender = self._sessions.get(message.sender_id)
                if sender is not None:
                    sender_name = sender.username
            # Blacklists are immutable frozensets, replaced on change, so
            # the references taken here stay consistent after the lock drops.
            targets = [(s, s.blacklist) for s in self._sessions.values()]

        delivered = 0
        for session, blacklist in targets:
            if sender_name is not None and sender_name in blacklist:
                continue
            try:
                accepted = session.send(message)
            except Exception:
                self.log.exception(
                    "Delivery raised id=%s username=%r", session.id, session.username
                )
                continue
            if accepted:
                delivered += 1

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Broadcast type=%s sender=%s delivered=%s of %s",
                message.type.name,
                message.sender_id,
                delivered,
                len(targets),
            )
        return delivered
