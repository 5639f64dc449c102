"""
Connection registry — who is online, and through which connection.

The registry is the single source of truth for reachability. It maps each
user id to exactly one current Session and each connection handle back to
its Session. Every read and write goes through one lock; critical sections
are plain dict operations and never await.

A user connecting a second time evicts the first Session. ``register``
returns the evicted Session so the caller can notify and close it; a later
``unregister`` of the evicted handle is a no-op, which keeps offline
notifications exactly-once.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from chatline.models.records import Session

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_user: dict[str, Session] = {}
        self._by_handle: dict[str, Session] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_user)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._by_user

    def register(self, user_id: str, username: str, handle: str) -> Optional[Session]:
        """Make ``handle`` the current connection of ``user_id``.

        Returns the Session that was evicted, or None.
        """
        with self._lock:
            current = self._by_user.get(user_id)
            if current is not None and current.handle == handle:
                return None
            previous = self._by_handle.get(handle)
            if previous is not None and previous.user_id != user_id:
                raise ValueError(f"handle {handle} is already bound to user {previous.user_id}")

            session = Session(
                user_id=user_id,
                username=username,
                handle=handle,
                connected_at=datetime.now(timezone.utc),
            )
            self._by_user[user_id] = session
            self._by_handle[handle] = session
            if current is not None:
                del self._by_handle[current.handle]

        if current is not None:
            logger.info(f"User {user_id} reconnected; evicting connection {current.handle}")
        return current

    def unregister(self, handle: str) -> Optional[Session]:
        """Drop the Session bound to ``handle``. Returns it if it was current."""
        with self._lock:
            session = self._by_handle.pop(handle, None)
            if session is None:
                return None
            if self._by_user.get(session.user_id) is session:
                del self._by_user[session.user_id]
            return session

    def lookup(self, user_id: str) -> Optional[str]:
        with self._lock:
            session = self._by_user.get(user_id)
            return session.handle if session is not None else None

    def session_for(self, handle: str) -> Optional[Session]:
        with self._lock:
            return self._by_handle.get(handle)

    def list_online(self, excluding: Optional[str] = None) -> list[Session]:
        with self._lock:
            return [s for uid, s in self._by_user.items() if uid != excluding]

    def handles(self, excluding: Optional[str] = None) -> list[str]:
        """Handles of every current Session, optionally skipping one user."""
        with self._lock:
            return [s.handle for uid, s in self._by_user.items() if uid != excluding]
