"""
Presence broadcaster — announces users coming online and going offline.

Connecting is split in two: ``admit`` registers the Session synchronously
(so the connection is routable the moment the handshake is accepted) and
``announce`` does the slow part: status write, online list, fan-out.
"""

from __future__ import annotations

import logging
from typing import Optional

from chatline.background import BackgroundTasks
from chatline.emitter import Emitter, fan_out
from chatline.models.events import S2CEvent
from chatline.models.payloads import OnlineUser, PresenceOut, SessionReplacedOut
from chatline.models.records import Identity, Session
from chatline.persistence import PersistenceGateway
from chatline.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


class PresenceBroadcaster:
    def __init__(
        self,
        registry: ConnectionRegistry,
        emitter: Emitter,
        store: PersistenceGateway,
        tasks: BackgroundTasks,
    ):
        self._registry = registry
        self._emitter = emitter
        self._store = store
        self._tasks = tasks

    def admit(self, identity: Identity, handle: str) -> tuple[Session, Optional[Session]]:
        """Register ``handle`` for ``identity``. Returns (new session, evicted session)."""
        evicted = self._registry.register(identity.user_id, identity.username, handle)
        session = self._registry.session_for(handle)
        if session is None:
            raise RuntimeError(f"connection {handle} vanished during admission")
        return session, evicted

    async def announce(self, session: Session, evicted: Optional[Session] = None) -> None:
        if evicted is not None:
            await self._emitter.send(evicted.handle, S2CEvent.SESSION_REPLACED, SessionReplacedOut().to_wire())
            await self._emitter.disconnect(evicted.handle)

        if not self._is_current(session):
            logger.debug(f"Skipping announcement for {session.handle}: connection already gone")
            return
        self._record_status(session.user_id, ONLINE)

        online = [
            OnlineUser(id=s.user_id, username=s.username, status=ONLINE).to_wire()
            for s in self._registry.list_online(excluding=session.user_id)
        ]
        await self._emitter.send(session.handle, S2CEvent.ONLINE_USERS, online)

        # the connection may have closed while the online list was in flight
        if evicted is None and self._is_current(session):
            payload = PresenceOut(user_id=session.user_id, username=session.username).to_wire()
            await fan_out(
                self._emitter,
                self._registry.handles(excluding=session.user_id),
                S2CEvent.USER_ONLINE,
                payload,
            )
        logger.info(f"User {session.username} ({session.user_id}) online via {session.handle}")

    async def connect(self, identity: Identity, handle: str) -> Session:
        session, evicted = self.admit(identity, handle)
        await self.announce(session, evicted)
        return session

    async def disconnect(self, handle: str) -> Optional[Session]:
        """Forget ``handle``. Returns the Session if it was the user's current one."""
        session = self._registry.unregister(handle)
        if session is None:
            return None

        self._record_status(session.user_id, OFFLINE)
        payload = PresenceOut(user_id=session.user_id, username=session.username).to_wire()
        await fan_out(self._emitter, self._registry.handles(), S2CEvent.USER_OFFLINE, payload)
        logger.info(f"User {session.username} ({session.user_id}) offline")
        return session

    def _is_current(self, session: Session) -> bool:
        return self._registry.session_for(session.handle) is session

    def _record_status(self, user_id: str, status: str) -> None:
        self._tasks.spawn(self._store.update_status(user_id, status), name=f"update_status:{user_id}:{status}")
