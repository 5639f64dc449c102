"""
Message router — persist, deliver, acknowledge.

A message is written to the store before anyone sees it. If the write
fails the sender gets ``message_failed`` and the receiver gets nothing.
Otherwise the receiver gets ``new_message`` when online, and the sender
always gets ``message_sent`` with the same persisted id.

Sends for one (sender, receiver) pair are serialised so acknowledgements
and deliveries keep the order the sender issued them in.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from chatline.emitter import Emitter
from chatline.errors import PersistenceError
from chatline.models.events import S2CEvent
from chatline.models.payloads import MessageFailedOut, MessageOut
from chatline.models.records import Message, Session
from chatline.persistence import PersistenceGateway
from chatline.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class MessageRouter:
    def __init__(self, registry: ConnectionRegistry, emitter: Emitter, store: PersistenceGateway):
        self._registry = registry
        self._emitter = emitter
        self._store = store
        self._pair_locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pair_waiters: defaultdict[tuple[str, str], int] = defaultdict(int)

    async def send(
        self,
        sender: Session,
        receiver_id: str,
        body: str,
        kind: str = "text",
        file_ref: Optional[str] = None,
    ) -> Optional[Message]:
        """Route one private message. Returns the persisted message, or None if it failed."""
        key = (sender.user_id, receiver_id)
        self._pair_waiters[key] += 1
        try:
            async with self._pair_locks[key]:
                return await self._send_locked(sender, receiver_id, body, kind, file_ref)
        finally:
            self._pair_waiters[key] -= 1
            if not self._pair_waiters[key]:
                del self._pair_waiters[key]
                self._pair_locks.pop(key, None)

    async def _send_locked(
        self,
        sender: Session,
        receiver_id: str,
        body: str,
        kind: str,
        file_ref: Optional[str],
    ) -> Optional[Message]:
        now = datetime.now(timezone.utc)
        # stored rows keep millisecond precision
        created_at = now.replace(microsecond=now.microsecond // 1000 * 1000)
        try:
            message_id = await self._store.save_message(
                sender.user_id, receiver_id, body, kind, file_ref, created_at=created_at
            )
        except PersistenceError as e:
            logger.warning(f"Message from {sender.user_id} to {receiver_id} not persisted: {e}")
            await self._emitter.send(
                sender.handle,
                S2CEvent.MESSAGE_FAILED,
                MessageFailedOut(receiver_id=receiver_id).to_wire(),
            )
            return None

        message = Message(
            id=message_id,
            sender_id=sender.user_id,
            receiver_id=receiver_id,
            body=body,
            kind=kind,
            file_ref=file_ref,
            created_at=created_at,
            sender_username=sender.username,
        )
        payload = MessageOut.from_record(message, sender.username).to_wire()

        receiver_handle = self._registry.lookup(receiver_id)
        if receiver_handle is not None:
            delivered = await self._emitter.send(receiver_handle, S2CEvent.NEW_MESSAGE, payload)
            if not delivered:
                logger.debug(f"Message {message_id} persisted; {receiver_id} went away before delivery")

        await self._emitter.send(sender.handle, S2CEvent.MESSAGE_SENT, payload)
        return message
