"""Typing indicators: relayed to an online receiver, dropped otherwise."""

from chatline.emitter import Emitter
from chatline.models.events import S2CEvent
from chatline.models.payloads import TypingOut
from chatline.models.records import Session
from chatline.registry import ConnectionRegistry


class TypingCoordinator:
    def __init__(self, registry: ConnectionRegistry, emitter: Emitter):
        self._registry = registry
        self._emitter = emitter

    async def typing_start(self, sender: Session, receiver_id: str) -> bool:
        return await self._relay(sender, receiver_id, S2CEvent.USER_TYPING)

    async def typing_stop(self, sender: Session, receiver_id: str) -> bool:
        return await self._relay(sender, receiver_id, S2CEvent.USER_STOP_TYPING)

    async def _relay(self, sender: Session, receiver_id: str, event: str) -> bool:
        handle = self._registry.lookup(receiver_id)
        if handle is None:
            return False
        payload = TypingOut(user_id=sender.user_id, username=sender.username).to_wire()
        return await self._emitter.send(handle, event, payload)
