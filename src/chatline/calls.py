"""
Call signaling — offer/answer/ICE relay between exactly two peers.

Each call lives in an arena keyed by the unordered pair of participants
and moves through an explicit state machine::

    idle --call_user--> ringing --answer_call--> connected --end_call--> ended
                           |--reject_call--> rejected
                           |--end_call / ring timeout--> ended / failed
    ringing|connected --participant disconnects--> failed|ended

A call is removed from the arena before it is finalised, so each call is
finalised (and logged) exactly once no matter which of end, reject,
disconnect or timeout gets there first. Events that do not fit the current
state, or come from someone who is not the right participant, raise
``ProtocolMisuse`` and change nothing.

Payload contents (SDP, candidates) are relayed untouched.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from chatline.background import BackgroundTasks
from chatline.emitter import Emitter
from chatline.errors import ProtocolMisuse, UnreachablePeer
from chatline.models.events import S2CEvent
from chatline.models.payloads import (
    CallAnsweredOut,
    CallEndedOut,
    CallFailedOut,
    CallRejectedOut,
    IceCandidateOut,
    IncomingCallOut,
)
from chatline.models.records import Session
from chatline.persistence import PersistenceGateway
from chatline.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

CALL_TYPE_AUDIO = "audio"
NO_ANSWER = "No answer"


class CallState(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def live(self) -> bool:
        return self in (CallState.RINGING, CallState.CONNECTED)


class CallStatus:
    """Status recorded in the call log."""

    ANSWERED = "answered"
    REJECTED = "rejected"
    MISSED = "missed"
    FAILED = "failed"


_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.IDLE: frozenset({CallState.RINGING}),
    CallState.RINGING: frozenset({CallState.CONNECTED, CallState.REJECTED, CallState.ENDED, CallState.FAILED}),
    CallState.CONNECTED: frozenset({CallState.ENDED}),
}


def call_key(a: str, b: str) -> frozenset[str]:
    return frozenset((a, b))


@dataclass(slots=True)
class CallSession:
    caller_id: str
    receiver_id: str
    offer: Any
    started_at: datetime
    state: CallState = CallState.IDLE
    answer: Any = None
    connected_at: Optional[float] = None
    ended_at: Optional[datetime] = None
    status: Optional[str] = None
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def key(self) -> frozenset[str]:
        return call_key(self.caller_id, self.receiver_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.caller_id, self.receiver_id)

    def peer_of(self, user_id: str) -> str:
        return self.receiver_id if user_id == self.caller_id else self.caller_id

    def transition(self, new_state: CallState) -> None:
        if new_state not in _TRANSITIONS.get(self.state, frozenset()):
            raise ProtocolMisuse(f"call {self.caller_id}->{self.receiver_id} cannot go from {self.state.value} to {new_state.value}")
        self.state = new_state

    def duration(self, now: float) -> int:
        if self.connected_at is None:
            return 0
        return max(0, int(now - self.connected_at))


class CallSignaling:
    def __init__(
        self,
        registry: ConnectionRegistry,
        emitter: Emitter,
        store: PersistenceGateway,
        tasks: BackgroundTasks,
        *,
        ring_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._emitter = emitter
        self._store = store
        self._tasks = tasks
        self._ring_timeout = ring_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._calls: dict[frozenset[str], CallSession] = {}

    def get(self, a: str, b: str) -> Optional[CallSession]:
        with self._lock:
            return self._calls.get(call_key(a, b))

    def active_calls(self, user_id: Optional[str] = None) -> list[CallSession]:
        with self._lock:
            return [c for c in self._calls.values() if user_id is None or c.involves(user_id)]

    # ------------------------------------------------------------------
    # client events
    # ------------------------------------------------------------------

    async def call_user(self, caller: Session, receiver_id: str, offer: Any) -> Optional[CallSession]:
        """Ring ``receiver_id``. Returns the ringing call, or None if the receiver is offline."""
        if receiver_id == caller.user_id:
            raise ProtocolMisuse("cannot call yourself", "call_user")

        try:
            receiver_handle = self._resolve(receiver_id)
        except UnreachablePeer as e:
            await self._emitter.send(caller.handle, S2CEvent.CALL_FAILED, CallFailedOut(message=str(e)).to_wire())
            return None

        call = CallSession(
            caller_id=caller.user_id,
            receiver_id=receiver_id,
            offer=offer,
            started_at=datetime.now(timezone.utc),
        )
        call.transition(CallState.RINGING)
        with self._lock:
            superseded = self._calls.get(call.key)
            self._calls[call.key] = call
        if superseded is not None:
            logger.info(f"Call {superseded.caller_id}->{superseded.receiver_id} superseded by a new offer")
            self._finish_ended(superseded)
            # the new caller knows; the other side is still waiting on the old call
            await self._emitter.send(
                receiver_handle,
                S2CEvent.CALL_ENDED,
                CallEndedOut(user_id=caller.user_id).to_wire(),
            )
        self._arm_ring_timer(call)

        payload = IncomingCallOut(caller_id=caller.user_id, caller_username=caller.username, offer=offer).to_wire()
        if not await self._emitter.send(receiver_handle, S2CEvent.INCOMING_CALL, payload):
            # receiver dropped between lookup and delivery
            if self._take(call):
                self._cancel_ring_timer(call)
                call.state = CallState.IDLE
                await self._emitter.send(
                    caller.handle,
                    S2CEvent.CALL_FAILED,
                    CallFailedOut(message=str(UnreachablePeer(receiver_id))).to_wire(),
                )
            return None

        logger.info(f"Call {caller.user_id}->{receiver_id} ringing")
        return call

    async def answer_call(self, receiver: Session, caller_id: str, answer: Any) -> CallSession:
        with self._lock:
            call = self._calls.get(call_key(receiver.user_id, caller_id))
            if call is None or call.receiver_id != receiver.user_id or call.state is not CallState.RINGING:
                raise ProtocolMisuse(f"{receiver.user_id} has no ringing call from {caller_id}", "answer_call")
            call.transition(CallState.CONNECTED)
            call.answer = answer
            call.connected_at = self._clock()
        self._cancel_ring_timer(call)

        caller_handle = self._registry.lookup(caller_id)
        if caller_handle is not None:
            payload = CallAnsweredOut(answer=answer, receiver_id=receiver.user_id).to_wire()
            await self._emitter.send(caller_handle, S2CEvent.CALL_ANSWERED, payload)
        logger.info(f"Call {caller_id}->{receiver.user_id} connected")
        return call

    async def reject_call(self, receiver: Session, caller_id: str) -> CallSession:
        with self._lock:
            key = call_key(receiver.user_id, caller_id)
            call = self._calls.get(key)
            if call is None or call.receiver_id != receiver.user_id or call.state is not CallState.RINGING:
                raise ProtocolMisuse(f"{receiver.user_id} has no ringing call from {caller_id}", "reject_call")
            del self._calls[key]
        self._finish(call, CallState.REJECTED, CallStatus.REJECTED)

        caller_handle = self._registry.lookup(caller_id)
        if caller_handle is not None:
            await self._emitter.send(
                caller_handle,
                S2CEvent.CALL_REJECTED,
                CallRejectedOut(receiver_id=receiver.user_id).to_wire(),
            )
        logger.info(f"Call {caller_id}->{receiver.user_id} rejected")
        return call

    async def end_call(self, user: Session, other_user_id: str) -> CallSession:
        with self._lock:
            key = call_key(user.user_id, other_user_id)
            call = self._calls.get(key)
            if call is None or user.user_id == other_user_id or not call.state.live:
                raise ProtocolMisuse(f"{user.user_id} has no call with {other_user_id}", "end_call")
            del self._calls[key]
        self._finish_ended(call)

        other_handle = self._registry.lookup(other_user_id)
        if other_handle is not None:
            await self._emitter.send(other_handle, S2CEvent.CALL_ENDED, CallEndedOut(user_id=user.user_id).to_wire())
        logger.info(f"Call {call.caller_id}->{call.receiver_id} ended by {user.user_id} ({call.status})")
        return call

    async def relay_ice_candidate(self, sender: Session, receiver_id: str, candidate: Any) -> bool:
        """Forward a connectivity candidate to the other participant of a live call."""
        call = self.get(sender.user_id, receiver_id)
        if call is None or sender.user_id == receiver_id or not call.state.live:
            raise ProtocolMisuse(f"{sender.user_id} has no call with {receiver_id}", "ice_candidate")

        receiver_handle = self._registry.lookup(receiver_id)
        if receiver_handle is None:
            return False
        payload = IceCandidateOut(sender_id=sender.user_id, candidate=candidate).to_wire()
        return await self._emitter.send(receiver_handle, S2CEvent.ICE_CANDIDATE, payload)

    # ------------------------------------------------------------------
    # connection lifecycle
    # ------------------------------------------------------------------

    async def drop_participant(self, user_id: str) -> list[CallSession]:
        """End every live call ``user_id`` is part of. Used when their connection goes away."""
        with self._lock:
            dropped = [c for c in self._calls.values() if c.involves(user_id)]
            for call in dropped:
                del self._calls[call.key]

        for call in dropped:
            if call.state is CallState.CONNECTED:
                self._finish(call, CallState.ENDED, CallStatus.ANSWERED)
            else:
                self._finish(call, CallState.FAILED, CallStatus.FAILED)
            other_handle = self._registry.lookup(call.peer_of(user_id))
            if other_handle is not None:
                await self._emitter.send(other_handle, S2CEvent.CALL_ENDED, CallEndedOut(user_id=user_id).to_wire())
            logger.info(f"Call {call.caller_id}->{call.receiver_id} dropped: {user_id} disconnected")
        return dropped

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _resolve(self, user_id: str) -> str:
        handle = self._registry.lookup(user_id)
        if handle is None:
            raise UnreachablePeer(user_id)
        return handle

    def _take(self, call: CallSession) -> bool:
        with self._lock:
            if self._calls.get(call.key) is call:
                del self._calls[call.key]
                return True
            return False

    def _finish_ended(self, call: CallSession) -> None:
        if call.state is CallState.CONNECTED:
            self._finish(call, CallState.ENDED, CallStatus.ANSWERED)
        else:
            self._finish(call, CallState.ENDED, CallStatus.MISSED)

    def _finish(self, call: CallSession, state: CallState, status: str) -> None:
        self._cancel_ring_timer(call)
        duration = call.duration(self._clock())
        call.transition(state)
        call.status = status
        call.ended_at = datetime.now(timezone.utc)
        self._tasks.spawn(
            self._store.save_call_log(call.caller_id, call.receiver_id, CALL_TYPE_AUDIO, status, duration),
            name=f"save_call_log:{call.caller_id}:{call.receiver_id}",
        )

    def _arm_ring_timer(self, call: CallSession) -> None:
        if self._ring_timeout is None:
            return
        loop = asyncio.get_running_loop()
        call.timer = loop.call_later(self._ring_timeout, self._on_ring_timeout, call)

    @staticmethod
    def _cancel_ring_timer(call: CallSession) -> None:
        if call.timer is not None:
            call.timer.cancel()
            call.timer = None

    def _on_ring_timeout(self, call: CallSession) -> None:
        call.timer = None
        self._tasks.spawn(self._expire(call), name=f"ring_timeout:{call.caller_id}:{call.receiver_id}")

    async def _expire(self, call: CallSession) -> None:
        with self._lock:
            if self._calls.get(call.key) is not call or call.state is not CallState.RINGING:
                return
            del self._calls[call.key]
        self._finish(call, CallState.FAILED, CallStatus.MISSED)

        caller_handle = self._registry.lookup(call.caller_id)
        if caller_handle is not None:
            await self._emitter.send(caller_handle, S2CEvent.CALL_FAILED, CallFailedOut(message=NO_ANSWER).to_wire())
        receiver_handle = self._registry.lookup(call.receiver_id)
        if receiver_handle is not None:
            await self._emitter.send(
                receiver_handle,
                S2CEvent.CALL_ENDED,
                CallEndedOut(user_id=call.caller_id).to_wire(),
            )
        logger.info(f"Call {call.caller_id}->{call.receiver_id} not answered within {self._ring_timeout}s")
