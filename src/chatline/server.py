"""
ChatServer — ties connection lifecycle and inbound events to the components.

The server is transport-agnostic: ``transport/socketio.py`` feeds it
handshakes, disconnects and events, and everything it sends goes through
an ``Emitter``.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import BaseModel, ValidationError

from chatline.auth import HttpIdentityVerifier, IdentityVerifier, JWTIdentityVerifier
from chatline.background import BackgroundTasks
from chatline.calls import CallSignaling
from chatline.config import Settings
from chatline.emitter import Emitter
from chatline.errors import ChatlineError, ProtocolMisuse
from chatline.models.events import C2SEvent
from chatline.models.payloads import (
    AnswerCallIn,
    CallUserIn,
    EndCallIn,
    IceCandidateIn,
    PrivateMessageIn,
    RejectCallIn,
    TypingIn,
)
from chatline.models.records import Session
from chatline.persistence import PersistenceGateway
from chatline.presence import PresenceBroadcaster
from chatline.registry import ConnectionRegistry
from chatline.router import MessageRouter
from chatline.transport.http import HttpClient
from chatline.typing_signals import TypingCoordinator

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any], Awaitable[Any]]


def extract_credential(environ: Optional[Mapping[str, Any]], auth: Any) -> Optional[str]:
    """Bearer token from the Socket.IO ``auth`` payload, else the Authorization header."""
    if isinstance(auth, dict) and auth.get("token"):
        return str(auth["token"])
    header = (environ or {}).get("HTTP_AUTHORIZATION", "")
    scheme, _, token = str(header).partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def build_verifier(settings: Settings) -> IdentityVerifier:
    if settings.auth_url:
        return HttpIdentityVerifier(HttpClient(settings.auth_url))
    if settings.jwt_secret:
        return JWTIdentityVerifier(settings.jwt_secret, settings.jwt_algorithm)
    raise ChatlineError("config_error", "Set CHATLINE_JWT_SECRET or CHATLINE_AUTH_URL to authorise connections")


class ChatServer:
    def __init__(
        self,
        verifier: IdentityVerifier,
        store: PersistenceGateway,
        emitter: Emitter,
        *,
        ring_timeout: Optional[float] = None,
    ):
        self.verifier = verifier
        self.store = store
        self.emitter = emitter
        self.tasks = BackgroundTasks()
        self.registry = ConnectionRegistry()
        self.presence = PresenceBroadcaster(self.registry, emitter, store, self.tasks)
        self.router = MessageRouter(self.registry, emitter, store)
        self.typing = TypingCoordinator(self.registry, emitter)
        self.calls = CallSignaling(self.registry, emitter, store, self.tasks, ring_timeout=ring_timeout)

        self._handlers: dict[str, tuple[type[BaseModel], Handler]] = {
            C2SEvent.PRIVATE_MESSAGE: (PrivateMessageIn, self._on_private_message),
            C2SEvent.TYPING_START: (TypingIn, self._on_typing_start),
            C2SEvent.TYPING_STOP: (TypingIn, self._on_typing_stop),
            C2SEvent.CALL_USER: (CallUserIn, self._on_call_user),
            C2SEvent.ANSWER_CALL: (AnswerCallIn, self._on_answer_call),
            C2SEvent.REJECT_CALL: (RejectCallIn, self._on_reject_call),
            C2SEvent.END_CALL: (EndCallIn, self._on_end_call),
            C2SEvent.ICE_CANDIDATE: (IceCandidateIn, self._on_ice_candidate),
        }

    @property
    def events(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def on_connect(self, handle: str, environ: Optional[Mapping[str, Any]] = None, auth: Any = None) -> Session:
        """Authorise a handshake and admit the connection.

        Raises AuthorizationError before anything is registered.
        """
        identity = await self.verifier.verify(extract_credential(environ, auth))
        session, evicted = self.presence.admit(identity, handle)
        if evicted is not None:
            # the evicted client held the media side of any call; done before
            # the new connection can place calls of its own
            await self.calls.drop_participant(identity.user_id)
        self.tasks.spawn(self.presence.announce(session, evicted), name=f"announce:{handle}")
        return session

    async def on_disconnect(self, handle: str) -> Optional[Session]:
        session = await self.presence.disconnect(handle)
        if session is not None:
            await self.calls.drop_participant(session.user_id)
        return session

    async def dispatch(self, handle: str, event: str, data: Any) -> None:
        """Run one inbound event. Misuse is logged and dropped; the connection stays up."""
        entry = self._handlers.get(event)
        if entry is None:
            logger.debug(f"Ignoring unknown event {event!r} from {handle}")
            return
        session = self.registry.session_for(handle)
        if session is None:
            logger.debug(f"Dropping {event} from unregistered connection {handle}")
            return

        model, handler = entry
        try:
            payload = model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Dropping malformed {event} from {session.user_id}: {e.error_count()} error(s)")
            return

        try:
            await handler(session, payload)
        except ProtocolMisuse as e:
            logger.debug(f"Dropping {event} from {session.user_id}: {e}")

    async def drain(self) -> None:
        await self.tasks.drain()

    async def shutdown(self) -> None:
        await self.drain()
        close = getattr(self.verifier, "close", None)
        if close is not None:
            await close()

    # event handlers --------------------------------------------------------

    async def _on_private_message(self, session: Session, payload: PrivateMessageIn) -> None:
        await self.router.send(session, payload.receiver_id, payload.message, payload.message_type, payload.file_url)

    async def _on_typing_start(self, session: Session, payload: TypingIn) -> None:
        await self.typing.typing_start(session, payload.receiver_id)

    async def _on_typing_stop(self, session: Session, payload: TypingIn) -> None:
        await self.typing.typing_stop(session, payload.receiver_id)

    async def _on_call_user(self, session: Session, payload: CallUserIn) -> None:
        await self.calls.call_user(session, payload.receiver_id, payload.offer)

    async def _on_answer_call(self, session: Session, payload: AnswerCallIn) -> None:
        await self.calls.answer_call(session, payload.caller_id, payload.answer)

    async def _on_reject_call(self, session: Session, payload: RejectCallIn) -> None:
        await self.calls.reject_call(session, payload.caller_id)

    async def _on_end_call(self, session: Session, payload: EndCallIn) -> None:
        await self.calls.end_call(session, payload.other_user_id)

    async def _on_ice_candidate(self, session: Session, payload: IceCandidateIn) -> None:
        await self.calls.relay_ice_candidate(session, payload.receiver_id, payload.candidate)
