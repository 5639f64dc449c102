"""
Socket.IO server wiring.

Connection: ws(s)://{host}/{socketio_path}/ with auth={token}. The
handshake is refused (``connect_error`` on the client) when the token does
not verify; otherwise every chat event is forwarded to ``ChatServer``.
"""

import logging
from typing import Any, Optional

import socketio
from socketio.exceptions import ConnectionRefusedError as HandshakeRefused

from chatline.config import Settings
from chatline.errors import AuthorizationError
from chatline.persistence import SQLiteStore
from chatline.server import ChatServer, build_verifier

logger = logging.getLogger(__name__)


class SocketIOEmitter:
    """Emitter backed by a python-socketio AsyncServer."""

    def __init__(self, sio: socketio.AsyncServer):
        self._sio = sio

    async def send(self, handle: str, event: str, data: Any) -> bool:
        try:
            await self._sio.emit(event, data, to=handle)
        except Exception as e:
            logger.warning(f"Emit {event} to {handle} failed: {e}")
            return False
        return True

    async def disconnect(self, handle: str) -> None:
        try:
            await self._sio.disconnect(handle)
        except Exception as e:
            logger.warning(f"Disconnect of {handle} failed: {e}")


def attach(sio: socketio.AsyncServer, chat: ChatServer) -> None:
    """Register connect/disconnect and every chat event on ``sio``."""

    @sio.event
    async def connect(sid: str, environ: dict[str, Any], auth: Optional[dict[str, Any]] = None) -> None:
        try:
            session = await chat.on_connect(sid, environ, auth)
        except AuthorizationError as e:
            logger.info(f"Refused connection {sid}: {e}")
            raise HandshakeRefused(str(e))
        logger.info(f"User {session.username} connected with socket {sid}")

    @sio.event
    async def disconnect(sid: str, reason: Any = None) -> None:
        await chat.on_disconnect(sid)

    for event in chat.events:
        sio.on(event, handler=_forwarder(chat, event))


def _forwarder(chat: ChatServer, event: str):
    async def forward(sid: str, data: Any = None) -> None:
        await chat.dispatch(sid, event, data)

    forward.__name__ = f"on_{event}"
    return forward


def create_server(settings: Settings) -> tuple[socketio.AsyncServer, ChatServer, SQLiteStore]:
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=settings.cors_allowed_origins())
    store = SQLiteStore(settings.db_path)
    chat = ChatServer(
        build_verifier(settings),
        store,
        SocketIOEmitter(sio),
        ring_timeout=settings.ring_timeout,
    )
    attach(sio, chat)
    return sio, chat, store


def create_app(settings: Settings) -> socketio.ASGIApp:
    """ASGI application serving the chat socket, with schema setup on startup."""
    sio, chat, store = create_server(settings)

    async def on_startup() -> None:
        await store.init()

    async def on_shutdown() -> None:
        await chat.shutdown()
        await store.close()

    return socketio.ASGIApp(
        sio,
        socketio_path=settings.socketio_path,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
