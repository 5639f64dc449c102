"""
chatline — real-time presence, private messaging and call signaling.

Socket.IO server that tracks who is online, routes one-to-one messages and
typing indicators, and relays offer/answer/ICE signaling for audio calls.
"""

from chatline.auth import HttpIdentityVerifier, IdentityVerifier, JWTIdentityVerifier
from chatline.calls import CallSignaling, CallState, CallStatus
from chatline.config import Settings, load_settings
from chatline.errors import (
    AuthorizationError,
    ChatlineError,
    PersistenceError,
    ProtocolMisuse,
    UnreachablePeer,
)
from chatline.models.events import C2SEvent, S2CEvent
from chatline.persistence import PersistenceGateway, SQLiteStore
from chatline.registry import ConnectionRegistry
from chatline.server import ChatServer

__version__ = "0.1.0"
__all__ = [
    "ChatServer",
    "ConnectionRegistry",
    "CallSignaling",
    "CallState",
    "CallStatus",
    "IdentityVerifier",
    "JWTIdentityVerifier",
    "HttpIdentityVerifier",
    "PersistenceGateway",
    "SQLiteStore",
    "Settings",
    "load_settings",
    "ChatlineError",
    "AuthorizationError",
    "UnreachablePeer",
    "PersistenceError",
    "ProtocolMisuse",
    "C2SEvent",
    "S2CEvent",
]
