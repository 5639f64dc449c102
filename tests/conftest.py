"""Shared fakes: a recording emitter, a static verifier and an in-memory store."""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from chatline.background import BackgroundTasks
from chatline.errors import AuthorizationError, PersistenceError
from chatline.models.records import CallLog, Identity, Message
from chatline.registry import ConnectionRegistry
from chatline.server import ChatServer


class RecordingEmitter:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, Any]] = []
        self.disconnected: list[str] = []
        self.dead: set[str] = set()

    async def send(self, handle: str, event: str, data: Any) -> bool:
        if handle in self.dead:
            return False
        self.sent.append((handle, event, data))
        return True

    async def disconnect(self, handle: str) -> None:
        self.disconnected.append(handle)

    def received(self, handle: str, event: Optional[str] = None) -> list[Any]:
        return [d for h, e, d in self.sent if h == handle and (event is None or e == event)]

    def events(self, handle: str) -> list[str]:
        return [e for h, e, _ in self.sent if h == handle]

    def count(self, event: str) -> int:
        return sum(1 for _, e, _ in self.sent if e == event)

    def clear(self) -> None:
        self.sent.clear()


class StaticVerifier:
    """Accepts tokens of the form ``"<user_id>:<username>"``."""

    async def verify(self, credential: Optional[str]) -> Identity:
        if not credential or ":" not in credential:
            raise AuthorizationError("Authentication error: Invalid token")
        user_id, username = credential.split(":", 1)
        return Identity(user_id=user_id, username=username)


class MemoryStore:
    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.statuses: dict[str, str] = {}
        self.call_logs: list[dict[str, Any]] = []
        self.fail_messages = False
        self.fail_status = False
        self.fail_calls = False
        self.save_delays: list[float] = []
        self._ids = itertools.count(1)

    async def save_message(self, sender_id, receiver_id, body, kind="text", file_ref=None, created_at=None) -> int:
        if self.save_delays:
            await asyncio.sleep(self.save_delays.pop(0))
        if self.fail_messages:
            raise PersistenceError("database is locked", "save_message")
        message = Message(
            id=next(self._ids),
            sender_id=sender_id,
            receiver_id=receiver_id,
            body=body,
            kind=kind,
            file_ref=file_ref,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message.id

    async def update_status(self, user_id, status) -> None:
        if self.fail_status:
            raise PersistenceError("disk I/O error", "update_status")
        self.statuses[user_id] = status

    async def save_call_log(self, caller_id, receiver_id, call_type, status, duration_seconds) -> None:
        if self.fail_calls:
            raise PersistenceError("disk I/O error", "save_call_log")
        self.call_logs.append({
            "caller_id": caller_id,
            "receiver_id": receiver_id,
            "call_type": call_type,
            "status": status,
            "duration": duration_seconds,
        })

    async def get_messages(self, user_a, user_b, limit=50) -> list[Message]:
        pair = {user_a, user_b}
        return [m for m in self.messages if {m.sender_id, m.receiver_id} == pair][-limit:]

    async def get_call_history(self, user_id, limit=20) -> list[CallLog]:
        return []


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def tasks() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def chat(emitter, store) -> ChatServer:
    return ChatServer(StaticVerifier(), store, emitter)


async def join(chat: ChatServer, user_id: str, username: str, handle: Optional[str] = None):
    """Connect a user through the full handshake path and wait for the announcement."""
    session = await chat.on_connect(handle or f"sid-{user_id}", {}, {"token": f"{user_id}:{username}"})
    await chat.drain()
    return session
