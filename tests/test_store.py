import sqlite3

import pytest
import pytest_asyncio

from chatline.errors import PersistenceError
from chatline.models.events import C2SEvent, S2CEvent
from chatline.models.payloads import isoformat_z
from chatline.persistence import SQLiteStore
from chatline.server import ChatServer

from conftest import StaticVerifier, join


@pytest_asyncio.fixture
async def sqlite_store(tmp_path) -> SQLiteStore:
    store = SQLiteStore(str(tmp_path / "chat.db"))
    await store.init()
    return store


@pytest.mark.asyncio
async def test_save_and_read_messages(sqlite_store: SQLiteStore):
    first = await sqlite_store.save_message("1", "2", "hello")
    second = await sqlite_store.save_message("2", "1", "hi back")
    await sqlite_store.save_message("1", "3", "someone else")
    await sqlite_store.save_message("1", "2", "pic.png", "file", "/uploads/pic.png")

    assert second > first
    messages = await sqlite_store.get_messages("2", "1")
    assert [m.body for m in messages] == ["hello", "hi back", "pic.png"]
    assert messages[-1].kind == "file"
    assert messages[-1].file_ref == "/uploads/pic.png"
    assert messages[0].created_at.tzinfo is not None

    latest = await sqlite_store.get_messages("1", "2", limit=1)
    assert [m.body for m in latest] == ["pic.png"]


@pytest.mark.asyncio
async def test_update_status_upserts(sqlite_store: SQLiteStore):
    assert await sqlite_store.get_status("1") is None
    await sqlite_store.update_status("1", "online")
    await sqlite_store.update_status("1", "offline")
    assert await sqlite_store.get_status("1") == "offline"


@pytest.mark.asyncio
async def test_call_history(sqlite_store: SQLiteStore):
    await sqlite_store.save_call_log("1", "2", "audio", "answered", 30)
    await sqlite_store.save_call_log("3", "1", "audio", "missed", 0)
    await sqlite_store.save_call_log("2", "3", "audio", "rejected", 0)

    history = await sqlite_store.get_call_history("1")
    assert [(c.caller_id, c.status) for c in history] == [("3", "missed"), ("1", "answered")]
    answered = history[1]
    assert answered.duration == 30
    assert (answered.ended_at - answered.started_at).total_seconds() == 30


@pytest.mark.asyncio
async def test_sqlite_errors_become_persistence_errors(tmp_path):
    db_path = tmp_path / "broken.db"
    store = SQLiteStore(str(db_path))
    await store.init()
    with sqlite3.connect(db_path) as connection:
        connection.execute("DROP TABLE messages")

    with pytest.raises(PersistenceError) as exc_info:
        await store.save_message("1", "2", "hello")
    assert exc_info.value.operation == "save_message"
    assert exc_info.value.code == "persistence_failed"


@pytest.mark.asyncio
async def test_delivered_timestamp_matches_history(sqlite_store: SQLiteStore, emitter):
    chat = ChatServer(StaticVerifier(), sqlite_store, emitter)
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "2", "message": "hello"})

    acked = emitter.received("sid-1", S2CEvent.MESSAGE_SENT)[0]
    history = await sqlite_store.get_messages("1", "2")
    assert [m.id for m in history] == [acked["id"]]
    assert isoformat_z(history[0].created_at) == acked["timestamp"]
