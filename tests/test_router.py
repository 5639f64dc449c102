import asyncio

import pytest

from chatline.models.events import C2SEvent, S2CEvent
from chatline.models.payloads import isoformat_z

from conftest import join


@pytest.mark.asyncio
async def test_message_to_online_user(chat, emitter, store):
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")
    emitter.clear()

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "2", "message": "hi bob"})

    delivered = emitter.received("sid-2", S2CEvent.NEW_MESSAGE)
    acked = emitter.received("sid-1", S2CEvent.MESSAGE_SENT)
    assert len(delivered) == 1
    assert delivered == acked
    assert delivered[0]["id"] == store.messages[0].id
    assert delivered[0]["senderUsername"] == "alice"
    assert delivered[0]["message"] == "hi bob"


@pytest.mark.asyncio
async def test_message_to_offline_user_is_stored_and_acked(chat, emitter, store):
    await join(chat, "1", "alice")
    emitter.clear()

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "9", "message": "later"})

    assert len(store.messages) == 1
    assert store.messages[0].receiver_id == "9"
    assert emitter.count(S2CEvent.NEW_MESSAGE) == 0
    assert emitter.received("sid-1", S2CEvent.MESSAGE_SENT)[0]["receiverId"] == "9"


@pytest.mark.asyncio
async def test_persistence_failure_reports_to_sender_only(chat, emitter, store):
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")
    emitter.clear()
    store.fail_messages = True

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "2", "message": "lost"})

    assert emitter.received("sid-1") == [{"receiverId": "2", "message": "Failed to send message"}]
    assert emitter.events("sid-1") == [S2CEvent.MESSAGE_FAILED]
    assert emitter.received("sid-2") == []


@pytest.mark.asyncio
async def test_messages_from_one_sender_keep_their_order(chat, emitter, store):
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")
    emitter.clear()
    # the first write is the slow one
    store.save_delays = [0.05, 0.0, 0.0]

    sender = chat.registry.session_for("sid-1")
    await asyncio.gather(
        chat.router.send(sender, "2", "one"),
        chat.router.send(sender, "2", "two"),
        chat.router.send(sender, "2", "three"),
    )

    bodies = [d["message"] for d in emitter.received("sid-2", S2CEvent.NEW_MESSAGE)]
    assert bodies == ["one", "two", "three"]
    acks = [d["id"] for d in emitter.received("sid-1", S2CEvent.MESSAGE_SENT)]
    assert acks == sorted(acks)
    assert chat.router._pair_locks == {}


@pytest.mark.asyncio
async def test_file_message_carries_reference(chat, emitter):
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")

    await chat.dispatch(
        "sid-1",
        C2SEvent.PRIVATE_MESSAGE,
        {"receiverId": "2", "message": "photo.png", "messageType": "file", "fileUrl": "/uploads/photo.png"},
    )

    delivered = emitter.received("sid-2", S2CEvent.NEW_MESSAGE)[0]
    assert delivered["messageType"] == "file"
    assert delivered["fileUrl"] == "/uploads/photo.png"


@pytest.mark.asyncio
async def test_empty_message_is_dropped(chat, emitter, store):
    await join(chat, "1", "alice")
    emitter.clear()

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "2", "message": ""})
    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"message": "no receiver"})

    assert store.messages == []
    assert emitter.sent == []


@pytest.mark.asyncio
async def test_receiver_gone_before_delivery_still_acks_sender(chat, emitter, store):
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")
    emitter.clear()
    emitter.dead.add("sid-2")

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "2", "message": "still there?"})

    assert len(store.messages) == 1
    acked = emitter.received("sid-1", S2CEvent.MESSAGE_SENT)
    assert [d["id"] for d in acked] == [store.messages[0].id]
    assert emitter.events("sid-1") == [S2CEvent.MESSAGE_SENT]


@pytest.mark.asyncio
async def test_wire_timestamp_matches_stored_message(chat, emitter, store):
    await join(chat, "1", "alice")
    await join(chat, "2", "bob")

    await chat.dispatch("sid-1", C2SEvent.PRIVATE_MESSAGE, {"receiverId": "2", "message": "when?"})

    stored = store.messages[0]
    assert stored.created_at.microsecond % 1000 == 0
    assert emitter.received("sid-2", S2CEvent.NEW_MESSAGE)[0]["timestamp"] == isoformat_z(stored.created_at)
