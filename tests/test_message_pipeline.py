import asyncio
import time
from datetime import datetime

import pytest

from db import SessionLocal
from services.classroom_store import ClassroomStore
from services.errors import (
    ClassroomNotFoundError,
    InvalidArgumentError,
    NotClassMemberError,
    PersistenceFailedError,
    UnauthenticatedError,
)
from services.message_pipeline import MessagePipeline
from services.ws_manager import RoomChannelManager
from tests.conftest import load_classroom
from tests.helpers import FakeSocket


@pytest.fixture
def pipeline(store, room_manager):
    return MessagePipeline(store, room_manager)


def _joined(manager, identity, class_id):
    conn = manager.register(FakeSocket(), identity)
    manager.join(conn, class_id)
    return conn


@pytest.mark.asyncio
async def test_text_message_is_persisted_then_broadcast(pipeline, room_manager, classrooms, alice, bob):
    conn_a = _joined(room_manager, alice, "C1")
    conn_b = _joined(room_manager, bob, "C1")

    payload = await pipeline.submit_message(alice, "C1", content="hi", message_type="text")

    assert payload["senderId"] == alice.user_id
    assert payload["senderUsername"] == "alice"
    assert payload["content"] == "hi"
    assert payload["type"] == "text"
    assert payload["attachmentUrl"] is None
    assert payload["timestamp"]
    for conn in (conn_a, conn_b):
        assert conn.websocket.frames == [{"event": "message", "data": payload}]

    stored = load_classroom("C1").messages
    assert len(stored) == 1
    assert stored[0]["content"] == "hi"
    assert stored[0]["sender_id"] == alice.user_id


@pytest.mark.asyncio
async def test_type_defaults_to_text(pipeline, classrooms, alice):
    payload = await pipeline.submit_message(alice, "C1", content="bonjour")
    assert payload["type"] == "text"


@pytest.mark.asyncio
async def test_math_message_keeps_markup(pipeline, classrooms, teacher):
    payload = await pipeline.submit_message(teacher, "C1", content=r"\frac{a}{b}", message_type="math")
    assert payload["content"] == r"\frac{a}{b}"
    assert payload["type"] == "math"


@pytest.mark.asyncio
@pytest.mark.parametrize("message_type", ["image", "file"])
async def test_attachment_without_url_is_rejected(pipeline, room_manager, classrooms, alice, message_type):
    conn = _joined(room_manager, alice, "C1")

    with pytest.raises(InvalidArgumentError):
        await pipeline.submit_message(alice, "C1", content=None, message_type=message_type, attachment_url="")

    assert conn.websocket.frames == []
    assert load_classroom("C1").messages == []


@pytest.mark.asyncio
async def test_image_message_with_url_needs_no_content(pipeline, classrooms, alice):
    payload = await pipeline.submit_message(
        alice, "C1", message_type="image", attachment_url="/uploads/chat_attachments/graph_1.png"
    )
    assert payload["attachmentUrl"] == "/uploads/chat_attachments/graph_1.png"
    assert payload["content"] is None


@pytest.mark.asyncio
async def test_empty_text_is_rejected(pipeline, classrooms, alice):
    with pytest.raises(InvalidArgumentError):
        await pipeline.submit_message(alice, "C1", content="   ")


@pytest.mark.asyncio
async def test_unknown_type_is_rejected(pipeline, classrooms, alice):
    with pytest.raises(InvalidArgumentError):
        await pipeline.submit_message(alice, "C1", content="x", message_type="video")


@pytest.mark.asyncio
async def test_missing_classroom_fails_without_broadcast(pipeline, room_manager, classrooms, alice):
    conn = _joined(room_manager, alice, "NOPE")
    with pytest.raises(ClassroomNotFoundError):
        await pipeline.submit_message(alice, "NOPE", content="hello?")
    assert conn.websocket.frames == []


@pytest.mark.asyncio
async def test_sender_must_be_member(pipeline, classrooms, carol):
    with pytest.raises(NotClassMemberError):
        await pipeline.submit_message(carol, "C1", content="let me in")
    assert load_classroom("C1").messages == []


@pytest.mark.asyncio
async def test_missing_identity_is_unauthenticated(pipeline, classrooms):
    with pytest.raises(UnauthenticatedError):
        await pipeline.submit_message(None, "C1", content="hi")


@pytest.mark.asyncio
async def test_persistence_failure_is_not_broadcast(room_manager, store, classrooms, alice, monkeypatch):
    conn = _joined(room_manager, alice, "C1")

    async def broken_append(*args, **kwargs):
        raise PersistenceFailedError("Could not save the classroom")

    monkeypatch.setattr(store, "append_message", broken_append)
    pipeline = MessagePipeline(store, room_manager)

    with pytest.raises(PersistenceFailedError):
        await pipeline.submit_message(alice, "C1", content="lost")
    assert conn.websocket.frames == []


@pytest.mark.asyncio
async def test_concurrent_submissions_share_one_order(pipeline, room_manager, classrooms, alice, bob, teacher):
    conn_a = _joined(room_manager, alice, "C1")
    conn_b = _joined(room_manager, bob, "C1")
    senders = [alice, bob, teacher]

    await asyncio.gather(*(
        pipeline.submit_message(senders[n % 3], "C1", content=f"m{n}") for n in range(12)
    ))

    stored = load_classroom("C1").messages
    persisted_order = [m["content"] for m in stored]
    assert sorted(persisted_order) == sorted(f"m{n}" for n in range(12))
    for conn in (conn_a, conn_b):
        assert [f["data"]["content"] for f in conn.websocket.frames] == persisted_order

    timestamps = [datetime.fromisoformat(m["timestamp"]) for m in stored]
    assert timestamps == sorted(timestamps)


@pytest.mark.asyncio
async def test_other_room_sees_nothing(pipeline, room_manager, classrooms, alice, carol):
    _joined(room_manager, alice, "C1")
    outsider = _joined(room_manager, carol, "C2")

    await pipeline.submit_message(alice, "C1", content="only for C1")

    assert outsider.websocket.frames == []


def test_pipeline_takes_injected_manager(store):
    manager = RoomChannelManager()
    assert MessagePipeline(store, manager).manager is manager


class _SlowCommitStore(ClassroomStore):
    """Store whose first commit stalls, either before or after it lands."""

    def __init__(self, stall_after_commit: bool, stall: float = 0.3):
        super().__init__(SessionLocal, timeout=0.1)
        self.stall_after_commit = stall_after_commit
        self.stall = stall
        self.pending_stalls = 1
        self.timeline = []

    def _append_message(self, db, class_id, sender, content, *args):
        self.timeline.append(("start", content))
        try:
            return super()._append_message(db, class_id, sender, content, *args)
        finally:
            self.timeline.append(("end", content))

    def _commit(self, db):
        stall = self.pending_stalls > 0
        self.pending_stalls = 0
        if stall and not self.stall_after_commit:
            time.sleep(self.stall)
        super()._commit(db)
        if stall and self.stall_after_commit:
            time.sleep(self.stall)


def _assert_serialized(timeline):
    # every append finished before the next one started
    assert [step for step, _ in timeline] == ["start", "end", "start", "end"]


@pytest.mark.asyncio
async def test_write_abandoned_before_commit_is_not_kept(room_manager, classrooms, alice, bob):
    store = _SlowCommitStore(stall_after_commit=False)
    pipeline = MessagePipeline(store, room_manager)
    conn = _joined(room_manager, bob, "C1")

    first = asyncio.ensure_future(pipeline.submit_message(alice, "C1", content="first"))
    await asyncio.sleep(0.01)
    second = await pipeline.submit_message(bob, "C1", content="second")

    with pytest.raises(PersistenceFailedError):
        await first
    assert second["content"] == "second"
    assert [m["content"] for m in load_classroom("C1").messages] == ["second"]
    assert [f["data"]["content"] for f in conn.websocket.frames] == ["second"]
    _assert_serialized(store.timeline)


@pytest.mark.asyncio
async def test_slow_commit_that_lands_is_reported_and_broadcast(room_manager, classrooms, alice, bob):
    store = _SlowCommitStore(stall_after_commit=True)
    pipeline = MessagePipeline(store, room_manager)
    conn = _joined(room_manager, bob, "C1")

    first = asyncio.ensure_future(pipeline.submit_message(alice, "C1", content="first"))
    await asyncio.sleep(0.01)
    await pipeline.submit_message(bob, "C1", content="second")
    await first

    persisted = [m["content"] for m in load_classroom("C1").messages]
    assert persisted == ["first", "second"]
    assert [f["data"]["content"] for f in conn.websocket.frames] == persisted
    _assert_serialized(store.timeline)
