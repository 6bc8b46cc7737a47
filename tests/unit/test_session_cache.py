"""
Tests for the session cache: lazy hydration, turn writes, failure reporting.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ragchat.session.cache import SessionCache
from ragchat.session.models import Message, MessageState, Participant, Session
from ragchat.shared.exceptions import (
    CacheInconsistencyError,
    InvalidRequestError,
    PersistenceError,
)


class GatedWrites:
    """Holds the store's turn writes until released."""

    def __init__(self, store):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.finished = asyncio.Event()
        self._write = store.upsert_session_batch
        store.upsert_session_batch = self

    async def __call__(self, *args):
        self.started.set()
        await self.release.wait()
        try:
            await self._write(*args)
        finally:
            self.finished.set()


def make_turn(session_id, text="What touring bikes do you have?"):
    prompt = Message(session_id=session_id, sender=Participant.USER, tokens=7, text=text)
    completion = Message(
        session_id=session_id,
        sender=Participant.ASSISTANT,
        tokens=11,
        prompt_tokens=120,
        text="The Touring-1000 is our best touring bike.",
    )
    return prompt, completion


@pytest.mark.asyncio
async def test_append_turn_updates_cache_and_store(cache, store):
    session = await cache.create_session()
    prompt, completion = make_turn(session.session_id)

    await cache.append_turn(session.session_id, prompt, completion)

    messages = await cache.get_messages(session.session_id)
    assert [m.text for m in messages] == [prompt.text, completion.text]
    assert cache.get_session(session.session_id).tokens_used == 7 + 120 + 11

    assert store.sessions[session.session_id]["TokensUsed"] == 138
    stored = [m for m in store.messages if m["SessionId"] == session.session_id]
    assert [m["Sender"] for m in stored] == ["User", "Assistant"]


@pytest.mark.asyncio
async def test_messages_are_read_from_store_once(cache, store):
    session = Session(session_id="s1", name="Bikes")
    store.sessions["s1"] = session.to_document()
    for message in make_turn("s1"):
        store.messages.append(message.to_document())

    await cache.list_sessions()
    first = await cache.get_messages("s1")
    second = await cache.get_messages("s1")

    assert len(first) == 2
    assert [m.id for m in first] == [m.id for m in second]
    assert store.message_fetches == 1


@pytest.mark.asyncio
async def test_session_lifecycle_across_refresh(cache, store):
    """create -> list (not loaded) -> append -> list -> messages re-read from store."""
    created = await cache.create_session()
    assert created.message_state == MessageState.LOADED_EMPTY

    listed = await cache.list_sessions()
    assert [s.session_id for s in listed] == [created.session_id]
    assert listed[0].message_state == MessageState.NOT_LOADED

    prompt, completion = make_turn(created.session_id)
    await cache.append_turn(created.session_id, prompt, completion)
    assert cache.get_session(created.session_id).message_state == MessageState.LOADED

    await cache.list_sessions()
    assert cache.get_session(created.session_id).message_state == MessageState.NOT_LOADED

    messages = await cache.get_messages(created.session_id)
    assert [m.id for m in messages] == [prompt.id, completion.id]
    assert cache.get_session(created.session_id).tokens_used == 138


@pytest.mark.asyncio
async def test_loaded_empty_session_does_not_hit_store(cache, store):
    session = await cache.create_session()

    assert await cache.get_messages(session.session_id) == []
    assert store.message_fetches == 0


@pytest.mark.asyncio
async def test_unknown_session_raises_cache_inconsistency(cache):
    with pytest.raises(CacheInconsistencyError) as exc_info:
        await cache.get_messages("missing")
    assert exc_info.value.session_id == "missing"

    prompt, completion = make_turn("missing")
    with pytest.raises(CacheInconsistencyError):
        await cache.append_turn("missing", prompt, completion)


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", [None, "", "   "])
async def test_missing_session_id_is_invalid_request(cache, session_id):
    with pytest.raises(InvalidRequestError):
        await cache.get_messages(session_id)
    with pytest.raises(InvalidRequestError):
        cache.get_session(session_id)


@pytest.mark.asyncio
async def test_duplicate_session_ids_from_store(cache, store):
    first = Session(session_id="dup")
    second = Session(session_id="dup", name="Other")
    store.get_sessions = AsyncMock(return_value=[first, second])

    with pytest.raises(CacheInconsistencyError):
        await cache.list_sessions()


@pytest.mark.asyncio
async def test_message_for_other_session_is_rejected(cache, store):
    session = await cache.create_session()
    prompt, completion = make_turn("someone-else")

    with pytest.raises(InvalidRequestError):
        await cache.append_turn(session.session_id, prompt, completion)
    assert store.messages == []


@pytest.mark.asyncio
async def test_failed_write_reports_cache_ahead_of_store(cache, store):
    session = await cache.create_session()
    store.fail_writes = True
    prompt, completion = make_turn(session.session_id)

    with pytest.raises(PersistenceError) as exc_info:
        await cache.append_turn(session.session_id, prompt, completion)

    assert exc_info.value.cache_ahead_of_store
    assert len(await cache.get_messages(session.session_id)) == 2
    assert store.messages == []
    assert store.sessions[session.session_id]["TokensUsed"] == 0


@pytest.mark.asyncio
async def test_failed_create_still_caches_session(cache, store):
    store.fail_writes = True

    with pytest.raises(PersistenceError) as exc_info:
        await cache.create_session()

    assert exc_info.value.cache_ahead_of_store
    assert len(cache) == 1
    assert store.sessions == {}


@pytest.mark.asyncio
async def test_rename_session(cache, store):
    session = await cache.create_session()

    renamed = await cache.rename_session(session.session_id, "  Touring bikes ")

    assert renamed.name == "Touring bikes"
    assert store.sessions[session.session_id]["Name"] == "Touring bikes"
    with pytest.raises(InvalidRequestError):
        await cache.rename_session(session.session_id, " ")


@pytest.mark.asyncio
async def test_delete_session_removes_messages(cache, store):
    keep = await cache.create_session()
    drop = await cache.create_session()
    await cache.append_turn(drop.session_id, *make_turn(drop.session_id))
    await cache.append_turn(keep.session_id, *make_turn(keep.session_id))

    await cache.delete_session(drop.session_id)

    assert drop.session_id not in cache
    assert drop.session_id not in store.sessions
    assert all(m["SessionId"] == keep.session_id for m in store.messages)
    with pytest.raises(CacheInconsistencyError):
        await cache.delete_session(drop.session_id)


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_session(cache, store):
    """Parallel appends serialize on the session lock; nothing is lost."""
    session = await cache.create_session()
    turns = [make_turn(session.session_id, text=f"question {i}") for i in range(5)]

    await asyncio.gather(*(
        cache.append_turn(session.session_id, prompt, completion)
        for prompt, completion in turns
    ))

    messages = await cache.get_messages(session.session_id)
    assert len(messages) == 10
    assert cache.get_session(session.session_id).tokens_used == 5 * 138
    assert store.sessions[session.session_id]["TokensUsed"] == 5 * 138
    # Each prompt is directly followed by its own completion
    for i in range(0, 10, 2):
        assert messages[i].sender == "User"
        assert messages[i + 1].sender == "Assistant"


@pytest.mark.asyncio
async def test_concurrent_hydration_reads_store_once(store):
    store.sessions["s1"] = Session(session_id="s1").to_document()
    for message in make_turn("s1"):
        store.messages.append(message.to_document())
    cache = SessionCache(store)
    await cache.list_sessions()

    results = await asyncio.gather(*(cache.get_messages("s1") for _ in range(4)))

    assert all(len(r) == 2 for r in results)
    assert store.message_fetches == 1


@pytest.mark.asyncio
async def test_refresh_waits_for_turn_write(cache, store):
    session = await cache.create_session()
    gate = GatedWrites(store)

    turn = asyncio.create_task(cache.append_turn(session.session_id, *make_turn(session.session_id)))
    await gate.started.wait()
    refresh = asyncio.create_task(cache.list_sessions())
    await asyncio.sleep(0)
    assert not refresh.done()

    gate.release.set()
    await turn
    await refresh
    del store.upsert_session_batch

    await cache.append_turn(session.session_id, *make_turn(session.session_id, text="second"))

    assert cache.get_session(session.session_id).tokens_used == 2 * 138
    assert store.sessions[session.session_id]["TokensUsed"] == 2 * 138
    assert len(store.messages) == 4


@pytest.mark.asyncio
async def test_cancelled_turn_still_lands_whole(cache, store):
    session = await cache.create_session()
    gate = GatedWrites(store)

    turn = asyncio.create_task(cache.append_turn(session.session_id, *make_turn(session.session_id)))
    await gate.started.wait()
    turn.cancel()
    with pytest.raises(asyncio.CancelledError):
        await turn

    # The orphaned write still holds back a refresh
    refresh = asyncio.create_task(cache.list_sessions())
    await asyncio.sleep(0)
    assert not refresh.done()

    gate.release.set()
    await gate.finished.wait()
    await refresh
    del store.upsert_session_batch

    assert len(await cache.get_messages(session.session_id)) == 2
    assert cache.get_session(session.session_id).tokens_used == 138
    assert len(store.messages) == 2
    assert store.sessions[session.session_id]["TokensUsed"] == 138


@pytest.mark.asyncio
async def test_reader_waits_for_turn_write(cache, store):
    session = await cache.create_session()
    gate = GatedWrites(store)

    turn = asyncio.create_task(cache.append_turn(session.session_id, *make_turn(session.session_id)))
    await gate.started.wait()
    reader = asyncio.create_task(cache.get_messages(session.session_id))
    await asyncio.sleep(0)
    assert not reader.done()

    gate.release.set()
    assert len(await reader) == 2
    await turn
    assert len(store.messages) == 2


@pytest.mark.asyncio
async def test_rename_of_unpersisted_session_fails(cache, store):
    store.insert_session = AsyncMock(side_effect=PersistenceError("store unavailable"))
    with pytest.raises(PersistenceError):
        await cache.create_session()
    session = store.insert_session.call_args.args[0]

    with pytest.raises(PersistenceError) as exc_info:
        await cache.rename_session(session.session_id, "Bikes")

    assert exc_info.value.cache_ahead_of_store
    assert cache.get_session(session.session_id).name == "Bikes"
    assert store.sessions == {}
