"""
Tests for session store implementations.
InMemorySessionStore always runs; RedisSessionStore runs when a server answers.
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from support_orchestrator.session import (
    InMemorySessionStore,
    MessageRole,
    RedisSessionStore,
    SessionMessage,
    create_session_store
)


def user(content: str, **kwargs) -> SessionMessage:
    return SessionMessage(role=MessageRole.USER, content=content, **kwargs)


# ===========================
# Fixtures
# ===========================

@pytest.fixture
def in_memory_store():
    return InMemorySessionStore(history_cap=5)


@pytest.fixture
async def redis_store(redis_client, redis_prefix):
    store = RedisSessionStore(
        redis_url="redis://unused",
        key_prefix=redis_prefix,
        history_cap=5,
        client=redis_client,
        lock_retry_attempts=200
    )
    yield store

    keys = [key async for key in redis_client.scan_iter(match=f"*{redis_prefix}*")]
    if keys:
        await redis_client.delete(*keys)


@pytest.fixture(params=["in_memory", "redis"])
def session_store(request):
    """Run the shared contract against both implementations."""
    if request.param == "redis":
        return request.getfixturevalue("redis_store")
    return request.getfixturevalue("in_memory_store")


# ===========================
# Shared contract
# ===========================

@pytest.mark.unit
async def test_history_of_unknown_session_is_empty(session_store):
    assert await session_store.history("missing") == []


@pytest.mark.unit
async def test_history_is_capped_oldest_first(session_store):
    for i in range(8):
        await session_store.append("s1", user(f"message {i}"))

    history = await session_store.history("s1", limit=50)

    assert [m.content for m in history] == [f"message {i}" for i in range(3, 8)]


@pytest.mark.unit
async def test_history_limit_returns_most_recent(session_store):
    for i in range(4):
        await session_store.append("s1", user(f"message {i}"))

    history = await session_store.history("s1", limit=2)

    assert [m.content for m in history] == ["message 2", "message 3"]


@pytest.mark.unit
async def test_timestamps_never_go_backwards(session_store):
    now = datetime.utcnow()
    await session_store.append("s1", user("first", timestamp=now))
    await session_store.append("s1", user("second", timestamp=now - timedelta(minutes=5)))

    first, second = await session_store.history("s1")

    assert second.timestamp >= first.timestamp


@pytest.mark.unit
async def test_assistant_message_keeps_tools_used(session_store):
    await session_store.append("s1", SessionMessage(
        role=MessageRole.ASSISTANT,
        content="Your order shipped",
        tools_used=["order_status"]
    ))

    (message,) = await session_store.history("s1")

    assert message.role == "assistant"
    assert message.tools_used == ["order_status"]


@pytest.mark.unit
async def test_update_metadata_merges(session_store):
    await session_store.update_metadata("s1", {"tenant_id": "acme", "source": "web"})
    updated = await session_store.update_metadata("s1", {"escalated": True, "extra": {"lang": "en"}})

    assert updated.tenant_id == "acme"
    assert updated.escalated is True
    assert updated.extra == {"source": "web", "lang": "en"}

    fetched = await session_store.get_metadata("s1")
    assert fetched.escalated is True
    assert fetched.extra["source"] == "web"


@pytest.mark.unit
async def test_metadata_defaults_for_unknown_session(session_store):
    metadata = await session_store.get_metadata("missing")

    assert metadata.escalated is False
    assert metadata.customer_id == "anonymous"


@pytest.mark.unit
async def test_turns_on_same_session_do_not_interleave(session_store):
    events = []

    async def turn(name: str):
        async with session_store.turn("s1"):
            events.append(f"{name}-start")
            await asyncio.sleep(0.02)
            events.append(f"{name}-end")

    await asyncio.gather(turn("a"), turn("b"))

    assert events in (
        ["a-start", "a-end", "b-start", "b-end"],
        ["b-start", "b-end", "a-start", "a-end"]
    )


@pytest.mark.unit
async def test_turns_on_different_sessions_run_in_parallel(session_store):
    inside = asyncio.Event()

    async def holder():
        async with session_store.turn("s1"):
            await asyncio.wait_for(inside.wait(), timeout=2.0)

    async def other():
        async with session_store.turn("s2"):
            inside.set()

    await asyncio.gather(holder(), other())

    assert inside.is_set()


@pytest.mark.unit
async def test_concurrent_appends_are_all_kept(session_store):
    await asyncio.gather(*(session_store.append("s1", user(f"m{i}")) for i in range(5)))

    history = await session_store.history("s1")

    assert sorted(m.content for m in history) == [f"m{i}" for i in range(5)]


# ===========================
# Implementation specifics
# ===========================

@pytest.mark.unit
def test_history_cap_must_be_positive():
    with pytest.raises(ValueError):
        InMemorySessionStore(history_cap=0)


@pytest.mark.unit
async def test_returned_messages_are_copies(in_memory_store):
    await in_memory_store.append("s1", user("original"))

    (message,) = await in_memory_store.history("s1")
    message.content = "changed"

    (stored,) = await in_memory_store.history("s1")
    assert stored.content == "original"


@pytest.mark.unit
async def test_stats(in_memory_store):
    await in_memory_store.append("s1", user("a"))
    await in_memory_store.append("s2", user("b"))

    stats = await in_memory_store.get_stats()

    assert stats["total_sessions"] == 2
    assert stats["total_messages"] == 2


@pytest.mark.unit
def test_factory():
    assert isinstance(create_session_store("in_memory", history_cap=10), InMemorySessionStore)

    with pytest.raises(ValueError):
        create_session_store("sqlite")


@pytest.mark.requires_redis
async def test_redis_ping(redis_store):
    assert await redis_store.ping() is True
    health = await redis_store.health_check()
    assert health["healthy"] is True
