"""Tests for the in-memory conversation store and conversation model"""

import asyncio

import pytest

from chat_agent.models.conversation import (
    Conversation,
    ConversationClosedError,
    ConversationExistsError,
    ConversationStatus,
    Message,
    MessageRole,
)
from chat_agent.services.conversation_store import ConversationNotFoundError, InMemoryConversationStore


def test_conversation_defaults():
    conversation = Conversation(session_id="s1")
    assert conversation.is_active
    assert conversation.messages == []
    assert conversation.invocation_count == 0
    assert conversation.ended_at is None


def test_conversation_status_moves_once():
    conversation = Conversation(session_id="s1")
    assert conversation.complete()
    assert conversation.status == ConversationStatus.COMPLETED
    assert conversation.ended_at is not None

    assert not conversation.fail()
    assert conversation.status == ConversationStatus.COMPLETED


def test_closed_conversation_rejects_messages():
    conversation = Conversation(session_id="s1")
    conversation.fail()
    with pytest.raises(ConversationClosedError):
        conversation.add_message(Message(content="late"))


def test_message_is_immutable():
    message = Message(author="User", content="hi", role=MessageRole.USER)
    with pytest.raises(Exception):
        message.content = "changed"


def test_create_and_get():
    async def scenario():
        store = InMemoryConversationStore()
        assert await store.get("s1") is None

        created = await store.create("s1")
        assert await store.get("s1") is created

        with pytest.raises(ConversationExistsError):
            await store.create("s1")

        assert await store.get_or_create("s1") is created
        assert (await store.get_or_create("s2")).session_id == "s2"

    asyncio.run(scenario())


def test_append_preserves_order_and_counts():
    async def scenario():
        store = InMemoryConversationStore()
        await store.create("s1")
        for text in ("one", "two", "three"):
            await store.append("s1", Message(content=text))

        assert await store.increment_invocation_count("s1") == 1
        assert await store.increment_invocation_count("s1") == 2

        conversation = await store.get("s1")
        assert [m.content for m in conversation.messages] == ["one", "two", "three"]
        assert conversation.invocation_count == 2

    asyncio.run(scenario())


def test_operations_on_unknown_session_raise():
    async def scenario():
        store = InMemoryConversationStore()
        with pytest.raises(ConversationNotFoundError):
            await store.append("missing", Message(content="x"))
        with pytest.raises(ConversationNotFoundError):
            await store.increment_invocation_count("missing")

    asyncio.run(scenario())


def test_set_status_and_active_listing():
    async def scenario():
        store = InMemoryConversationStore()
        await store.create("a")
        await store.create("b")

        assert await store.set_status("a", ConversationStatus.COMPLETED)
        assert not await store.set_status("a", ConversationStatus.FAILED)

        with pytest.raises(ValueError):
            await store.set_status("b", ConversationStatus.ACTIVE)

        active = await store.get_active()
        assert [c.session_id for c in active] == ["b"]

        with pytest.raises(ConversationClosedError):
            await store.append("a", Message(content="late"))

    asyncio.run(scenario())


def test_session_lock_serializes_access():
    async def scenario():
        store = InMemoryConversationStore()
        await store.create("s1")
        order = []

        async def worker(name):
            async with store.lock("s1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-start", "a-end", "b-start", "b-end"]

    asyncio.run(scenario())


def test_session_lock_dropped_once_conversation_ends():
    async def scenario():
        store = InMemoryConversationStore()
        await store.create("s1")

        async with store.lock("s1"):
            await store.append("s1", Message(content="hello"))
        assert "s1" in store._locks

        async with store.lock("s1"):
            await store.set_status("s1", ConversationStatus.COMPLETED)
        assert "s1" not in store._locks

        async with store.lock("s1"):
            assert not await store.set_status("s1", ConversationStatus.FAILED)
        assert store._locks == {}

    asyncio.run(scenario())
