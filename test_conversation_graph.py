"""
Tests for the group chat loop and the conversation orchestrator,
driven by stub participant runtimes.
"""

import asyncio

import pytest

from chat_agent.core.conversation_graph import (
    COORDINATOR_UNAVAILABLE_TEXT,
    INVOCATION_FAILED_TEXT,
    SYSTEM_AUTHOR,
)
from chat_agent.core.routing_engine import END_USER_AUTHOR, FALLBACK_RESULT
from chat_agent.models.agents import AZURE_AGENT_NAME, COORDINATOR_NAME, default_agents
from chat_agent.models.conversation import ConversationClosedError, ConversationStatus, MessageRole
from chat_agent.services.llm_manager import ParticipantInvocationError

from conftest import FailingRuntime, ScriptedRuntime, build_orchestrator


def test_single_turn_returns_coordinator_reply(orchestrator, runtime):
    async def scenario():
        result = await orchestrator.process_message("I need help with CloudTrail", "s1")
        conversation = await orchestrator.get_conversation("s1")
        return result, conversation

    result, conversation = asyncio.run(scenario())

    assert result.success
    assert result.speaker == COORDINATOR_NAME
    assert result.content == "CoordinatorAgent reply to: I need help with CloudTrail"
    assert result.reason == "Coordinator has responded to user"
    assert result.invocations == 1
    assert runtime.calls == [COORDINATOR_NAME]

    assert [m.author for m in conversation.messages] == [END_USER_AUTHOR, COORDINATOR_NAME]
    assert conversation.messages[0].role == MessageRole.USER
    assert conversation.invocation_count == 1
    assert conversation.is_active


def test_trigger_phrase_in_coordinator_reply_still_ends_turn():
    runtime = ScriptedRuntime({COORDINATOR_NAME: lambda h: "Let me check azure for a solution"})
    orchestrator = build_orchestrator(runtime)

    result = asyncio.run(orchestrator.process_message("find a connector solution", "s1"))

    assert result.content == "Let me check azure for a solution"
    assert runtime.calls == [COORDINATOR_NAME]
    assert AZURE_AGENT_NAME not in runtime.calls


def test_turns_accumulate_history_and_invocations(orchestrator, runtime):
    async def scenario():
        first = await orchestrator.process_message("first", "s1")
        second = await orchestrator.process_message("second", "s1")
        return first, second, await orchestrator.get_conversation("s1")

    first, second, conversation = asyncio.run(scenario())

    assert first.content.endswith("first")
    assert second.content.endswith("second")
    assert second.invocations == 1
    assert len(conversation.messages) == 4
    assert conversation.invocation_count == 2


def test_sessions_are_isolated(orchestrator):
    async def scenario():
        await orchestrator.process_message("hello", "a")
        await orchestrator.process_message("hello", "b")
        return await orchestrator.get_conversation("a"), await orchestrator.get_conversation("b")

    a, b = asyncio.run(scenario())
    assert len(a.messages) == 2
    assert len(b.messages) == 2
    assert a.id != b.id


def test_concurrent_turns_on_one_session_do_not_interleave(orchestrator):
    async def scenario():
        await asyncio.gather(
            orchestrator.process_message("one", "s1"),
            orchestrator.process_message("two", "s1"),
        )
        return await orchestrator.get_conversation("s1")

    conversation = asyncio.run(scenario())
    authors = [m.author for m in conversation.messages]
    assert authors == [END_USER_AUTHOR, COORDINATOR_NAME, END_USER_AUTHOR, COORDINATOR_NAME]


def test_zero_cap_returns_fallback_without_invoking():
    runtime = ScriptedRuntime()
    orchestrator = build_orchestrator(runtime, max_invocations=0)

    result = asyncio.run(orchestrator.process_message("hello", "s1"))

    assert result.content == FALLBACK_RESULT
    assert result.invocations == 0
    assert result.reason == "Maximum invocations (0) reached"
    assert runtime.calls == []


def test_empty_coordinator_reply_yields_fallback():
    runtime = ScriptedRuntime({COORDINATOR_NAME: lambda h: ""})
    orchestrator = build_orchestrator(runtime)

    result = asyncio.run(orchestrator.process_message("hello", "s1"))

    assert result.invocations == 1
    assert result.content == FALLBACK_RESULT


def test_earlier_turn_reply_is_not_reused():
    replies = iter(["first answer", ""])
    runtime = ScriptedRuntime({COORDINATOR_NAME: lambda h: next(replies)})
    orchestrator = build_orchestrator(runtime)

    async def scenario():
        await orchestrator.process_message("one", "s1")
        return await orchestrator.process_message("two", "s1")

    second = asyncio.run(scenario())
    assert second.content == FALLBACK_RESULT


@pytest.mark.parametrize("error", [
    RuntimeError("model unavailable"),
    ParticipantInvocationError(COORDINATOR_NAME, "timed out"),
])
def test_runtime_failure_returns_fixed_text(error):
    runtime = FailingRuntime(error)
    orchestrator = build_orchestrator(runtime)

    async def scenario():
        result = await orchestrator.process_message("hello", "s1")
        return result, await orchestrator.get_conversation("s1")

    result, conversation = asyncio.run(scenario())

    assert not result.success
    assert result.content == INVOCATION_FAILED_TEXT
    assert result.speaker == SYSTEM_AUTHOR
    assert result.invocations == 1
    assert runtime.calls == 1

    last = conversation.messages[-1]
    assert last.author == SYSTEM_AUTHOR
    assert last.role == MessageRole.SYSTEM
    assert last.metadata["agent"] == COORDINATOR_NAME
    assert conversation.invocation_count == 1
    assert conversation.is_active

    errors = orchestrator.metrics.export_metrics()["errors"]
    assert sum(errors.values()) == 1


def test_missing_coordinator_fails_conversation():
    agents = [a for a in default_agents() if a.name != COORDINATOR_NAME]
    runtime = ScriptedRuntime()
    orchestrator = build_orchestrator(runtime, agents=agents)

    async def scenario():
        result = await orchestrator.process_message("hello", "s1")
        return result, await orchestrator.get_conversation("s1")

    result, conversation = asyncio.run(scenario())

    assert not result.success
    assert result.content == COORDINATOR_UNAVAILABLE_TEXT
    assert runtime.calls == []
    assert conversation.status == ConversationStatus.FAILED
    assert conversation.messages[-1].content == COORDINATOR_UNAVAILABLE_TEXT


def test_ended_conversation_rejects_new_turns(orchestrator):
    async def scenario():
        await orchestrator.process_message("hello", "s1")
        assert await orchestrator.end_conversation("s1")
        assert not await orchestrator.end_conversation("s1")
        await orchestrator.process_message("again", "s1")

    with pytest.raises(ConversationClosedError):
        asyncio.run(scenario())


def test_end_unknown_conversation_returns_false(orchestrator):
    assert asyncio.run(orchestrator.end_conversation("nope")) is False


def test_unknown_session_history_is_empty(orchestrator):
    conversation = asyncio.run(orchestrator.get_conversation("nope"))
    assert conversation.messages == []
    assert conversation.is_active


def test_metrics_record_turns(orchestrator):
    asyncio.run(orchestrator.process_message("hello", "s1"))
    exported = orchestrator.metrics.export_metrics()

    assert exported["selections"] == {"coordinator": 1}
    assert exported["selection_rules"] == {"user_turn": 1}
    assert exported["terminations"] == {"coordinator_replied": 1}
    assert exported["turns_recorded"] == 1
    assert exported["invocations"]["by_participant"][COORDINATOR_NAME]["count"] == 1


def test_available_agents(orchestrator):
    names = [agent.name for agent in orchestrator.get_available_agents()]
    assert names == ["CoordinatorAgent", "AzureAgent", "AWSAgent"]


def test_metrics_reset(orchestrator):
    asyncio.run(orchestrator.process_message("hello", "s1"))
    orchestrator.metrics.reset_metrics()

    exported = orchestrator.metrics.export_metrics()
    assert exported["turns_recorded"] == 0
    assert exported["selections"] == {}
