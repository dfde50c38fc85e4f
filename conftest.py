"""Shared test fixtures: stub participant runtimes and orchestrator builders"""

import asyncio
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from chat_agent.core.conversation_graph import ConversationOrchestrator
from chat_agent.models.agents import AgentDefinition, ParticipantRegistry, default_agents
from chat_agent.models.conversation import Message
from chat_agent.monitoring.state_metrics import RoutingMetricsCollector
from chat_agent.services.conversation_store import InMemoryConversationStore


class ScriptedRuntime:
    """Participant runtime that answers from a per-agent reply function"""

    def __init__(self, replies: Optional[Dict[str, Callable[[Sequence[Message]], str]]] = None):
        self.replies = replies or {}
        self.calls: List[str] = []

    async def invoke(self, agent: AgentDefinition, history: Sequence[Message]) -> Message:
        self.calls.append(agent.name)
        await asyncio.sleep(0)
        reply = self.replies.get(agent.name, lambda h: f"{agent.name} reply to: {h[-1].content}")
        return Message(author=agent.name, content=reply(history))


class FailingRuntime:
    """Participant runtime whose every call raises"""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def invoke(self, agent: AgentDefinition, history: Sequence[Message]) -> Message:
        self.calls += 1
        raise self.error


def build_orchestrator(runtime, agents=None, max_invocations=20) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        registry=ParticipantRegistry(agents if agents is not None else default_agents()),
        runtime=runtime,
        store=InMemoryConversationStore(),
        max_invocations=max_invocations,
        metrics=RoutingMetricsCollector()
    )


@pytest.fixture
def runtime():
    return ScriptedRuntime()


@pytest.fixture
def orchestrator(runtime):
    return build_orchestrator(runtime)
