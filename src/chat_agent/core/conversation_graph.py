"""
Group Chat Workflow

This module wires the routing policy and the participant runtime into a
LangGraph loop and exposes the orchestrator used by the HTTP API and the
chat hub.

One user turn runs the graph:

    START -> check_termination --terminate--> finalize -> END
                  ^        |
                  |        +--continue--> select --found--> invoke
                  |                          |                 |
                  |                          +--missing--> END |
                  +--------------------------------------------+

The store's per-session lock is held for the whole turn. Participant
failures are not retried here; they propagate out of the graph and the
orchestrator records them.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypedDict

from langgraph.graph import StateGraph, START, END

from ..models.agents import AgentDefinition, ParticipantRegistry
from ..models.conversation import (
    Conversation,
    ConversationClosedError,
    ConversationStatus,
    Message,
    MessageRole,
)
from ..monitoring.state_metrics import RoutingMetricsCollector, get_routing_metrics_collector
from ..services.conversation_store import InMemoryConversationStore
from ..services.llm_manager import ParticipantInvocationError, ParticipantRuntime
from .routing_engine import (
    CoordinatorRoutingPolicy,
    DEFAULT_MAX_INVOCATIONS,
    END_USER_AUTHOR,
)

logger = logging.getLogger(__name__)

SYSTEM_AUTHOR = "system"
COORDINATOR_UNAVAILABLE_TEXT = "Unable to access the coordinator agent."
INVOCATION_FAILED_TEXT = "I encountered an issue coordinating the response. Please try again."


class GroupChatState(TypedDict, total=False):
    """Per-turn state carried through the graph. Messages live in the store."""
    session_id: str
    turn_start: int
    invocations: int
    max_invocations: int
    participant: Optional[str]
    selection_reason: str
    selection_failed: bool
    terminated: bool
    termination_reason: str
    termination_rule: str
    result: str


@dataclass
class TurnResult:
    """What one user turn returns to the caller"""
    session_id: str
    content: str
    speaker: str
    reason: str
    invocations: int
    success: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class GroupChatGraph:
    """
    LangGraph loop of selector, participant and termination checker.

    Nodes read the conversation from the store on every step so the
    selector and checker always see the full, current history.
    """

    def __init__(
        self,
        registry: ParticipantRegistry,
        runtime: ParticipantRuntime,
        store: InMemoryConversationStore,
        policy: Optional[CoordinatorRoutingPolicy] = None,
        metrics: Optional[RoutingMetricsCollector] = None,
    ):
        self.registry = registry
        self.runtime = runtime
        self.store = store
        self.policy = policy or CoordinatorRoutingPolicy(registry.coordinator_name)
        self.metrics = metrics or get_routing_metrics_collector()

        self.workflow = self._build_workflow()
        self.app = self.workflow.compile()

        logger.info(f"GroupChatGraph initialized with participants: {list(registry.keys())}")

    def _build_workflow(self) -> StateGraph:
        workflow = StateGraph(GroupChatState)

        workflow.add_node("check_termination", self._check_termination)
        workflow.add_node("select", self._select)
        workflow.add_node("invoke", self._invoke)
        workflow.add_node("finalize", self._finalize)

        workflow.add_edge(START, "check_termination")
        workflow.add_conditional_edges(
            "check_termination",
            self._route_after_termination,
            {
                "finalize": "finalize",
                "select": "select"
            }
        )
        workflow.add_conditional_edges(
            "select",
            self._route_after_selection,
            {
                "invoke": "invoke",
                "abort": END
            }
        )
        workflow.add_edge("invoke", "check_termination")
        workflow.add_edge("finalize", END)

        return workflow

    async def _history(self, session_id: str) -> List[Message]:
        conversation = await self.store.get(session_id)
        return list(conversation.messages) if conversation else []

    async def _check_termination(self, state: GroupChatState) -> Dict[str, Any]:
        history = await self._history(state["session_id"])
        decision = self.policy.should_terminate(
            history,
            state.get("invocations", 0),
            state.get("max_invocations", DEFAULT_MAX_INVOCATIONS)
        )
        return {
            "terminated": decision.terminate,
            "termination_reason": decision.reason,
            "termination_rule": decision.rule.value
        }

    async def _select(self, state: GroupChatState) -> Dict[str, Any]:
        session_id = state["session_id"]
        history = await self._history(session_id)

        await self.store.increment_invocation_count(session_id)
        decision = self.policy.select_next(history, self.registry)
        self.metrics.record_selection(session_id, decision.participant, decision.rule.value)

        return {
            "invocations": state.get("invocations", 0) + 1,
            "participant": decision.participant,
            "selection_reason": decision.reason,
            "selection_failed": not decision.found
        }

    async def _invoke(self, state: GroupChatState) -> Dict[str, Any]:
        session_id = state["session_id"]
        agent = self.registry.resolve(state["participant"])
        history = await self._history(session_id)

        start_time = time.time()
        try:
            message = await self.runtime.invoke(agent, history)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.metrics.record_invocation(session_id, agent.name, duration_ms, False, type(e).__name__)
            if isinstance(e, ParticipantInvocationError):
                raise
            raise ParticipantInvocationError(agent.name, str(e)) from e

        duration_ms = (time.time() - start_time) * 1000
        self.metrics.record_invocation(session_id, agent.name, duration_ms, True)

        await self.store.append(session_id, message)

        logger.info(
            f"{agent.name} responded",
            extra={
                "session_id": session_id,
                "participant": agent.id,
                "content_length": len(message.content),
                "duration_ms": duration_ms
            }
        )
        return {"participant": agent.id}

    async def _finalize(self, state: GroupChatState) -> Dict[str, Any]:
        history = await self._history(state["session_id"])
        turn = history[state.get("turn_start", 0):]
        self.metrics.record_termination(state["session_id"], state.get("termination_rule", ""))
        return {"result": self.policy.extract_result(turn)}

    def _route_after_termination(self, state: GroupChatState) -> str:
        return "finalize" if state.get("terminated") else "select"

    def _route_after_selection(self, state: GroupChatState) -> str:
        return "abort" if state.get("selection_failed") else "invoke"

    async def run(self, session_id: str, turn_start: int, max_invocations: int) -> GroupChatState:
        """Run one turn. The user message must already be in the store."""
        initial_state: GroupChatState = {
            "session_id": session_id,
            "turn_start": turn_start,
            "invocations": 0,
            "max_invocations": max_invocations,
            "terminated": False,
            "selection_failed": False
        }
        # Each invocation visits three nodes; leave headroom for finalize.
        config = {"recursion_limit": max(25, max_invocations * 3 + 5)}
        return await self.app.ainvoke(initial_state, config=config)


class ConversationOrchestrator:
    """
    Entry point for processing user messages through the group chat.

    Owns nothing process-wide: the store, registry and runtime are passed in
    by the hosting service.
    """

    def __init__(
        self,
        registry: ParticipantRegistry,
        runtime: ParticipantRuntime,
        store: Optional[InMemoryConversationStore] = None,
        max_invocations: int = DEFAULT_MAX_INVOCATIONS,
        metrics: Optional[RoutingMetricsCollector] = None,
    ):
        self.registry = registry
        self.store = store or InMemoryConversationStore()
        self.max_invocations = max_invocations
        self.metrics = metrics or get_routing_metrics_collector()
        self.graph = GroupChatGraph(
            registry=registry,
            runtime=runtime,
            store=self.store,
            metrics=self.metrics
        )

    async def process_message(self, message: str, session_id: str) -> TurnResult:
        """
        Run one user turn and return the text for the user.

        Raises:
            ConversationClosedError: If the session's conversation has ended
        """
        start_time = time.time()
        logger.info(f"Processing user message in session {session_id}", extra={"session_id": session_id})

        async with self.store.lock(session_id):
            conversation = await self.store.get_or_create(session_id)
            if not conversation.is_active:
                raise ConversationClosedError(session_id, conversation.status)

            await self.store.append(
                session_id,
                Message(author=END_USER_AUTHOR, content=message, role=MessageRole.USER)
            )
            turn_start = len(conversation.messages) - 1
            start_count = conversation.invocation_count

            try:
                final_state = await self.graph.run(session_id, turn_start, self.max_invocations)
            except ParticipantInvocationError as e:
                logger.error(f"Participant invocation failed for session {session_id}: {e}", exc_info=True)
                await self.store.append(
                    session_id,
                    Message(
                        author=SYSTEM_AUTHOR,
                        content=INVOCATION_FAILED_TEXT,
                        role=MessageRole.SYSTEM,
                        metadata={"error": str(e), "agent": e.agent_name}
                    )
                )
                return self._finish_turn(
                    session_id, start_time, conversation.invocation_count - start_count,
                    content=INVOCATION_FAILED_TEXT, speaker=SYSTEM_AUTHOR,
                    reason="Participant invocation failed", success=False
                )

            if final_state.get("selection_failed"):
                await self.store.append(
                    session_id,
                    Message(author=SYSTEM_AUTHOR, content=COORDINATOR_UNAVAILABLE_TEXT, role=MessageRole.SYSTEM)
                )
                await self.store.set_status(session_id, ConversationStatus.FAILED)
                return self._finish_turn(
                    session_id, start_time, conversation.invocation_count - start_count,
                    content=COORDINATOR_UNAVAILABLE_TEXT, speaker=SYSTEM_AUTHOR,
                    reason=final_state.get("selection_reason", ""), success=False
                )

            return self._finish_turn(
                session_id, start_time, conversation.invocation_count - start_count,
                content=final_state["result"], speaker=self.registry.coordinator_name,
                reason=final_state.get("termination_reason", "")
            )

    def _finish_turn(
        self,
        session_id: str,
        start_time: float,
        invocations: int,
        content: str,
        speaker: str,
        reason: str,
        success: bool = True
    ) -> TurnResult:
        duration_ms = (time.time() - start_time) * 1000
        self.metrics.record_turn(
            session_id, duration_ms, invocations,
            outcome="success" if success else "error",
            reason=reason
        )
        logger.info(
            f"Turn finished for session {session_id}: {reason}",
            extra={
                "session_id": session_id,
                "invocations": invocations,
                "duration_ms": duration_ms,
                "success": success
            }
        )
        return TurnResult(
            session_id=session_id,
            content=content,
            speaker=speaker,
            reason=reason,
            invocations=invocations,
            success=success
        )

    async def get_conversation(self, session_id: str) -> Conversation:
        """Stored conversation, or an empty unsaved one for unknown sessions"""
        conversation = await self.store.get(session_id)
        return conversation or Conversation(session_id=session_id)

    async def end_conversation(self, session_id: str) -> bool:
        """Mark a session's conversation completed. False if missing or already ended."""
        async with self.store.lock(session_id):
            conversation = await self.store.get(session_id)
            if conversation is None:
                return False
            return await self.store.set_status(session_id, ConversationStatus.COMPLETED)

    def get_available_agents(self) -> List[AgentDefinition]:
        return self.registry.agents()
