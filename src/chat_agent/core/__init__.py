"""
Group chat orchestration and routing

Key Components:
- CoordinatorRoutingPolicy (routing_engine): next-speaker selection, termination
  and result extraction
- GroupChatGraph (conversation_graph): LangGraph loop of selector, participant
  and termination checker
- ConversationOrchestrator (conversation_graph): processes user messages per session

conversation_graph depends on the services package, which itself reads
core.config, so it is imported from its module rather than re-exported here.
"""

from .routing_engine import (
    CoordinatorRoutingPolicy,
    RoutingDecision,
    TerminationDecision,
    SelectionRule,
    TerminationRule,
    select_next,
    should_terminate,
    extract_result,
    END_USER_AUTHOR,
    FALLBACK_RESULT,
    DEFAULT_MAX_INVOCATIONS,
)

__all__ = [
    'CoordinatorRoutingPolicy',
    'RoutingDecision',
    'TerminationDecision',
    'SelectionRule',
    'TerminationRule',
    'select_next',
    'should_terminate',
    'extract_result',
    'END_USER_AUTHOR',
    'FALLBACK_RESULT',
    'DEFAULT_MAX_INVOCATIONS',
]
