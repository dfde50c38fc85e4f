"""
Coordinator-controlled Routing for the Group Chat

This module decides, for a conversation history, which participant speaks
next, when the exchange is complete, and what text goes back to the user.

Routing rules:
- The coordinator is the only participant that addresses the end user, so
  first turns and user turns always land on it
- The coordinator hands off to the Azure specialist when its reply asks for
  connector lookups or Azure checks
- Specialists always hand control back to the coordinator
- A turn ends once the coordinator has replied to the latest user input, or
  when the invocation cap is reached

Every function here is pure: the same history and registry always produce the
same decision, and the history is never modified.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Mapping, Callable, List, Tuple

from ..models.conversation import Message, MessageRole
from ..models.agents import COORDINATOR_NAME, AZURE_AGENT_NAME

logger = logging.getLogger(__name__)

END_USER_AUTHOR = "User"
FALLBACK_RESULT = "Processing complete."
DEFAULT_MAX_INVOCATIONS = 20


class SelectionRule(str, Enum):
    """Which selector rule produced a decision"""
    COORDINATOR_MISSING = "coordinator_missing"
    USER_TURN = "user_turn"
    SPECIALIST_REQUESTED = "specialist_requested"
    SPECIALIST_HANDBACK = "specialist_handback"
    DEFAULT = "default"


class TerminationRule(str, Enum):
    """Which termination rule produced a decision"""
    INVOCATION_CAP = "invocation_cap"
    INSUFFICIENT_HISTORY = "insufficient_history"
    COORDINATOR_REPLIED = "coordinator_replied"
    CONTINUING = "continuing"


@dataclass(frozen=True)
class RoutingDecision:
    """Next participant and why it was chosen. participant is None when not found."""
    participant: Optional[str]
    reason: str
    rule: SelectionRule

    @property
    def found(self) -> bool:
        return self.participant is not None


@dataclass(frozen=True)
class TerminationDecision:
    """Whether the exchange is complete and why"""
    terminate: bool
    reason: str
    rule: TerminationRule


def _azure_requested(content: str) -> bool:
    # Two independent disjuncts, each a conjunction. Keep the precedence as is.
    return (
        ("find" in content and ("solution" in content or "connector" in content))
        or ("azure" in content and "check" in content)
    )


# (specialist name, trigger predicate over lowercased coordinator content)
SPECIALIST_TRIGGERS: Tuple[Tuple[str, Callable[[str], bool]], ...] = (
    (AZURE_AGENT_NAME, _azure_requested),
)


def is_user_message(message: Message) -> bool:
    """Unset author, the end-user sentinel, or a user role all count as the user"""
    return (
        not message.author
        or message.author == END_USER_AUTHOR
        or message.role == MessageRole.USER
    )


def select_next(
    history: Sequence[Message],
    registry: Mapping[str, str],
    coordinator_name: str = COORDINATOR_NAME,
) -> RoutingDecision:
    """Pick the participant that produces the next message."""

    coordinator = registry.get(coordinator_name)
    if coordinator is None:
        return RoutingDecision(
            participant=None,
            reason=f"{coordinator_name} not found in registered participants",
            rule=SelectionRule.COORDINATOR_MISSING,
        )

    last = history[-1] if history else None

    if last is None or is_user_message(last):
        return RoutingDecision(
            participant=coordinator,
            reason="Initial or user message - routing to coordinator",
            rule=SelectionRule.USER_TURN,
        )

    if last.author == coordinator_name:
        content = (last.content or "").lower()
        for specialist, requested in SPECIALIST_TRIGGERS:
            if requested(content) and specialist in registry:
                return RoutingDecision(
                    participant=registry[specialist],
                    reason=f"Coordinator requesting {specialist} operations",
                    rule=SelectionRule.SPECIALIST_REQUESTED,
                )

    elif last.author in registry:
        return RoutingDecision(
            participant=coordinator,
            reason=f"{last.author} completed - returning to coordinator",
            rule=SelectionRule.SPECIALIST_HANDBACK,
        )

    return RoutingDecision(
        participant=coordinator,
        reason="Default selection - coordinator",
        rule=SelectionRule.DEFAULT,
    )


def should_terminate(
    history: Sequence[Message],
    invocation_count: int,
    max_invocations: int = DEFAULT_MAX_INVOCATIONS,
    coordinator_name: str = COORDINATOR_NAME,
) -> TerminationDecision:
    """Decide whether the coordinator's latest message ends the exchange."""

    if invocation_count >= max_invocations:
        return TerminationDecision(
            terminate=True,
            reason=f"Maximum invocations ({max_invocations}) reached",
            rule=TerminationRule.INVOCATION_CAP,
        )

    if len(history) < 2:
        return TerminationDecision(
            terminate=False,
            reason="Not enough messages",
            rule=TerminationRule.INSUFFICIENT_HISTORY,
        )

    last_user_index = -1
    last_coordinator_index = -1
    for index, message in enumerate(history):
        if is_user_message(message):
            last_user_index = index
        elif message.author == coordinator_name:
            last_coordinator_index = index

    if (
        last_user_index >= 0
        and last_coordinator_index > last_user_index
        and last_coordinator_index == len(history) - 1
    ):
        return TerminationDecision(
            terminate=True,
            reason="Coordinator has responded to user",
            rule=TerminationRule.COORDINATOR_REPLIED,
        )

    return TerminationDecision(
        terminate=False,
        reason="Conversation continuing",
        rule=TerminationRule.CONTINUING,
    )


def extract_result(history: Sequence[Message], coordinator_name: str = COORDINATOR_NAME) -> str:
    """Text of the last non-empty coordinator message, or the fixed fallback."""
    replies: List[str] = [
        message.content for message in history
        if message.author == coordinator_name and message.content
    ]
    return replies[-1] if replies else FALLBACK_RESULT


class CoordinatorRoutingPolicy:
    """
    The routing policy used by the group chat loop.

    Thin wrapper over the module functions that fixes the coordinator name
    and logs every decision. Holds no mutable state.
    """

    def __init__(self, coordinator_name: str = COORDINATOR_NAME):
        self.coordinator_name = coordinator_name

    def select_next(self, history: Sequence[Message], registry: Mapping[str, str]) -> RoutingDecision:
        decision = select_next(history, registry, self.coordinator_name)
        last = history[-1] if history else None

        if not decision.found:
            logger.error(
                f"{self.coordinator_name} not found in registered agents",
                extra={"registered_agents": list(registry.keys())}
            )
        else:
            logger.debug(
                f"Selected participant: {decision.participant}",
                extra={
                    "message_count": len(history),
                    "last_author": last.author if last else None,
                    "last_role": last.role.value if last else None,
                    "rule": decision.rule.value,
                    "reason": decision.reason
                }
            )
        return decision

    def should_terminate(
        self,
        history: Sequence[Message],
        invocation_count: int,
        max_invocations: int = DEFAULT_MAX_INVOCATIONS,
    ) -> TerminationDecision:
        decision = should_terminate(history, invocation_count, max_invocations, self.coordinator_name)

        if decision.rule == TerminationRule.INVOCATION_CAP:
            logger.warning(f"Maximum invocations ({max_invocations}) reached")
        elif decision.terminate:
            logger.info("Terminating chat - Coordinator has responded to user")
        else:
            logger.debug(
                f"Termination check: {decision.reason}",
                extra={"invocation_count": invocation_count, "message_count": len(history)}
            )
        return decision

    def extract_result(self, history: Sequence[Message]) -> str:
        return extract_result(history, self.coordinator_name)
