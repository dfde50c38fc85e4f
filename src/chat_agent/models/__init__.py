"""Models package"""

from .conversation import (
    Message,
    MessageRole,
    Conversation,
    ConversationStatus,
    ConversationClosedError,
    ConversationExistsError,
    ChatRequest,
    ChatResponse,
    SessionStartRequest,
    SessionStartResponse,
    SpecialistInfo,
    HistoryEntry,
    ConversationHistoryResponse,
)
from .agents import (
    AgentType,
    AgentDefinition,
    ParticipantRegistry,
    default_agents,
    COORDINATOR_NAME,
    AZURE_AGENT_NAME,
    AWS_AGENT_NAME,
)

__all__ = [
    # Conversation models
    'Message',
    'MessageRole',
    'Conversation',
    'ConversationStatus',
    'ConversationClosedError',
    'ConversationExistsError',

    # API models
    'ChatRequest',
    'ChatResponse',
    'SessionStartRequest',
    'SessionStartResponse',
    'SpecialistInfo',
    'HistoryEntry',
    'ConversationHistoryResponse',

    # Agents
    'AgentType',
    'AgentDefinition',
    'ParticipantRegistry',
    'default_agents',
    'COORDINATOR_NAME',
    'AZURE_AGENT_NAME',
    'AWS_AGENT_NAME',
]
