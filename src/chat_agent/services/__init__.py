"""Services: conversation storage and the LLM-backed participant runtime"""

from .conversation_store import InMemoryConversationStore, ConversationNotFoundError
from .llm_manager import (
    LLMManager,
    LLMRequest,
    LLMResponse,
    ParticipantRuntime,
    ParticipantInvocationError,
    build_chat_messages,
)

__all__ = [
    'InMemoryConversationStore',
    'ConversationNotFoundError',
    'LLMManager',
    'LLMRequest',
    'LLMResponse',
    'ParticipantRuntime',
    'ParticipantInvocationError',
    'build_chat_messages',
]
