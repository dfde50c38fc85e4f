"""
Pydantic models for conversation data contracts.

A conversation is an append-only log of messages plus the routing counters the
group chat loop needs. Messages are frozen once created; conversations are
never deleted, only moved out of the active status.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConversationClosedError(RuntimeError):
    """Raised when a message is appended to a conversation that is no longer active"""

    def __init__(self, session_id: str, status: "ConversationStatus"):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Conversation {session_id} is {status.value}; no further messages may be added")


class ConversationExistsError(RuntimeError):
    """Raised when creating a conversation for a session id that is already in use"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Conversation with session ID {session_id} already exists")


class MessageRole(str, Enum):
    """Coarse category of a message, used when the author is unset"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationStatus(str, Enum):
    """Lifecycle of a conversation"""
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """One utterance in a conversation"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    author: Optional[str] = Field(default=None, description="Speaker name, the end-user sentinel, or unset")
    content: str = Field(default="", description="Message text")
    role: MessageRole = Field(default=MessageRole.ASSISTANT, description="Role of the message sender")
    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Conversation(BaseModel):
    """Ordered message log for one session plus routing counters"""

    session_id: str
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[Message] = Field(default_factory=list)
    invocation_count: int = 0
    status: ConversationStatus = ConversationStatus.ACTIVE
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == ConversationStatus.ACTIVE

    def add_message(self, message: Message) -> None:
        if not self.is_active:
            raise ConversationClosedError(self.session_id, self.status)
        self.messages.append(message)

    def increment_invocation_count(self) -> int:
        self.invocation_count += 1
        return self.invocation_count

    def update_context(self, key: str, value: Any) -> None:
        self.context[key] = value

    def _finish(self, status: ConversationStatus) -> bool:
        if not self.is_active:
            return False
        self.status = status
        self.ended_at = _utcnow()
        return True

    def complete(self) -> bool:
        """Mark the conversation completed. Returns False if it had already ended."""
        return self._finish(ConversationStatus.COMPLETED)

    def fail(self) -> bool:
        """Mark the conversation failed. Returns False if it had already ended."""
        return self._finish(ConversationStatus.FAILED)


# API models

class ApiModel(BaseModel):
    """Base for API payloads, serialized with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(ApiModel):
    """Request body for a chat turn"""
    message: str = Field(..., description="User message text")


class ChatResponse(ApiModel):
    """Response for a chat turn"""
    success: bool = True
    message: str = Field(..., description="Text returned to the user")
    speaker: str = Field(..., description="Agent that produced the text")
    timestamp: datetime


class SessionStartRequest(ApiModel):
    """Connector configuration supplied when a setup session starts"""
    aws_region: Optional[str] = Field(default=None, description="AWS region for the connector resources")
    workspace_id: Optional[str] = Field(default=None, description="Log Analytics workspace identifier")
    subscription_id: Optional[str] = Field(default=None, description="Azure subscription identifier")
    resource_group: Optional[str] = Field(default=None, description="Azure resource group")
    tenant_id: Optional[str] = Field(default=None, description="Azure AD tenant identifier")
    log_types: List[str] = Field(default_factory=list, description="AWS log types to ingest")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SpecialistInfo(ApiModel):
    """Public view of an agent"""
    name: str
    role: str
    capabilities: List[str] = Field(default_factory=list)
    available: bool = True


class SessionStartResponse(ApiModel):
    """Response for a new setup session"""
    session_id: str
    configuration: SessionStartRequest
    specialists: List[SpecialistInfo]
    welcome_message: str
    tip: str


class HistoryEntry(ApiModel):
    """One message as shown to the client"""
    speaker: str
    message: str
    timestamp: datetime
    is_user: bool


class ConversationHistoryResponse(ApiModel):
    """Conversation history for a session"""
    session_id: str
    status: ConversationStatus
    started_at: datetime
    messages: List[HistoryEntry]
