"""
In-memory conversation store.

Session-keyed map of conversations. The routing loop appends messages,
bumps invocation counts and sets status through this store; it never deletes
or reorders messages. Each session has its own asyncio lock so one turn at a
time runs per session while different sessions proceed concurrently. The lock
is dropped once the session's conversation has ended.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from ..models.conversation import (
    Conversation,
    ConversationExistsError,
    ConversationStatus,
    Message,
)

logger = logging.getLogger(__name__)


class ConversationNotFoundError(KeyError):
    """Raised when an operation targets a session with no conversation"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No conversation for session {session_id}")


class InMemoryConversationStore:
    """Conversation store backed by a dict, owned by the hosting service"""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def lock(self, session_id: str):
        """Serialize access to one session for the duration of a turn"""
        session_lock = self._locks.setdefault(session_id, asyncio.Lock())
        try:
            async with session_lock:
                yield
        finally:
            self._release_lock_if_ended(session_id)

    def _release_lock_if_ended(self, session_id: str) -> None:
        # An ended conversation accepts no further mutations.
        conversation = self._conversations.get(session_id)
        if conversation is not None and not conversation.is_active:
            self._locks.pop(session_id, None)

    def _require(self, session_id: str) -> Conversation:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            raise ConversationNotFoundError(session_id)
        return conversation

    async def get(self, session_id: str) -> Optional[Conversation]:
        return self._conversations.get(session_id)

    async def create(self, session_id: str) -> Conversation:
        if session_id in self._conversations:
            raise ConversationExistsError(session_id)
        conversation = Conversation(session_id=session_id)
        self._conversations[session_id] = conversation
        logger.info(f"Created conversation for session {session_id}", extra={"session_id": session_id})
        return conversation

    async def get_or_create(self, session_id: str) -> Conversation:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            conversation = await self.create(session_id)
        return conversation

    async def append(self, session_id: str, message: Message) -> None:
        self._require(session_id).add_message(message)

    async def increment_invocation_count(self, session_id: str) -> int:
        return self._require(session_id).increment_invocation_count()

    async def set_status(self, session_id: str, status: ConversationStatus) -> bool:
        """Move a conversation out of active. Returns False if it had already ended."""
        conversation = self._require(session_id)
        if status == ConversationStatus.COMPLETED:
            changed = conversation.complete()
        elif status == ConversationStatus.FAILED:
            changed = conversation.fail()
        else:
            raise ValueError(f"Cannot move a conversation back to {status.value}")

        if changed:
            logger.info(
                f"Conversation {session_id} marked {status.value}",
                extra={"session_id": session_id, "status": status.value}
            )
        return changed

    async def get_active(self) -> List[Conversation]:
        return [c for c in self._conversations.values() if c.is_active]
