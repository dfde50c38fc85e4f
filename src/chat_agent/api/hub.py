"""
WebSocket chat hub

JSON frames from clients:   {"method": "SendMessage", "args": ["hello"]}
JSON frames to clients:     {"event": "ReceiveMessage", "data": {...}}

Server methods: SetSessionId, SendMessage, GetConversationHistory,
GetAvailableAgents, JoinGroup, LeaveGroup.

Client events: Connected, SessionUpdated, Processing, ReceiveMessage,
ConversationHistory, AvailableAgents, JoinedGroup, LeftGroup, Error.

Connection and group bookkeeping lives on the hub instance, which the
application owns.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from ..core.conversation_graph import ConversationOrchestrator
from ..core.routing_engine import is_user_message
from ..models.conversation import ConversationClosedError
from ..shared.security import SecurityManager

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatHub:
    """Tracks hub connections, their sessions and group membership"""

    def __init__(self, orchestrator: ConversationOrchestrator, security: Optional[SecurityManager] = None):
        self.orchestrator = orchestrator
        self.security = security
        self._connections: Dict[str, WebSocket] = {}
        self._connection_to_session: Dict[str, str] = {}
        self._groups: Dict[str, Set[str]] = {}

        # method name -> (handler, maximum number of string arguments)
        self._methods = {
            "SetSessionId": (self.set_session_id, 1),
            "SendMessage": (self.send_message, 1),
            "GetConversationHistory": (self.get_conversation_history, 0),
            "GetAvailableAgents": (self.get_available_agents, 0),
            "JoinGroup": (self.join_group, 1),
            "LeaveGroup": (self.leave_group, 1),
        }

    def session_for(self, connection_id: str) -> Optional[str]:
        return self._connection_to_session.get(connection_id)

    def has_connection(self, connection_id: str) -> bool:
        return connection_id in self._connections

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def group_members(self, group_name: str) -> Set[str]:
        return set(self._groups.get(group_name, ()))

    def _remove_from_group(self, group_name: str, connection_id: str) -> None:
        members = self._groups.get(group_name)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._groups[group_name]

    def _drop_connection(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        for group_name in list(self._groups):
            self._remove_from_group(group_name, connection_id)

    async def send(self, connection_id: str, event: str, data: Any) -> None:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_json({"event": event, "data": jsonable_encoder(data)})
        except Exception as e:
            # Dead sockets must not break delivery to the rest of a group.
            logger.warning(f"Dropping connection {connection_id} after failed send of {event}: {e}")
            self._drop_connection(connection_id)

    async def send_group(self, group_name: str, event: str, data: Any) -> None:
        for connection_id in list(self._groups.get(group_name, ())):
            await self.send(connection_id, event, data)

    async def connect(self, websocket: WebSocket, session_id: Optional[str] = None) -> str:
        """Register an accepted websocket and bind it to a session"""
        connection_id = str(uuid.uuid4())
        session_id = session_id or str(uuid.uuid4())

        self._connections[connection_id] = websocket
        self._connection_to_session[connection_id] = session_id

        await self.send(connection_id, "Connected", {
            "sessionId": session_id,
            "connectionId": connection_id,
            "timestamp": _now()
        })
        logger.info(f"Client connected: {connection_id} with session {session_id}")
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection and end the conversation it was bound to"""
        self._drop_connection(connection_id)

        session_id = self._connection_to_session.pop(connection_id, None)
        if session_id:
            await self.orchestrator.end_conversation(session_id)

        logger.info(f"Client disconnected: {connection_id}")

    async def dispatch(self, connection_id: str, raw_frame: str) -> None:
        """Parse one client frame and call the named hub method"""
        try:
            frame = json.loads(raw_frame)
        except ValueError:
            await self.send(connection_id, "Error", "Invalid message frame.")
            return

        if not isinstance(frame, dict):
            await self.send(connection_id, "Error", "Invalid message frame.")
            return

        method_name = frame.get("method")
        entry = self._methods.get(method_name)
        if entry is None:
            await self.send(connection_id, "Error", f"Unknown hub method: {method_name}")
            return
        method, max_args = entry

        args = frame.get("args", [])
        if args is None:
            args = []
        if not isinstance(args, list):
            await self.send(connection_id, "Error", f"{method_name} arguments must be a list.")
            return
        if len(args) > max_args:
            await self.send(connection_id, "Error", f"{method_name} takes at most {max_args} argument(s).")
            return
        if not all(isinstance(arg, str) for arg in args):
            await self.send(connection_id, "Error", f"{method_name} arguments must be strings.")
            return

        await method(connection_id, *args)

    async def set_session_id(self, connection_id: str, session_id: str = "") -> None:
        if not session_id:
            await self.send(connection_id, "Error", "Session ID cannot be empty.")
            return

        self._connection_to_session[connection_id] = session_id
        logger.info(f"Client {connection_id} set session to {session_id}")

        await self.send(connection_id, "SessionUpdated", {
            "sessionId": session_id,
            "connectionId": connection_id,
            "timestamp": _now()
        })

    async def send_message(self, connection_id: str, message: str = "") -> None:
        session_id = self.session_for(connection_id)
        if session_id is None:
            await self.send(connection_id, "Error", "Session not found. Please reconnect.")
            return

        if self.security:
            message = self.security.sanitize_input(message)

        preview = message if len(message) <= 50 else f"{message[:50]}..."
        logger.debug(f"Processing message from session {session_id}: {preview}")

        await self.send(connection_id, "Processing", {"status": "processing", "timestamp": _now()})

        try:
            result = await self.orchestrator.process_message(message, session_id)
        except ConversationClosedError as e:
            await self.send(connection_id, "Error", str(e))
            return
        except Exception as e:
            logger.error(f"Error processing message for session {session_id}: {e}", exc_info=True)
            await self.send(connection_id, "Error", f"Failed to process message: {e}")
            return

        await self.send(connection_id, "ReceiveMessage", {
            "content": result.content,
            "role": "assistant",
            "agentId": result.speaker,
            "timestamp": result.timestamp,
            "metadata": {"reason": result.reason, "invocations": result.invocations}
        })

    async def get_conversation_history(self, connection_id: str) -> None:
        session_id = self.session_for(connection_id)
        if session_id is None:
            await self.send(connection_id, "Error", "Session not found. Please reconnect.")
            return

        conversation = await self.orchestrator.get_conversation(session_id)
        await self.send(connection_id, "ConversationHistory", {
            "sessionId": session_id,
            "messages": [
                {
                    "content": m.content,
                    "role": m.role.value,
                    "timestamp": m.timestamp,
                    "agentId": None if is_user_message(m) else m.author,
                    "metadata": m.metadata
                }
                for m in conversation.messages
            ],
            "status": conversation.status.value,
            "startedAt": conversation.started_at
        })

    async def get_available_agents(self, connection_id: str) -> None:
        await self.send(connection_id, "AvailableAgents", [
            {
                "id": agent.id,
                "name": agent.name,
                "description": agent.description,
                "type": agent.type.value,
                "capabilities": agent.capabilities
            }
            for agent in self.orchestrator.get_available_agents()
        ])

    async def join_group(self, connection_id: str, group_name: str = "") -> None:
        if not group_name:
            await self.send(connection_id, "Error", "Group name cannot be empty.")
            return

        self._groups.setdefault(group_name, set()).add(connection_id)
        logger.info(f"Client {connection_id} joined group {group_name}")

        await self.send(connection_id, "JoinedGroup", {
            "groupName": group_name,
            "connectionId": connection_id,
            "timestamp": _now()
        })

    async def leave_group(self, connection_id: str, group_name: str = "") -> None:
        if not group_name:
            await self.send(connection_id, "Error", "Group name cannot be empty.")
            return

        self._remove_from_group(group_name, connection_id)
        logger.info(f"Client {connection_id} left group {group_name}")

        await self.send(connection_id, "LeftGroup", {
            "groupName": group_name,
            "connectionId": connection_id,
            "timestamp": _now()
        })
