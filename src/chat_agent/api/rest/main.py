"""
Sentinel Chat Agent - Main FastAPI Application
==============================================
HTTP API and WebSocket chat hub for the AWS-Azure Sentinel connector
setup assistant. Every user message runs one coordinator-led group chat
turn and returns the coordinator's reply.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ...core.config import Settings, settings
from ...core.conversation_graph import ConversationOrchestrator
from ...core.routing_engine import is_user_message
from ...models.agents import ParticipantRegistry, default_agents
from ...models.conversation import (
    ChatRequest,
    ChatResponse,
    ConversationClosedError,
    ConversationHistoryResponse,
    HistoryEntry,
    SessionStartRequest,
    SessionStartResponse,
    SpecialistInfo,
)
from ...services.conversation_store import InMemoryConversationStore
from ...services.llm_manager import LLMManager
from ...shared.security import SecurityManager
from ..hub import ChatHub

# Set up logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """Hello! I'm here to help you set up your AWS-Azure Sentinel connector.

I'll guide you through the entire process step by step. We'll:
1. Validate your prerequisites
2. Set up AWS resources
3. Configure Azure Sentinel
4. Connect everything together
5. Verify it's all working

You can talk to me naturally - just tell me what you'd like to do, ask questions, or say 'help' if you need guidance.

Ready to begin? Just say 'let's start' or tell me what you'd like to do first!"""

SESSION_TIP = "Just chat naturally! For example: 'I need help setting up Sentinel to collect AWS CloudTrail logs'"


def _build_orchestrator(config: Settings, llm_manager: LLMManager) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        registry=ParticipantRegistry(default_agents()),
        runtime=llm_manager,
        store=InMemoryConversationStore(),
        max_invocations=config.max_invocations
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic"""
    config: Settings = app.state.config
    logger.info(f"Starting {config.app_name} v{config.app_version}")

    if app.state.orchestrator is None:
        try:
            logger.info("Initializing LLM Manager...")
            api_key = app.state.security.resolve_azure_openai_api_key()
            llm_manager = LLMManager(config, azure_api_key=api_key)
            if not await llm_manager.initialize():
                logger.warning("No LLM provider available - participant invocations will fail until configured")

            app.state.llm_manager = llm_manager
            app.state.orchestrator = _build_orchestrator(config, llm_manager)
            app.state.hub = ChatHub(app.state.orchestrator, app.state.security)
            logger.info("Service initialization complete")

        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            raise

    yield

    logger.info(f"Shutting down {config.app_name}")


# Dependencies

def get_orchestrator(request: Request) -> ConversationOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return orchestrator


def get_hub(request: Request) -> Optional[ChatHub]:
    return request.app.state.hub


def get_security(request: Request) -> SecurityManager:
    return request.app.state.security


# Sentinel connector routes

router = APIRouter(prefix="/api/sentinelconnector", tags=["sentinel-connector"])


def _specialists(orchestrator: ConversationOrchestrator) -> List[SpecialistInfo]:
    return [
        SpecialistInfo(name=agent.name, role=agent.description, capabilities=agent.capabilities)
        for agent in orchestrator.get_available_agents()
    ]


@router.post("/session/start", response_model=SessionStartResponse)
async def start_session(
    request: SessionStartRequest,
    http_request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    hub: Optional[ChatHub] = Depends(get_hub)
):
    """Start a new connector setup session"""
    config: Settings = http_request.app.state.config
    session_id = f"{config.session_prefix}-{uuid.uuid4().hex[:8]}"
    logger.info(f"Starting new Sentinel connector session: {session_id}", extra={"session_id": session_id})

    conversation = await orchestrator.store.get_or_create(session_id)
    conversation.update_context("configuration", request.model_dump())

    if hub:
        await hub.send_group(session_id, "sessionStarted", {
            "sessionId": session_id,
            "configuration": request.model_dump(by_alias=True),
            "welcomeMessage": WELCOME_MESSAGE
        })

    return SessionStartResponse(
        session_id=session_id,
        configuration=request,
        specialists=_specialists(orchestrator),
        welcome_message=WELCOME_MESSAGE,
        tip=SESSION_TIP
    )


@router.post("/chat/{session_id}", response_model=ChatResponse)
async def chat(
    session_id: str,
    request: ChatRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    hub: Optional[ChatHub] = Depends(get_hub),
    security: SecurityManager = Depends(get_security)
):
    """Send a message to the coordinator-led group chat"""
    message = security.sanitize_input(request.message)
    preview = message if len(message) <= 50 else f"{message[:50]}..."
    logger.info(f"Received message for session {session_id}: {preview}", extra={"session_id": session_id})

    try:
        result = await orchestrator.process_message(message, session_id)

    except ConversationClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        logger.error(f"Error processing message for session {session_id}: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "An error occurred while processing your message",
                "details": str(e)
            }
        )

    if hub:
        await hub.send_group(session_id, "assistantResponse", {
            "message": result.content,
            "speaker": result.speaker,
            "timestamp": result.timestamp
        })

    return ChatResponse(
        success=result.success,
        message=result.content,
        speaker=result.speaker,
        timestamp=result.timestamp
    )


@router.get("/specialists", response_model=List[SpecialistInfo])
async def list_specialists(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """Agents taking part in every session"""
    return _specialists(orchestrator)


@router.get("/session/{session_id}/history", response_model=ConversationHistoryResponse)
async def session_history(
    session_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator)
):
    conversation = await orchestrator.get_conversation(session_id)
    return ConversationHistoryResponse(
        session_id=session_id,
        status=conversation.status,
        started_at=conversation.started_at,
        messages=[
            HistoryEntry(
                speaker="You" if is_user_message(m) else (m.author or "Assistant"),
                message=m.content,
                timestamp=m.timestamp,
                is_user=is_user_message(m)
            )
            for m in conversation.messages
        ]
    )


@router.delete("/session/{session_id}")
async def end_session(
    session_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator)
):
    ended = await orchestrator.end_conversation(session_id)
    return {"sessionId": session_id, "ended": ended}


@router.post("/join-session/{session_id}")
async def join_session(
    session_id: str,
    connection_id: str = Query(..., alias="connectionId"),
    hub: Optional[ChatHub] = Depends(get_hub)
):
    """Add a hub connection to the session's broadcast group"""
    if hub is None or not hub.has_connection(connection_id):
        raise HTTPException(status_code=404, detail=f"Unknown hub connection: {connection_id}")

    await hub.join_group(connection_id, session_id)
    return {"sessionId": session_id, "connectionId": connection_id, "joined": True}


def create_app(
    orchestrator: Optional[ConversationOrchestrator] = None,
    config: Optional[Settings] = None,
    security: Optional[SecurityManager] = None
) -> FastAPI:
    """
    Build the application.

    When an orchestrator is passed in, startup skips the LLM and Key Vault
    wiring and uses it as is.
    """
    config = config or settings

    app = FastAPI(
        title=config.app_name,
        description="Coordinator-led group chat for AWS-Azure Sentinel connector setup",
        version=config.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.config = config
    app.state.security = security or SecurityManager(config)
    app.state.orchestrator = orchestrator
    app.state.llm_manager = None
    app.state.hub = ChatHub(orchestrator, app.state.security) if orchestrator else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/health")
    async def health_check(request: Request) -> Dict[str, Any]:
        """Health check endpoint"""
        state = request.app.state
        active = await state.orchestrator.store.get_active() if state.orchestrator else []
        providers = await state.llm_manager.health_check() if state.llm_manager else {}
        usage = await state.llm_manager.get_usage_stats() if state.llm_manager else {}

        return {
            "status": "healthy" if state.orchestrator else "starting",
            "service": config.app_name,
            "version": config.app_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "activeConversations": len(active),
            "hubConnections": state.hub.connection_count if state.hub else 0,
            "providers": providers,
            "usage": usage,
            "keyVaultConfigured": bool(config.azure_key_vault_url)
        }

    @app.get("/metrics")
    async def metrics(request: Request) -> Dict[str, Any]:
        """Routing metrics since startup"""
        orchestrator = get_orchestrator(request)
        return orchestrator.metrics.export_metrics()

    @app.websocket("/chathub")
    async def chat_hub_endpoint(
        websocket: WebSocket,
        session_id: Optional[str] = Query(default=None, alias="sessionId")
    ):
        hub: Optional[ChatHub] = websocket.app.state.hub
        if hub is None:
            await websocket.close(code=1013)
            return

        await websocket.accept()
        connection_id = await hub.connect(websocket, session_id)
        try:
            while True:
                frame = await websocket.receive_text()
                await hub.dispatch(connection_id, frame)
        except WebSocketDisconnect:
            logger.debug(f"Hub socket closed by client: {connection_id}")
        finally:
            await hub.disconnect(connection_id)

    return app


app = create_app()


def run():
    import uvicorn

    uvicorn.run(
        "chat_agent.api.rest.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )


# Main entry point
if __name__ == "__main__":
    run()
