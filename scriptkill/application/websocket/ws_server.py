from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Any, Callable, Dict, Optional
import asyncio
from datetime import datetime
import structlog
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from pydantic import ValidationError

from .connection_manager import ConnectionManager
from .schema.events import ClientAction, ClientActionEvent
from scriptkill.application.api.route.session import router as session_router
from scriptkill.domain.context.context_manager import ContextManager
from scriptkill.domain.context.memory.cache_memory_store import CacheMemoryStore
from scriptkill.domain.context.memory.collection_manager import CollectionManager
from scriptkill.domain.context.memory.embedding_provider import EmbeddingProvider
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.context.state.state_manager import StateManager
from scriptkill.domain.discussion.discussion_manager import DiscussionManager
from scriptkill.domain.errors import DiscussionNotStartedError, SessionNotFoundError
from scriptkill.domain.orchestration.core.session_service import SessionService
from scriptkill.domain.orchestration.core.session_workflow import SessionWorkflow
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.repository.record_repository import RecordRepository
from scriptkill.domain.streaming.streaming_handler import StreamingHandler
from scriptkill.infrastructure.config.settings import Settings
from scriptkill.infrastructure.observability.langfuse_tracing import AgentTracer
from scriptkill.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def build_session_service(
    settings: Settings,
    connection_manager: ConnectionManager,
    chat_model_factory: Optional[Callable[[str], BaseChatModel]] = None,
    embeddings: Optional[Embeddings] = None,
    chroma_client: Optional[Any] = None
) -> SessionService:
    """Wire the engine's collaborators together"""

    if chat_model_factory is None or embeddings is None:
        from scriptkill.infrastructure.llm.providers import build_chat_model_factory, build_embeddings
        chat_model_factory = chat_model_factory or build_chat_model_factory(settings)
        embeddings = embeddings or build_embeddings(settings)

    collections = CollectionManager(
        client=chroma_client,
        persist_directory=settings.chroma_persist_directory,
        conversation_prefix=settings.conversation_collection_prefix,
        global_collection_name=settings.global_memory_collection,
    )
    memory = VectorMemoryStore(collections, EmbeddingProvider(embeddings, settings.embedding_dimension))

    agents = AgentRegistry(
        chat_model_factory,
        cache=CacheMemoryStore(default_ttl=settings.agent_cache_ttl_seconds),
        memory_window=settings.agent_memory_window,
        tracer=AgentTracer(settings),
    )
    streaming = StreamingHandler(connection_manager)
    state_manager = StateManager()
    repository = RecordRepository()

    workflow = SessionWorkflow(
        agents,
        repository,
        memory,
        streaming,
        state_manager,
        max_generation_attempts=settings.script_generation_max_attempts,
    )
    discussions = DiscussionManager(
        agents, streaming, memory, ContextManager(memory), settings, state_manager=state_manager
    )

    return SessionService(workflow, discussions, state_manager, memory, agents)


def create_app(
    session_service: Optional[SessionService] = None,
    connection_manager: Optional[ConnectionManager] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """Create the session server"""

    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    app = FastAPI(title="Script Kill Session Server")

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.connection_manager = connection_manager or ConnectionManager()
    app.state.session_service = session_service
    app.include_router(session_router)

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DiscussionNotStartedError)
    async def discussion_not_started(request: Request, exc: DiscussionNotStartedError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.on_event("startup")
    async def startup_event():
        """Build the engine if none was injected and start background tasks"""

        if app.state.session_service is None:
            app.state.session_service = build_session_service(settings, app.state.connection_manager)

        app.state.health_task = asyncio.create_task(app.state.connection_manager.health_check())
        app.state.cache_sweep_task = asyncio.create_task(
            app.state.session_service.agents.cache.sweep_expired(settings.agent_cache_sweep_seconds)
        )
        logger.info("Session server started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""

        for name in ("health_task", "cache_sweep_task"):
            task = getattr(app.state, name, None)
            if task is not None:
                task.cancel()

        if app.state.session_service is not None:
            await app.state.session_service.shutdown()

        await app.state.connection_manager.disconnect_all()

        logger.info("Session server shutdown")

    @app.websocket("/ws/session/{session_id}/{participant_id}")
    async def session_websocket(websocket: WebSocket, session_id: str, participant_id: str):
        """Participant socket: receives game events and sends actions"""

        manager: ConnectionManager = app.state.connection_manager
        service: SessionService = app.state.session_service

        try:
            await service.get_context(session_id)
        except SessionNotFoundError:
            await websocket.close(code=1008, reason="Unknown session")
            return

        await manager.connect(websocket, session_id, participant_id)

        try:
            while True:
                data = await websocket.receive_json()

                try:
                    event = ClientActionEvent(**data)
                except ValidationError as e:
                    await manager.send_error(
                        session_id, participant_id, "Malformed action", error_code="invalid_action"
                    )
                    logger.info("Malformed client action", participant_id=participant_id, errors=e.error_count())
                    continue

                try:
                    accepted = await handle_client_action(service, session_id, participant_id, event)
                except (SessionNotFoundError, DiscussionNotStartedError) as e:
                    await manager.send_error(session_id, participant_id, str(e), error_code="not_available")
                    continue

                if not accepted:
                    await manager.send_error(session_id, participant_id, "Action was not accepted", error_code="rejected")

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=session_id, participant_id=participant_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), session_id=session_id, participant_id=participant_id)
        finally:
            await manager.disconnect(session_id, participant_id, websocket)

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_connections": len(app.state.connection_manager.active_connections),
            "timestamp": datetime.utcnow().isoformat()
        }

    return app


async def handle_client_action(
    service: SessionService,
    session_id: str,
    participant_id: str,
    event: ClientActionEvent
) -> bool:
    """Dispatch an action received over a participant's socket"""

    if event.action == ClientAction.DISCUSSION_MESSAGE:
        return await service.send_discussion_message(session_id, participant_id, event.content)

    if event.action == ClientAction.SUBMIT_ANSWER:
        return await service.submit_answer(session_id, participant_id, event.content)

    if not event.receiver_id:
        return False

    if event.action == ClientAction.PRIVATE_CHAT_INVITATION:
        return await service.send_private_chat_invitation(session_id, participant_id, event.receiver_id)

    return await service.send_private_chat_message(session_id, participant_id, event.receiver_id, event.content)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
