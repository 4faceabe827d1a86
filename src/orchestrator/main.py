"""Orchestrator - FastAPI Application.

The HTTP host for the presentation layer provides:
- Chat API (plain and streaming with tool progress events)
- Conversation management
- Tool listing and health
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.config import Settings, get_settings
from shared.errors import BackendError, ConversationAbortedError, RateLimitError
from shared.logging import get_logger, setup_logging
from shared.models import OrchestrationResult, ToolProgress, VitalsData
from domains import load_all_domains
from domains.base import BaseAdapter, DomainToolExecutor
from domains.clinic import extract_vitals
from orchestrator.agent import WELCOME_MESSAGE, ChatAgent
from orchestrator.conversation import ConversationManager
from orchestrator.llm import LLMProvider, create_llm_provider
from orchestrator.loop import ProgressCallback
from orchestrator.registry import ToolRegistry

logger = get_logger(__name__)


# Request/Response Models
class ChatRequest(BaseModel):
    """Chat request from frontend."""
    message: str = Field(..., min_length=1, description="User message")
    conversation_id: Optional[str] = Field(default=None, description="Existing conversation ID")


class ChatResponse(BaseModel):
    """Chat response to frontend."""
    conversation_id: str
    response: str
    tools_used: list[str] = Field(default_factory=list)
    rounds: int = 0
    incomplete: bool = False
    vitals: Optional[VitalsData] = None


class ConversationCreatedResponse(BaseModel):
    """A new conversation with its greeting."""
    conversation_id: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    provider: str
    domains: list[str]
    tool_count: int
    conversation_count: int


# Global instances
_settings: Optional[Settings] = None
_provider: Optional[LLMProvider] = None
_registry: Optional[ToolRegistry] = None
_adapters: list[BaseAdapter] = []
_manager: Optional[ConversationManager] = None
_cleanup_task: Optional[asyncio.Task] = None


async def cleanup_conversations_task(manager: ConversationManager, interval: int = 300):
    """Background task to clean up expired conversations."""
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.cleanup_expired()
        except Exception as e:
            logger.error("Conversation cleanup failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global _settings, _provider, _registry, _adapters, _manager, _cleanup_task

    # Startup
    _settings = get_settings()
    setup_logging(_settings.log_level, json_output=_settings.environment == "production")
    logger.info("Starting Orchestrator")

    # Missing credentials fail here, before any turn is attempted
    _provider = create_llm_provider(_settings.llm)

    executor = DomainToolExecutor()
    _adapters = load_all_domains(executor, latency_seconds=_settings.agent.tool_latency_seconds)
    _registry = ToolRegistry(executor.descriptors)

    settings = _settings
    provider = _provider
    registry = _registry

    def agent_factory(conversation_id: Optional[str]) -> ChatAgent:
        return ChatAgent(
            provider,
            registry,
            executor,
            settings=settings.agent,
            llm_timeout=settings.llm.timeout_seconds,
            conversation_id=conversation_id
        )

    _manager = ConversationManager(
        agent_factory=agent_factory,
        conversation_ttl_minutes=_settings.server.conversation_ttl_minutes
    )

    _cleanup_task = asyncio.create_task(
        cleanup_conversations_task(_manager, _settings.server.cleanup_interval_seconds)
    )

    logger.info(
        "Orchestrator started",
        provider=_settings.llm.provider,
        model=_settings.llm.model,
        tools=registry.names()
    )

    yield

    # Shutdown
    logger.info("Shutting down Orchestrator")

    if _cleanup_task:
        _cleanup_task.cancel()
        try:
            await _cleanup_task
        except asyncio.CancelledError:
            pass


# Create FastAPI app
app = FastAPI(
    title="NURA Orchestrator",
    description="Agentic tool-calling backend for the NURA nurse assistant",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_manager() -> ConversationManager:
    if _manager is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Orchestrator not initialized"
        )
    return _manager


async def _get_agent(conversation_id: str) -> ChatAgent:
    agent = await _require_manager().get(conversation_id)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    return agent


async def _run_with_retry(
    agent: ChatAgent,
    message: str,
    on_progress: Optional[ProgressCallback] = None
) -> OrchestrationResult:
    """Run a submission, retrying the whole exchange when rate-limited."""
    attempts = _settings.server.retry_attempts if _settings else 1
    result = None
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(RateLimitError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    ):
        with attempt:
            result = await agent.run(message, on_progress=on_progress)
    return result


def _record_vitals(agent: ChatAgent, result: OrchestrationResult) -> Optional[VitalsData]:
    """Keep the conversation's newest vitals reading and return it."""
    vitals = extract_vitals(result.tool_calls)
    if vitals is not None:
        agent.metadata["vitals"] = vitals
    return agent.metadata.get("vitals")


def _error_status(error: Exception) -> int:
    if isinstance(error, RateLimitError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(error, ConversationAbortedError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_502_BAD_GATEWAY


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check endpoint."""
    manager = _require_manager()

    return HealthResponse(
        status="healthy",
        provider=_settings.llm.provider,
        domains=[a.domain for a in _adapters],
        tool_count=len(_registry),
        conversation_count=manager.get_stats()["total_conversations"]
    )


@app.get("/tools", tags=["Tools"])
async def list_tools():
    """List the tools the assistant can call."""
    _require_manager()
    tools = [d.model_dump() for d in _registry.describe()]
    return {"tools": tools, "count": len(tools)}


@app.post("/conversations", response_model=ConversationCreatedResponse, tags=["Conversations"])
async def create_conversation():
    """Start a conversation and return the assistant's greeting."""
    agent = await _require_manager().create()
    return ConversationCreatedResponse(conversation_id=agent.id, message=WELCOME_MESSAGE)


@app.post("/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(request: ChatRequest):
    """
    Process a chat message.

    This is the main endpoint for the chat UI.
    """
    agent = await _require_manager().get_or_create(request.conversation_id)

    try:
        result = await _run_with_retry(agent, request.message)
    except (BackendError, ConversationAbortedError) as e:
        logger.error("Chat processing failed", conversation_id=agent.id, error=str(e))
        raise HTTPException(
            status_code=_error_status(e),
            detail=f"Failed to process message: {e}"
        )

    return ChatResponse(
        conversation_id=agent.id,
        response=result.text,
        tools_used=result.tools_used,
        rounds=result.rounds,
        incomplete=result.bound_exceeded,
        vitals=_record_vitals(agent, result)
    )


@app.post("/chat/stream", tags=["Chat"])
async def chat_stream(request: ChatRequest):
    """
    Process a chat message, streaming NDJSON events.

    Emits one ``progress`` event per tool before it runs, then a single
    ``final`` or ``error`` event.
    """
    agent = await _require_manager().get_or_create(request.conversation_id)
    queue: asyncio.Queue = asyncio.Queue()

    async def on_progress(event: ToolProgress) -> None:
        await queue.put({"type": "progress", **event.model_dump(mode="json")})

    async def produce() -> None:
        try:
            result = await _run_with_retry(agent, request.message, on_progress=on_progress)
            vitals = _record_vitals(agent, result)
            await queue.put({
                "type": "final",
                "conversation_id": agent.id,
                "response": result.text,
                "tools_used": result.tools_used,
                "incomplete": result.bound_exceeded,
                "vitals": vitals.model_dump(mode="json") if vitals else None,
            })
        except (BackendError, ConversationAbortedError) as e:
            logger.error("Streaming chat failed", conversation_id=agent.id, error=str(e))
            await queue.put({
                "type": "error",
                "conversation_id": agent.id,
                "error": str(e),
                "kind": type(e).__name__,
            })
        finally:
            await queue.put(None)

    async def event_stream() -> AsyncIterator[str]:
        task = asyncio.create_task(produce())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield json.dumps(item) + "\n"
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")


@app.get("/conversations", tags=["Conversations"])
async def list_conversations():
    """List active conversations."""
    return {"conversations": _require_manager().list_conversations()}


@app.get("/conversations/{conversation_id}", tags=["Conversations"])
async def get_conversation(conversation_id: str):
    """Get conversation history."""
    agent = await _get_agent(conversation_id)

    messages: list[dict[str, Any]] = [
        m.model_dump(mode="json") for m in agent.history
    ]
    return {"conversation_id": conversation_id, "messages": messages}


@app.get("/conversations/{conversation_id}/vitals", tags=["Conversations"])
async def get_conversation_vitals(conversation_id: str):
    """Get the newest vitals reading taken in this conversation."""
    agent = await _get_agent(conversation_id)
    vitals = agent.metadata.get("vitals")

    return {
        "conversation_id": conversation_id,
        "vitals": vitals.model_dump(mode="json") if vitals else None
    }


@app.post("/conversations/{conversation_id}/cancel", tags=["Conversations"])
async def cancel_conversation(conversation_id: str):
    """Abort the conversation's in-flight submission."""
    agent = await _get_agent(conversation_id)
    return {"cancelled": agent.cancel()}


@app.delete("/conversations/{conversation_id}", tags=["Conversations"])
async def delete_conversation(conversation_id: str):
    """Delete a conversation."""
    deleted = await _require_manager().delete(conversation_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    return {"status": "deleted"}


def main():
    """Run the Orchestrator server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
