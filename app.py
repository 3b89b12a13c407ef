"""Web interface using FastAPI."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Literal

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import iterate_in_threadpool

from ragchat import ChatHistory, DocumentChunk, TurnRequest, sse_frames
from ragchat.config import config
from ragchat.exceptions import RagChatError, UpstreamUnavailableError
from ragchat.models import ASSISTANT_ROLE
from ragchat.services import Services, build_services

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from ragchat.orchestrator import PreparedTurn

config.setup_logging()
logger = config.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.services = build_services()
    logger.info("RagChat services ready (environment: %s)", config.ENVIRONMENT)
    try:
        yield
    finally:
        app.state.services.close()


app = FastAPI(title="RagChat", lifespan=lifespan)


def get_services(request: Request) -> Services:
    return request.app.state.services


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatMessage(CamelModel):
    role: Literal["user", "assistant", "system", "tool"]
    content: str = ""
    tool_call_id: str | None = Field(default=None, alias="toolCallId")

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        return message


class ChunkMetadata(CamelModel):
    filename: str = ""
    chunk_index: int = Field(default=0, alias="chunkIndex")
    total_chunks: int = Field(default=0, alias="totalChunks")


class ChunkPayload(BaseModel):
    id: str
    content: str
    embedding: list[float] | None = None
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)

    def to_chunk(self) -> DocumentChunk:
        return DocumentChunk.from_payload(self.model_dump(by_alias=True))


class ChatRequest(CamelModel):
    messages: list[ChatMessage]
    model: str
    document_chunks: list[ChunkPayload] = Field(default_factory=list, alias="documentChunks")
    mcp_enabled: bool = Field(default=True, alias="mcpEnabled")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    conversation_id: int | None = Field(default=None, alias="conversationId")


class EmbeddingsRequest(BaseModel):
    texts: list[str]


class SearchRequest(BaseModel):
    query: str


class TitleRequest(BaseModel):
    messages: list[ChatMessage]


class ToolCallRequest(CamelModel):
    tool_name: str = Field(alias="toolName")
    arguments: dict[str, Any] = Field(default_factory=dict)


class ConversationCreate(CamelModel):
    user_id: int = Field(alias="userId")
    title: str = "New Chat"
    model: str | None = None
    prompt: str | None = None


class ConversationUpdate(CamelModel):
    title: str | None = None
    is_archived: bool | None = Field(default=None, alias="isArchived")


class MessageCreate(CamelModel):
    conversation_id: int = Field(alias="conversationId")
    role: Literal["user", "assistant", "system"]
    content: str
    model: str | None = None
    metadata: dict[str, Any] | None = None


async def relay_frames(prepared: PreparedTurn) -> AsyncIterator[str]:
    """Relay a prepared turn's SSE frames without blocking the event loop."""
    try:
        async for frame in iterate_in_threadpool(sse_frames(prepared.events())):
            yield frame
    finally:
        prepared.close()


def answer_recorder(
    body: ChatRequest, history: ChatHistory | None
) -> Callable[[str], None] | None:
    """Build the callback that stores a finished answer, if persistence is on."""
    if body.conversation_id is None or history is None:
        return None
    conversation_id = body.conversation_id

    def record(answer: str) -> None:
        history.add_message(conversation_id, ASSISTANT_ROLE, answer, model=body.model)

    return record


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "mcp": config.mcp_enabled(),
        "persistence": config.persistence_enabled(),
    }


@app.post("/api/chat")
def chat(body: ChatRequest, services: Services = Depends(get_services)) -> StreamingResponse:  # noqa: B008
    if not body.messages:
        raise HTTPException(status_code=400, detail="No messages provided")
    if not body.model.strip():
        raise HTTPException(status_code=400, detail="Model is required")

    logger.info(
        "Chat request for %s with %d messages and %d document chunks",
        body.model,
        len(body.messages),
        len(body.document_chunks),
    )
    request = TurnRequest(
        messages=[message.to_message() for message in body.messages],
        model=body.model,
        document_chunks=[chunk.to_chunk() for chunk in body.document_chunks],
        tooling_enabled=body.mcp_enabled,
        system_prompt=body.system_prompt,
    )

    try:
        prepared = services.orchestrator.prepare_turn(
            request, on_complete=answer_recorder(body, services.history)
        )
    except UpstreamUnavailableError as exc:
        logger.exception("Chat API error")
        raise HTTPException(status_code=502, detail="Failed to process chat request") from exc

    return StreamingResponse(
        relay_frames(prepared),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/api/upload")
def upload(
    file: UploadFile = File(...),  # noqa: B008
    embed: bool = Form(True),  # noqa: FBT001, FBT003
    services: Services = Depends(get_services),  # noqa: B008
) -> dict[str, Any]:
    data = file.file.read()
    filename = file.filename or "upload"
    try:
        document = services.pipeline.process_upload(
            data, filename, file.content_type, embed=embed
        )
    except RagChatError as exc:
        logger.exception("Upload embedding failed for %s", filename)
        raise HTTPException(status_code=502, detail="Failed to embed document") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "content": document.text,
        "filename": document.filename,
        "size": document.size,
        "type": document.content_type,
        "chunks": [chunk.to_payload() for chunk in document.chunks],
    }


@app.post("/api/embeddings")
def embeddings(
    body: EmbeddingsRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict[str, Any]:
    if not body.texts:
        raise HTTPException(status_code=400, detail="No texts provided")
    try:
        vectors = services.embedding_service.embed(body.texts)
    except RagChatError as exc:
        logger.exception("Embeddings API error")
        raise HTTPException(status_code=502, detail="Failed to create embeddings") from exc

    return {
        "embeddings": [vector.tolist() for vector in vectors],
        "model": services.embedding_service.model,
        "dimensions": len(vectors[0]) if vectors else 0,
    }


@app.post("/api/search")
def search(body: SearchRequest, services: Services = Depends(get_services)) -> dict[str, str]:  # noqa: B008
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")
    return {"results": services.executor.search_internet(body.query)}


@app.post("/api/transcribe")
def transcribe(
    audio: UploadFile = File(...),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> dict[str, str]:
    data = audio.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No audio file provided")
    try:
        text = services.gateway.transcribe(data, audio.filename or "audio.webm")
    except UpstreamUnavailableError as exc:
        raise HTTPException(status_code=502, detail="Transcription failed") from exc
    return {"text": text}


@app.post("/api/generate-title")
def generate_title(
    body: TitleRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict[str, str]:
    if not body.messages:
        raise HTTPException(status_code=400, detail="No messages provided")
    try:
        title = services.gateway.generate_title(
            [message.to_message() for message in body.messages]
        )
    except UpstreamUnavailableError as exc:
        logger.exception("Title generation error")
        raise HTTPException(status_code=502, detail="Failed to generate title") from exc
    return {"title": title}


@app.get("/api/mcp")
def list_mcp_tools(
    refresh: bool = False,  # noqa: FBT001, FBT002
    services: Services = Depends(get_services),  # noqa: B008
) -> dict[str, Any]:
    catalog = services.catalog
    if catalog is None:
        return {"success": True, "tools": [], "cached": False, "lastUpdated": None}

    if refresh:
        cached = False
        try:
            tools = catalog.refresh(force=True)
        except RagChatError:
            logger.exception("Failed to get MCP tools")
            tools, _ = catalog.peek()
    else:
        tools, cached = catalog.peek()
        if not cached:
            tools = catalog.get()

    last_updated = catalog.last_updated
    return {
        "success": True,
        "tools": [
            {"name": tool.name, "description": tool.description, "parameters": tool.parameters}
            for tool in tools
        ],
        "cached": cached,
        "lastUpdated": int(last_updated * 1000) if last_updated else None,
    }


@app.post("/api/mcp")
def call_mcp_tool(
    body: ToolCallRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict[str, Any]:
    if not body.tool_name.strip():
        raise HTTPException(status_code=400, detail="Tool name is required")
    if services.bridge is None:
        raise HTTPException(status_code=503, detail="External tools are not configured")

    name = services.registry.external_name(body.tool_name)
    result = services.bridge.call_tool(name, body.arguments)
    return {"success": not result.is_error, "result": result.to_payload()}


@app.delete("/api/mcp")
def clear_mcp_tools(services: Services = Depends(get_services)) -> dict[str, Any]:  # noqa: B008
    if services.catalog is not None:
        services.catalog.clear()
    return {"success": True, "message": "MCP tool cache cleared"}


def require_history(services: Services = Depends(get_services)) -> ChatHistory:  # noqa: B008
    if services.history is None:
        raise HTTPException(status_code=503, detail="Chat history is not configured")
    return services.history


def history_call(action: str, func: Callable[..., Any], *args: Any) -> Any:
    """Run a record store operation, reporting store failures as 502."""
    try:
        return func(*args)
    except UpstreamUnavailableError as exc:
        raise HTTPException(status_code=502, detail=f"Failed to {action}") from exc


@app.get("/api/conversations")
def list_conversations(
    user_id: int = Query(alias="userId"),
    history: ChatHistory = Depends(require_history),  # noqa: B008
) -> dict[str, Any]:
    conversations = history_call(
        "fetch conversations", history.list_conversations, user_id
    )
    return {"conversations": conversations}


@app.post("/api/conversations")
def create_conversation(
    body: ConversationCreate,
    history: ChatHistory = Depends(require_history),  # noqa: B008
) -> dict[str, Any]:
    conversation = history_call(
        "create conversation",
        history.create_conversation,
        body.user_id,
        body.title,
        body.model,
        body.prompt,
    )
    return {"conversation": conversation}


@app.get("/api/conversations/{conversation_id}/messages")
def get_messages(
    conversation_id: int,
    history: ChatHistory = Depends(require_history),  # noqa: B008
) -> dict[str, Any]:
    messages = history_call("fetch messages", history.get_messages, conversation_id)
    return {"messages": messages}


@app.patch("/api/conversations/{conversation_id}")
def update_conversation(
    conversation_id: int,
    body: ConversationUpdate,
    history: ChatHistory = Depends(require_history),  # noqa: B008
) -> dict[str, Any]:
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Nothing to update")
    conversation = history_call(
        "update conversation", history.update_conversation, conversation_id, fields
    )
    return {"conversation": conversation}


@app.delete("/api/conversations/{conversation_id}")
def delete_conversation(
    conversation_id: int,
    history: ChatHistory = Depends(require_history),  # noqa: B008
) -> dict[str, Any]:
    history_call("delete conversation", history.delete_conversation, conversation_id)
    return {"success": True}


@app.post("/api/messages")
def add_message(
    body: MessageCreate,
    history: ChatHistory = Depends(require_history),  # noqa: B008
) -> dict[str, Any]:
    message = history_call(
        "create message",
        history.add_message,
        body.conversation_id,
        body.role,
        body.content,
        body.model,
        body.metadata,
    )
    return {"message": message}
