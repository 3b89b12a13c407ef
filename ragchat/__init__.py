"""RagChat - retrieval-augmented, tool-calling chat backend."""

from .document_processing import DocumentLoader, TextChunker
from .embeddings import EmbeddingService
from .gateway import ChatGateway
from .history import ChatHistory
from .mcp_bridge import BridgeState, McpBridge
from .models import DocumentChunk, ToolCall, ToolDefinition, ToolResult
from .orchestrator import CompletionOrchestrator, TurnRequest, sse_frames
from .pipeline import DocumentPipeline
from .record_store import RecordStore
from .search import WebSearchClient
from .tools import ToolCatalogCache, ToolExecutor, ToolRegistry

__all__ = [
    "BridgeState",
    "ChatGateway",
    "ChatHistory",
    "CompletionOrchestrator",
    "DocumentChunk",
    "DocumentLoader",
    "DocumentPipeline",
    "EmbeddingService",
    "McpBridge",
    "RecordStore",
    "TextChunker",
    "ToolCall",
    "ToolCatalogCache",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "TurnRequest",
    "WebSearchClient",
    "sse_frames",
]
