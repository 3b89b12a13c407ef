"""Composition root: builds and owns the long-lived service objects."""

from __future__ import annotations

from dataclasses import dataclass

from .config import config
from .embeddings import EmbeddingService
from .gateway import ChatGateway
from .history import ChatHistory
from .mcp_bridge import McpBridge
from .orchestrator import CompletionOrchestrator
from .pipeline import DocumentPipeline
from .record_store import RecordStore
from .search import WebSearchClient
from .tools import ToolCatalogCache, ToolExecutor, ToolRegistry, external_tool_definitions

logger = config.get_logger(__name__)


@dataclass
class Services:
    """Everything the web layer talks to.

    ``bridge``, ``catalog`` and ``history`` are None when the matching
    collaborator is not configured.
    """

    gateway: ChatGateway
    embedding_service: EmbeddingService
    pipeline: DocumentPipeline
    search_client: WebSearchClient
    registry: ToolRegistry
    executor: ToolExecutor
    orchestrator: CompletionOrchestrator
    bridge: McpBridge | None = None
    catalog: ToolCatalogCache | None = None
    history: ChatHistory | None = None

    def close(self) -> None:
        self.search_client.close()
        if self.history is not None:
            self.history.store.close()


def build_services() -> Services:
    """Wire the services from configuration.

    Returns:
        A fully wired Services instance.
    """
    gateway = ChatGateway()
    embedding_service = EmbeddingService()
    pipeline = DocumentPipeline(embedding_service)
    search_client = WebSearchClient()

    bridge: McpBridge | None = None
    catalog: ToolCatalogCache | None = None
    if config.mcp_enabled():
        bridge = McpBridge()
        catalog = ToolCatalogCache(
            loader=lambda: external_tool_definitions(bridge.list_tools())
        )
        logger.info("External tools enabled via %s", config.MCP_SERVER_URL)

    registry = ToolRegistry(catalog=catalog)
    executor = ToolExecutor(search_client, pipeline, registry, bridge=bridge)
    orchestrator = CompletionOrchestrator(gateway, registry, executor)

    history = ChatHistory(RecordStore()) if config.persistence_enabled() else None
    if history is None:
        logger.info("Chat history persistence disabled")

    return Services(
        gateway=gateway,
        embedding_service=embedding_service,
        pipeline=pipeline,
        search_client=search_client,
        registry=registry,
        executor=executor,
        orchestrator=orchestrator,
        bridge=bridge,
        catalog=catalog,
        history=history,
    )
