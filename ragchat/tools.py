"""Tool catalog, external tool discovery cache and tool execution."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

from .config import config
from .exceptions import RagChatError
from .models import ToolDefinition, ToolResult
from .retrieval import build_context
from .search import format_search_results

if TYPE_CHECKING:
    from collections.abc import Callable

    from .mcp_bridge import McpBridge
    from .models import DocumentChunk
    from .pipeline import DocumentPipeline
    from .search import WebSearchClient

logger = config.get_logger(__name__)

UNKNOWN_FUNCTION = "Unknown function"
SEARCH_FAILED = "Search failed. Please try again."
NO_DOCUMENTS = (
    "No documents have been uploaded yet. "
    "Please upload some documents first to search through them."
)
DOCUMENT_SEARCH_FAILED = "Failed to search through documents. Please try again."
EXTERNAL_TOOLS_DISABLED = "External tools are not configured."
TOOL_FAILED = "The tool failed to run. Please try again."
EXTERNAL_DESCRIPTION_PREFIX = "[External tool] "

BUILTIN_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="search_internet",
        description=(
            "Search the internet for current information, news, or any topic "
            "that requires up-to-date data"
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to look up on the internet",
                }
            },
            "required": ["query"],
        },
    ),
    ToolDefinition(
        name="search_documents",
        description=(
            "Search through uploaded documents to find relevant information and "
            "answer questions based on the document content"
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "The question or search query to look up in the uploaded "
                        "documents"
                    ),
                }
            },
            "required": ["query"],
        },
    ),
)


def external_tool_definitions(
    raw_tools: list[dict[str, Any]], prefix: str | None = None
) -> list[ToolDefinition]:
    """Convert discovered tool descriptions into namespaced definitions.

    Returns:
        One ToolDefinition per raw tool, names prefixed and descriptions
        marked as external.
    """
    prefix = config.MCP_TOOL_PREFIX if prefix is None else prefix
    return [
        ToolDefinition(
            name=f"{prefix}{tool['name']}",
            description=EXTERNAL_DESCRIPTION_PREFIX + str(tool.get("description") or ""),
            parameters=tool.get("inputSchema") or {"type": "object", "properties": {}},
            external=True,
        )
        for tool in raw_tools
    ]


class ToolCatalogCache:
    """Process-wide cache of external tool definitions.

    Holds a ``(value, last_refreshed)`` pair behind a lock. Reads never
    block on discovery: a miss or an expired entry triggers a background
    refresh and the caller gets whatever is cached right now (an empty
    list on a cold start).
    """

    def __init__(
        self,
        loader: Callable[[], list[ToolDefinition]],
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.loader = loader
        self.ttl = config.MCP_CACHE_TTL if ttl is None else ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._value: list[ToolDefinition] | None = None
        self._last_refreshed: float | None = None
        self._updated_at: float | None = None
        self._refresh_thread: threading.Thread | None = None

    @property
    def last_updated(self) -> float | None:
        """Wall-clock time of the last successful refresh, in epoch seconds."""
        with self._lock:
            return self._updated_at

    def _is_fresh(self) -> bool:
        return (
            self._value is not None
            and self._last_refreshed is not None
            and self.clock() - self._last_refreshed < self.ttl
        )

    def peek(self) -> tuple[list[ToolDefinition], bool]:
        """Return the cached tools and whether they are fresh, without refreshing."""
        with self._lock:
            return list(self._value or []), self._is_fresh()

    def get(self) -> list[ToolDefinition]:
        """Return cached tools, scheduling a background refresh when stale.

        Returns:
            The cached tool definitions, possibly stale or empty.
        """
        with self._lock:
            if self._is_fresh():
                return list(self._value or [])
            value = list(self._value or [])

        self._start_background_refresh()
        return value

    def refresh(self, *, force: bool = False) -> list[ToolDefinition]:
        """Load the catalog synchronously.

        Args:
            force: Reload even if the cached value is still fresh.

        Returns:
            The refreshed tool definitions.
        """
        with self._lock:
            if not force and self._is_fresh():
                return list(self._value or [])

        tools = self.loader()
        with self._lock:
            self._value = list(tools)
            self._last_refreshed = self.clock()
            self._updated_at = time.time()
        logger.info("External tool catalog refreshed with %d tools", len(tools))
        return list(tools)

    def _refresh_quietly(self) -> None:
        try:
            self.refresh(force=True)
        except RagChatError:
            logger.exception("Background tool discovery failed")

    def _start_background_refresh(self) -> None:
        with self._lock:
            if self._refresh_thread is not None and self._refresh_thread.is_alive():
                return
            self._refresh_thread = threading.Thread(
                target=self._refresh_quietly, name="tool-catalog-refresh", daemon=True
            )
            self._refresh_thread.start()
        logger.info("Started background tool discovery")

    def wait_for_refresh(self, timeout: float | None = None) -> bool:
        """Block until a running background refresh has finished.

        Returns:
            True if no refresh is running when this returns.
        """
        thread = self._refresh_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._last_refreshed = None
            self._updated_at = None
        logger.info("External tool catalog cleared")


class ToolRegistry:
    """Decides which tools a turn may offer to the model."""

    def __init__(
        self,
        catalog: ToolCatalogCache | None = None,
        prefix: str | None = None,
        model_marker: str | None = None,
    ) -> None:
        self.catalog = catalog
        self.prefix = config.MCP_TOOL_PREFIX if prefix is None else prefix
        self.model_marker = (
            config.TOOL_MODEL_MARKER if model_marker is None else model_marker
        )

    def supports_tools(self, model: str) -> bool:
        return bool(self.model_marker) and self.model_marker in model

    def available_tools(self, model: str, tooling_enabled: bool) -> list[ToolDefinition]:
        """Build the tool catalog for one turn.

        Returns:
            Built-in tools followed by external tools, or an empty list when
            the model or the caller does not allow tool-calling.
        """
        if not tooling_enabled or not self.supports_tools(model):
            return []

        tools = list(BUILTIN_TOOLS)
        if self.catalog is not None:
            seen = {tool.name for tool in tools}
            for tool in self.catalog.get():
                if tool.name in seen:
                    logger.warning("Skipping duplicate tool name %s", tool.name)
                    continue
                seen.add(tool.name)
                tools.append(tool)
        return tools

    def is_external(self, name: str) -> bool:
        return bool(self.prefix) and name.startswith(self.prefix)

    def external_name(self, name: str) -> str:
        """Strip the namespace prefix from an external tool name."""
        return name[len(self.prefix) :] if self.is_external(name) else name


class ToolExecutor:
    """Runs one tool call and normalizes its result.

    ``execute`` never raises: failures become fixed sentences or error
    results, because the outcome is fed back to the model as conversation
    content.
    """

    def __init__(
        self,
        search_client: WebSearchClient,
        pipeline: DocumentPipeline,
        registry: ToolRegistry,
        bridge: McpBridge | None = None,
    ) -> None:
        self.search_client = search_client
        self.pipeline = pipeline
        self.registry = registry
        self.bridge = bridge

    def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        document_chunks: list[DocumentChunk] | None = None,
    ) -> ToolResult:
        """Dispatch a tool call by name.

        Args:
            name: Tool name as emitted by the model.
            arguments: Decoded tool arguments.
            document_chunks: Chunks of the caller's session, for document search.

        Returns:
            ToolResult with the tool's output.
        """
        started = time.monotonic()
        try:
            result = self._dispatch(name, arguments, document_chunks or [])
        except Exception:
            logger.exception("Tool %s raised", name)
            result = ToolResult.from_text(TOOL_FAILED, is_error=True)

        logger.info(
            "Tool %s finished in %.2fs (error: %s)",
            name,
            time.monotonic() - started,
            result.is_error,
        )
        return result

    def _dispatch(
        self, name: str, arguments: dict[str, Any], document_chunks: list[DocumentChunk]
    ) -> ToolResult:
        if self.registry.is_external(name):
            return self._execute_external(self.registry.external_name(name), arguments)
        if name == "search_internet":
            return ToolResult.from_text(self.search_internet(str(arguments.get("query", ""))))
        if name == "search_documents":
            return ToolResult.from_text(
                self.search_documents(str(arguments.get("query", "")), document_chunks)
            )
        logger.warning("Model requested unknown tool %s", name)
        return ToolResult.from_text(UNKNOWN_FUNCTION)

    def search_internet(self, query: str) -> str:
        try:
            response = self.search_client.search(query)
        except RagChatError:
            logger.exception("Search error")
            return SEARCH_FAILED
        return format_search_results(response)

    def search_documents(self, query: str, document_chunks: list[DocumentChunk]) -> str:
        if not document_chunks:
            return NO_DOCUMENTS

        logger.info("Document search over %d chunks", len(document_chunks))
        try:
            ranked = self.pipeline.query(query, document_chunks)
        except RagChatError:
            logger.exception("Document search error")
            return DOCUMENT_SEARCH_FAILED
        return build_context(ranked)

    def _execute_external(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        if self.bridge is None:
            return ToolResult.from_text(EXTERNAL_TOOLS_DISABLED, is_error=True)
        return self.bridge.call_tool(name, arguments)
