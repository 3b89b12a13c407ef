"""Shared fixtures for the RagChat test suite.

Fixtures are grouped by the collaborator they stand in for:
- Constants and OpenAI response builders
- Embedding service and chunker fixtures
- Sample chunk sets
- Gateway, tool and orchestrator doubles
- Bridge script helpers
"""

import hashlib
import json
import sys
import textwrap
from unittest.mock import Mock, create_autospec, patch

import httpx
import numpy as np
import pytest
from openai import APIConnectionError

from ragchat import (
    ChatGateway,
    CompletionOrchestrator,
    DocumentChunk,
    DocumentPipeline,
    EmbeddingService,
    TextChunker,
    ToolExecutor,
    ToolRegistry,
    WebSearchClient,
)
from ragchat.gateway import ContentStream
from ragchat.models import ToolResult
from ragchat.search import SearchResponse, SearchResult


class TestConstants:
    """Values shared by several test modules."""

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    DEFAULT_EMBEDDING_DIMENSION = 64

    # Chat models
    TOOL_MODEL = "meta-llama/Llama-3.3-70B-Instruct"
    PLAIN_MODEL = "mistralai/Magistral-Small-2506"

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 100
    SMALL_CHUNK_OVERLAP = 20
    DEFAULT_CHUNK_SIZE = 300
    DEFAULT_CHUNK_OVERLAP = 50

    # External tools
    TOOL_PREFIX = "mcp_"
    MCP_URL = "https://tools.example.test/mcp"


class MockEmbeddingService:
    """Offline stand-in for EmbeddingService.

    Vectors are unit-length and seeded from a hash of the lowercased text,
    so equal texts always embed identically.
    """

    model = TestConstants.TEST_OPENAI_MODEL

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension
        self.calls: list[list[str]] = []

    def embed_query(self, text: str) -> np.ndarray:
        digest = hashlib.sha256(text.lower().encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], byteorder="big"))
        vector = rng.normal(0, 1, self.dimension)
        return vector / np.linalg.norm(vector)

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        self.calls.append(list(texts))
        return [self.embed_query(text) for text in texts]


class FakeStream:
    """Stands in for an OpenAI ``Stream`` of chat completion chunks."""

    def __init__(self, deltas: list[str | None], error: Exception | None = None) -> None:
        self.deltas = deltas
        self.error = error
        self.closed = False
        self.close_calls = 0

    def __iter__(self):  # noqa: ANN204
        for delta in self.deltas:
            yield Mock(choices=[Mock(delta=Mock(content=delta))])
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


def connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://llm.example.test"))


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Build an embeddings API response carrying the given vectors."""
    return Mock(data=[Mock(embedding=vector) for vector in embeddings])


def create_mock_tool_call(
    name: str, arguments: dict | str | None = None, call_id: str = "call_1"
) -> Mock:
    """Create a mock tool call as found on a chat completion message."""
    if isinstance(arguments, dict):
        arguments = json.dumps(arguments)
    tool_call = Mock(id=call_id)
    tool_call.function = Mock(arguments=arguments)
    tool_call.function.name = name
    return tool_call


def create_mock_chat_response(
    content: str | None, tool_calls: list[Mock] | None = None
) -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: Message content of the single choice.
        tool_calls: Optional tool calls on the response message.

    Returns:
        Mock shaped like ``ChatCompletion``.
    """
    message = Mock(content=content, tool_calls=tool_calls)
    return Mock(choices=[Mock(message=message)])


def embedding_responses(scenario: str) -> list:
    """Side effects of the embeddings API for a named scenario, in call order."""
    match scenario:
        case "single_success":
            return [create_mock_openai_response([[0.1, 0.2, 0.3, 0.4, 0.5]])]
        case "batch_success":
            return [
                create_mock_openai_response(
                    [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6], [0.7, 0.8, 0.9]]
                )
            ]
        case "multiple_batches":
            return [
                create_mock_openai_response([[0.1, 0.2], [0.3, 0.4]]),
                create_mock_openai_response([[0.5, 0.6], [0.7, 0.8]]),
            ]
        case "partial_failure":
            return [
                create_mock_openai_response([[0.1, 0.2], [0.3, 0.4]]),
                connection_error(),
            ]
        case "error":
            return [connection_error()]
    msg = f"Unknown embeddings scenario: {scenario}"
    raise ValueError(msg)


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch ``Embeddings.create`` and hand back the unconfigured mock."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_embeddings_factory(openai_embeddings_api_mock):
    """Configure the patched embeddings API for one of the named scenarios."""

    def _configure(scenario: str = "single_success") -> Mock:
        openai_embeddings_api_mock.reset_mock(return_value=True, side_effect=True)
        openai_embeddings_api_mock.side_effect = embedding_responses(scenario)
        return openai_embeddings_api_mock

    return _configure


@pytest.fixture
def embedding_service_factory():
    """Build EmbeddingService instances; unset options fall back to config."""

    def _create_service(api_key=None, model=None, batch_size=None):  # noqa: ANN202
        return EmbeddingService(
            api_key=api_key or TestConstants.TEST_API_KEY,
            model=model,
            batch_size=batch_size,
        )

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    return embedding_service_factory(model=TestConstants.TEST_OPENAI_MODEL)


@pytest.fixture
def text_chunker_factory():
    """Build chunkers from a named preset, with optional size overrides."""
    presets = {
        "small": (TestConstants.SMALL_CHUNK_SIZE, TestConstants.SMALL_CHUNK_OVERLAP),
        "default": (TestConstants.DEFAULT_CHUNK_SIZE, TestConstants.DEFAULT_CHUNK_OVERLAP),
    }

    def _create_chunker(
        preset: str = "default",
        *,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> TextChunker:
        preset_size, preset_overlap = presets[preset]
        return TextChunker(
            chunk_size=preset_size if chunk_size is None else chunk_size,
            overlap=preset_overlap if overlap is None else overlap,
        )

    return _create_chunker


@pytest.fixture
def text_chunker_small(text_chunker_factory):
    """Chunker with 100-character chunks and a 20-character overlap hint."""
    return text_chunker_factory("small")


@pytest.fixture
def text_chunker_default(text_chunker_factory):
    return text_chunker_factory("default")


@pytest.fixture(scope="session")
def mock_embedding_service():
    return MockEmbeddingService()


@pytest.fixture
def document_pipeline():
    """DocumentPipeline backed by deterministic mock embeddings."""
    return DocumentPipeline(MockEmbeddingService(), chunk_size=100, overlap=20, top_k=5)


@pytest.fixture
def sample_text_chunks():
    """A five-chunk handbook without embeddings, as a browser session holds it."""
    texts = [
        "New employees receive a laptop on their first day.",
        "The office is open from eight in the morning until six.",
        "Expense reports are due on the last Friday of each month.",
        "Remote work requires approval from the team lead.",
        "Security badges must be worn at all times inside the building.",
    ]
    return [
        DocumentChunk(
            id=f"handbook.txt-chunk-{index}",
            content=text,
            metadata={
                "filename": "handbook.txt",
                "chunk_index": index,
                "total_chunks": len(texts),
            },
        )
        for index, text in enumerate(texts)
    ]


@pytest.fixture
def sample_embedded_chunks(sample_text_chunks, mock_embedding_service):
    """The sample handbook with mock embeddings attached."""
    return [
        DocumentChunk(
            id=chunk.id,
            content=chunk.content,
            metadata=chunk.metadata,
            embedding=mock_embedding_service.embed_query(chunk.content),
        )
        for chunk in sample_text_chunks
    ]


@pytest.fixture
def mock_search_client():
    """WebSearchClient double returning one answer and one result."""
    client = create_autospec(WebSearchClient, instance=True)
    client.search.return_value = SearchResponse(
        answer="Paris is the capital of France.",
        results=[
            SearchResult(
                title="Paris - Wikipedia",
                content="Paris is the capital and largest city of France.",
                url="https://en.wikipedia.org/wiki/Paris",
            )
        ],
    )
    return client


@pytest.fixture
def mock_gateway():
    """ChatGateway double; each open_stream call returns a fresh FakeStream."""
    gateway = create_autospec(ChatGateway, instance=True)
    gateway.streams = []

    def _open_stream(messages, model, deltas=("Hello", " world")):  # noqa: ANN202, ARG001
        stream = FakeStream(list(deltas))
        gateway.streams.append(stream)
        return ContentStream(stream)

    gateway.open_stream.side_effect = _open_stream
    gateway.complete.return_value = create_mock_chat_response("No tools needed")
    return gateway


@pytest.fixture
def tool_registry():
    """Registry with built-in tools only."""
    return ToolRegistry(
        catalog=None, prefix=TestConstants.TOOL_PREFIX, model_marker="Llama"
    )


@pytest.fixture
def mock_executor():
    executor = create_autospec(ToolExecutor, instance=True)
    executor.execute.return_value = ToolResult.from_text("Tool output")
    return executor


@pytest.fixture
def orchestrator_factory(mock_gateway, tool_registry, mock_executor):
    """Factory for CompletionOrchestrator with mock collaborators by default."""

    def _create_orchestrator(
        gateway=None, registry=None, executor=None
    ) -> CompletionOrchestrator:
        return CompletionOrchestrator(
            gateway or mock_gateway,
            registry or tool_registry,
            executor or mock_executor,
        )

    return _create_orchestrator


@pytest.fixture
def bridge_script(tmp_path):
    """Factory writing a throwaway Python program that plays the tool bridge.

    The returned command runs the script with the current interpreter; the
    bridge appends the server URL and optional header arguments.
    """

    def _write_script(body: str, name: str = "bridge.py") -> list[str]:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(path)]

    return _write_script
