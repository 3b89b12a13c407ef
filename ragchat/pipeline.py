"""Document pipeline: Load -> Split -> Embed, and query -> Rank."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config
from .document_processing import DocumentLoader, TextChunker
from .models import DocumentChunk, UploadedDocument
from .retrieval import rank_chunks

if TYPE_CHECKING:
    from .embeddings import EmbeddingService

logger = config.get_logger(__name__)


class DocumentPipeline:
    """Turns uploads into embedded chunks and answers similarity queries.

    The pipeline keeps no chunks of its own: the browser session owns the
    chunk set and sends it back with each turn.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        chunk_size: int | None = None,
        overlap: int | None = None,
        top_k: int | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            embedding_service: Service used for chunk and query vectors.
            chunk_size: Target chunk size. If None, uses config.CHUNK_SIZE.
            overlap: Overlap hint. If None, uses config.CHUNK_OVERLAP.
            top_k: Default number of chunks returned by query. If None, uses
                config.SEARCH_TOP_K.
        """
        if chunk_size is None:
            chunk_size = config.CHUNK_SIZE
        if overlap is None:
            overlap = config.CHUNK_OVERLAP

        self.chunker = TextChunker(chunk_size=chunk_size, overlap=overlap)
        self.embedding_service = embedding_service
        self.top_k = top_k if top_k is not None else config.SEARCH_TOP_K

    def embed_chunks(self, chunks: list[DocumentChunk]) -> list[DocumentChunk]:
        """Attach embeddings to chunks in place.

        Returns:
            The same chunks, now carrying embeddings.
        """
        if not chunks:
            return chunks
        embeddings = self.embedding_service.embed([chunk.content for chunk in chunks])
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            chunk.embedding = embedding
        return chunks

    def process_upload(
        self,
        data: bytes,
        filename: str,
        content_type: str | None,
        *,
        embed: bool = True,
    ) -> UploadedDocument:
        """Process an uploaded file through the document pipeline.

        Returns:
            The extracted text together with a fresh chunk set.
        """
        logger.info("Processing upload %s (%d bytes)", filename, len(data))

        text = DocumentLoader.load_bytes(data, filename, content_type)
        chunks = self.chunker.chunk_text(text, filename=filename)
        if embed:
            self.embed_chunks(chunks)

        return UploadedDocument(
            filename=filename,
            content_type=content_type or "",
            size=len(data),
            text=text,
            chunks=chunks,
        )

    def query(
        self, question: str, chunks: list[DocumentChunk], top_k: int | None = None
    ) -> list[DocumentChunk]:
        """Find the chunks most relevant to a question.

        Returns:
            Up to top_k chunks ordered by descending similarity.
        """
        logger.info("Searching %d chunks for: %s", len(chunks), question)
        query_embedding = self.embedding_service.embed_query(question)
        if top_k is None:
            top_k = self.top_k
        return rank_chunks(query_embedding, chunks, top_k=top_k)
