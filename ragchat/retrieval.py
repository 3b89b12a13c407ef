"""Cosine-similarity ranking of document chunks and context assembly."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .config import config
from .exceptions import DimensionMismatchError

if TYPE_CHECKING:
    from .models import DocumentChunk

logger = config.get_logger(__name__)

NO_CONTEXT_FOUND = "No relevant context found in the uploaded documents."
CONTEXT_PREAMBLE = "Based on the uploaded documents, here is the relevant context:"
CHUNK_SEPARATOR = "\n\n---\n\n"


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns:
        Similarity in [-1, 1], or 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.size, b.size)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def score_chunks(
    query_vector: np.ndarray, chunks: list[DocumentChunk]
) -> list[tuple[DocumentChunk, float]]:
    """Score every embedded chunk against the query.

    Chunks without an embedding are skipped.

    Returns:
        (chunk, score) pairs sorted by descending score, ties kept in
        original chunk order.
    """
    scored = [
        (chunk, cosine_similarity(query_vector, chunk.embedding))
        for chunk in chunks
        if chunk.embedding is not None
    ]
    # sorted() is stable, so equal scores keep their input order.
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


def rank_chunks(
    query_vector: np.ndarray, chunks: list[DocumentChunk], top_k: int = 5
) -> list[DocumentChunk]:
    """Select the top-K chunks most similar to the query.

    Returns:
        At most ``top_k`` chunks ordered by descending similarity.
    """
    scored = score_chunks(query_vector, chunks)[:top_k]
    for chunk, score in scored:
        logger.debug("Ranked %s (score: %.4f)", chunk.id, score)
    return [chunk for chunk, _ in scored]


def build_context(chunks: list[DocumentChunk]) -> str:
    """Render selected chunks into one context block for the model.

    Returns:
        The context block, or a fixed sentinel when no chunk qualified.
    """
    if not chunks:
        return NO_CONTEXT_FOUND

    context = CHUNK_SEPARATOR.join(
        f"**Document: {chunk.filename} "
        f"(Chunk {chunk.chunk_index + 1}/{chunk.total_chunks})**\n{chunk.content}"
        for chunk in chunks
    )
    return f"{CONTEXT_PREAMBLE}\n\n{context}"
