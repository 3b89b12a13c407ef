"""Remote embeddings service."""

import numpy as np
from openai import OpenAI, OpenAIError

from .config import config
from .exceptions import ShapeMismatchError, UpstreamUnavailableError

logger = config.get_logger(__name__)


class EmbeddingService:
    """Turns texts into fixed-length vectors through an OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        batch_size: int | None = None,
    ) -> None:
        """Initialize the EmbeddingService with API key and model.

        Args:
            api_key: Embedding API key. If None, reads from the environment
                via config.get_embedding_api_key().
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            base_url: Optional API base URL. If None, uses
                config.EMBEDDING_BASE_URL.
            batch_size: Texts per request. If None, uses
                config.EMBEDDING_BATCH_SIZE.
        """
        api_key = api_key or config.get_embedding_api_key()
        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url or config.EMBEDDING_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE

    def _embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        try:
            response = self.client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as exc:
            logger.exception("Error generating embeddings")
            msg = f"Embedding service request failed: {exc}"
            raise UpstreamUnavailableError(msg) from exc

        if len(response.data) != len(texts):
            msg = (
                f"Embedding service returned {len(response.data)} vectors "
                f"for {len(texts)} texts"
            )
            raise ShapeMismatchError(msg)
        return [np.asarray(item.embedding, dtype=float) for item in response.data]

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        """Get one embedding per text, in input order.

        The call fails as a unit: no partial result is returned when any
        batch fails.

        Args:
            texts: Input texts to embed.

        Returns:
            list[np.ndarray]: Embedding vectors, one per input text.

        Raises:
            UpstreamUnavailableError: If the remote call fails.
            ShapeMismatchError: If the response does not match the input.
        """
        embeddings: list[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch_texts = texts[i : i + self.batch_size]
            embeddings.extend(self._embed_batch(batch_texts))
            logger.info("Generated embeddings for batch %d", i // self.batch_size + 1)

        dimensions = {len(vector) for vector in embeddings}
        if len(dimensions) > 1:
            msg = f"Embedding service returned mixed dimensions: {sorted(dimensions)}"
            raise ShapeMismatchError(msg)
        return embeddings

    def embed_query(self, text: str) -> np.ndarray:
        """Get the embedding for a single query text.

        Returns:
            np.ndarray: The embedding vector for the query.
        """
        return self.embed([text])[0]
