"""Client for the OpenAI-compatible LLM gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from openai import OpenAI, OpenAIError

from .config import config
from .exceptions import UpstreamUnavailableError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from openai import Stream
    from openai.types.chat import ChatCompletion, ChatCompletionChunk

logger = config.get_logger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_PROMPT = (
    "Generate a very short, descriptive title (3-6 words) for this conversation. "
    "The title should capture the main topic or question. Respond with ONLY the "
    "title, no quotes, no punctuation at the end."
)


class ContentStream:
    """Iterable of content deltas from one streamed completion.

    The upstream request has already been made when the object exists.
    Iteration yields non-empty content strings in arrival order; ``close()``
    releases the upstream connection and may be called any number of times.
    """

    def __init__(self, stream: Stream[ChatCompletionChunk]) -> None:
        self._stream = stream
        self.closed = False

    def __iter__(self) -> Iterator[str]:
        try:
            for chunk in self._stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except (OpenAIError, httpx.HTTPError) as exc:
            msg = f"Upstream stream failed: {exc}"
            raise UpstreamUnavailableError(msg) from exc
        finally:
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._stream.close()
        except (OpenAIError, httpx.HTTPError, OSError):
            logger.debug("Error while closing upstream stream", exc_info=True)


class ChatGateway:
    """Chat completions, titles and transcription through one gateway."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: OpenAI | None = None,
    ) -> None:
        """Initialize ChatGateway.

        Args:
            api_key: Gateway API key. If None, uses config.get_llm_api_key().
            base_url: Gateway base URL. If None, uses config.LLM_BASE_URL.
            client: Preconfigured OpenAI client, mainly for tests.
        """
        if client is None:
            default_headers = config.get_api_headers()
            client = OpenAI(
                api_key=api_key or config.get_llm_api_key(),
                base_url=base_url or config.LLM_BASE_URL,
                default_headers=default_headers or None,
            )
        self.client = client

    def complete(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None = None,
    ) -> ChatCompletion:
        """Request a non-streaming completion.

        Returns:
            The full completion, possibly carrying tool calls.

        Raises:
            UpstreamUnavailableError: If the gateway call fails.
        """
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        try:
            return self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=config.CHAT_TEMPERATURE,
                max_tokens=config.CHAT_MAX_TOKENS,
                **kwargs,
            )
        except OpenAIError as exc:
            msg = f"Completion request failed: {exc}"
            raise UpstreamUnavailableError(msg) from exc

    def open_stream(self, messages: list[dict[str, Any]], model: str) -> ContentStream:
        """Open a streamed completion.

        Returns:
            ContentStream over the content deltas.

        Raises:
            UpstreamUnavailableError: If the stream cannot be opened.
        """
        try:
            stream = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=config.CHAT_TEMPERATURE,
                max_tokens=config.CHAT_MAX_TOKENS,
                stream=True,
            )
        except OpenAIError as exc:
            msg = f"Streaming request failed: {exc}"
            raise UpstreamUnavailableError(msg) from exc
        return ContentStream(stream)

    def generate_title(self, messages: list[dict[str, Any]]) -> str:
        """Summarize the start of a conversation into a short title.

        Returns:
            A 3-6 word title, or "New Chat" when the model returns nothing.
        """
        summary = "\n".join(
            f"{message.get('role', '')}: {str(message.get('content') or '')[:200]}"
            for message in messages[:4]
        )
        try:
            response = self.client.chat.completions.create(
                model=config.TITLE_MODEL,
                messages=[
                    {"role": "system", "content": TITLE_PROMPT},
                    {"role": "user", "content": summary},
                ],
                temperature=config.CHAT_TEMPERATURE,
                max_tokens=config.TITLE_MAX_TOKENS,
            )
        except OpenAIError as exc:
            msg = f"Title generation failed: {exc}"
            raise UpstreamUnavailableError(msg) from exc

        title = response.choices[0].message.content if response.choices else None
        title = title.strip() if title else ""
        logger.info("Generated conversation title: %s", title or DEFAULT_TITLE)
        return title or DEFAULT_TITLE

    def transcribe(self, audio: bytes, filename: str = "audio.webm") -> str:
        """Transcribe an audio clip.

        Returns:
            The transcript text.

        Raises:
            UpstreamUnavailableError: If the speech service fails.
        """
        try:
            transcription = self.client.audio.transcriptions.create(
                model=config.TRANSCRIBE_MODEL,
                file=(filename, audio),
            )
        except OpenAIError as exc:
            logger.exception("Transcription error")
            msg = f"Transcription failed: {exc}"
            raise UpstreamUnavailableError(msg) from exc

        logger.info("Transcribed %s (%d bytes)", filename, len(audio))
        return transcription.text
