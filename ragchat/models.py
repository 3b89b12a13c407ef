"""Data models for the chat core."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import numpy as np

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
TOOL_ROLE = "tool"
ROLES = (USER_ROLE, ASSISTANT_ROLE, SYSTEM_ROLE, TOOL_ROLE)


@dataclass
class DocumentChunk:
    """Represents a chunk of text from an uploaded document."""

    id: str
    content: str
    metadata: dict[str, Any]
    embedding: np.ndarray | None = None

    @property
    def filename(self) -> str:
        return self.metadata["filename"]

    @property
    def chunk_index(self) -> int:
        return self.metadata["chunk_index"]

    @property
    def total_chunks(self) -> int:
        return self.metadata["total_chunks"]

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON shape exchanged with the browser client.

        Returns:
            Dictionary with camelCase metadata keys and a list embedding.
        """
        return {
            "id": self.id,
            "content": self.content,
            "embedding": (
                self.embedding.tolist() if self.embedding is not None else None
            ),
            "metadata": {
                "filename": self.filename,
                "chunkIndex": self.chunk_index,
                "totalChunks": self.total_chunks,
            },
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DocumentChunk:
        """Build a chunk from the browser client's JSON shape.

        Returns:
            DocumentChunk with a numpy embedding when one was supplied.
        """
        metadata = payload.get("metadata") or {}
        embedding = payload.get("embedding")
        return cls(
            id=str(payload["id"]),
            content=str(payload["content"]),
            metadata={
                "filename": metadata.get("filename", ""),
                "chunk_index": int(metadata.get("chunkIndex", 0)),
                "total_chunks": int(metadata.get("totalChunks", 0)),
            },
            embedding=(
                np.asarray(embedding, dtype=float) if embedding is not None else None
            ),
        )


@dataclass
class UploadedDocument:
    """Text extracted from an upload together with its chunk set."""

    filename: str
    content_type: str
    size: int
    text: str
    chunks: list[DocumentChunk]


@dataclass(frozen=True)
class ToolDefinition:
    """A callable capability exposed to the model."""

    name: str
    description: str
    parameters: dict[str, Any]
    external: bool = False

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class ToolCall:
    """A single invocation request emitted by the model."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class ImageContent:
    data: str
    mime_type: str


@dataclass(frozen=True)
class ResourceContent:
    uri: str
    mime_type: str | None = None
    text: str | None = None


ContentPart = TextContent | ImageContent | ResourceContent


def content_part_from_dict(part: dict[str, Any]) -> ContentPart:
    """Parse one content part of an external tool result.

    Returns:
        The matching content variant. Unknown part types are kept as text.
    """
    part_type = part.get("type")
    if part_type == "text":
        return TextContent(text=str(part.get("text", "")))
    if part_type == "image":
        return ImageContent(
            data=str(part.get("data", "")),
            mime_type=str(part.get("mimeType", "application/octet-stream")),
        )
    if part_type == "resource":
        resource = part.get("resource") or part
        return ResourceContent(
            uri=str(resource.get("uri", "")),
            mime_type=resource.get("mimeType"),
            text=resource.get("text"),
        )
    return TextContent(text=json.dumps(part, ensure_ascii=False))


def flatten_content(parts: list[ContentPart]) -> str:
    """Flatten content parts into the single text blob sent back to the model.

    Returns:
        Newline-joined text with placeholders for non-text media.
    """
    rendered: list[str] = []
    for part in parts:
        match part:
            case TextContent(text=text):
                rendered.append(text)
            case ImageContent(mime_type=mime_type):
                rendered.append(f"[Image: {mime_type}]")
            case ResourceContent(uri=uri, mime_type=mime_type, text=text):
                label = f"[Resource: {uri} ({mime_type or 'unknown type'})]"
                rendered.append(f"{label}\n{text}" if text else label)
    return "\n".join(rendered)


@dataclass
class ToolResult:
    """Normalized output of a tool execution."""

    content: list[ContentPart] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str, *, is_error: bool = False) -> ToolResult:
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @property
    def text(self) -> str:
        return flatten_content(self.content)

    def to_payload(self) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        for part in self.content:
            match part:
                case TextContent(text=text):
                    parts.append({"type": "text", "text": text})
                case ImageContent(data=data, mime_type=mime_type):
                    parts.append({"type": "image", "data": data, "mimeType": mime_type})
                case ResourceContent(uri=uri, mime_type=mime_type, text=text):
                    parts.append(
                        {
                            "type": "resource",
                            "resource": {"uri": uri, "mimeType": mime_type, "text": text},
                        }
                    )
        return {"content": parts, "isError": self.is_error}
