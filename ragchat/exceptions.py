"""Exception hierarchy shared across the chat core."""


class RagChatError(Exception):
    """Base class for all RagChat errors."""


class UpstreamUnavailableError(RagChatError, RuntimeError):
    """A remote collaborator (gateway, embeddings, search, store) failed."""


class ShapeMismatchError(RagChatError, ValueError):
    """Data crossing a boundary did not have the expected shape."""


class DimensionMismatchError(ShapeMismatchError):
    """Two vectors compared for similarity have different lengths."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Vectors must have the same length: {left} vs {right}")
