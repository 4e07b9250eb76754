"""Exception hierarchy for imagerag."""


class ImageRagError(Exception):
    """Base class for all imagerag errors."""


class EmbeddingError(ImageRagError):
    """Raised when a batch of texts could not be embedded."""


class EmbeddingServiceUnavailable(EmbeddingError):
    """The embedding service did not answer the liveness probe."""

    def __init__(self, base_path: str):
        self.base_path = base_path
        super().__init__(f"Ollama service could not be reached at {base_path}.")


class EmbeddingRequestError(EmbeddingError):
    """The embedding service answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"Embedding request failed with status {status_code}: {body}"
        )


class EmbeddingResponseError(EmbeddingError):
    """The embedding service answered without a usable vector."""


class VectorStoreError(ImageRagError):
    """Raised when the image vector store cannot be updated."""


class StoreLockTimeout(VectorStoreError):
    """The store lock could not be acquired in time."""


class OperationCancelled(ImageRagError):
    """A long-running operation observed its cancellation signal."""
