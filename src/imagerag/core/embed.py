"""Ollama embedding client: liveness probe, sanitized prompts, all-or-nothing batches."""

import logging
import threading
from typing import Dict, List, Optional, Sequence

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import ImageRagConfig, get_config
from .exceptions import (
    EmbeddingError,
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingServiceUnavailable,
    OperationCancelled,
)

logger = logging.getLogger(__name__)

EMPTY_PLACEHOLDER = "Empty description"


def sanitize_texts(texts: Sequence[str]) -> List[str]:
    """Replace empty or whitespace-only prompts with a fixed placeholder."""
    return [
        text if isinstance(text, str) and text.strip() else EMPTY_PLACEHOLDER
        for text in texts
    ]


class OllamaEmbedder:
    """
    Embed text through an Ollama-compatible ``/api/embeddings`` endpoint.

    Construct one instance at startup and hand it to the pipeline and the
    retriever. Requests are sent one text at a time, in order; any failure
    aborts the whole batch.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        base_path: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        client: Optional[httpx.Client] = None,
    ):
        self.model = model or get_config().embed_model
        self.base_path = (base_path or get_config().embed_base_path).rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.headers: Dict[str, str] = {"Content-Type": "application/json"}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(
        cls,
        config: Optional[ImageRagConfig] = None,
        client: Optional[httpx.Client] = None
    ) -> "OllamaEmbedder":
        config = config or get_config()
        return cls(
            model=config.embed_model,
            base_path=config.embed_base_path,
            auth_token=config.embed_auth_token,
            timeout=config.embed_timeout,
            retry_attempts=config.embed_retry_attempts,
            client=client,
        )

    @property
    def embeddings_url(self) -> str:
        return f"{self.base_path}/api/embeddings"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "OllamaEmbedder":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def is_alive(self) -> bool:
        """Plain GET against the base address; True when the response is OK."""
        try:
            response = self._client.get(self.base_path, timeout=self.timeout)
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Failed to reach Ollama at {self.base_path}: {e}")
            return False

    def _post_embedding(self, text: str) -> List[float]:
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                response = self._client.post(
                    self.embeddings_url,
                    json={"model": self.model, "prompt": text},
                    headers=self.headers,
                    timeout=self.timeout,
                )

        if not response.is_success:
            raise EmbeddingRequestError(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise EmbeddingResponseError(
                f"Embedding response was not valid JSON: {e}"
            ) from e

        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(embedding, list):
            raise EmbeddingResponseError("Embedding response missing embedding vector")
        return [float(value) for value in embedding]

    def embed_batch(
        self,
        texts: Sequence[str],
        cancel_event: Optional[threading.Event] = None
    ) -> List[List[float]]:
        """
        Embed every text, preserving order.

        Args:
            texts: Prompts to embed; blank entries are replaced by a placeholder
            cancel_event: Optional signal checked before each request

        Returns:
            One vector per input text
        """
        if not texts:
            return []

        if not self.is_alive():
            raise EmbeddingServiceUnavailable(self.base_path)

        embeddings = []
        for text in sanitize_texts(texts):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("Embedding batch cancelled")
            try:
                embeddings.append(self._post_embedding(text))
            except EmbeddingError as e:
                logger.error(f"Embedding failed: {e}")
                raise
            except httpx.HTTPError as e:
                logger.error(f"Embedding failed: {e}")
                raise EmbeddingError(
                    f"Embedding request to {self.embeddings_url} failed: {e}"
                ) from e

        logger.debug(f"Generated {len(embeddings)} embeddings using {self.model}")
        return embeddings

    def embed_text(
        self,
        text: str = "",
        cancel_event: Optional[threading.Event] = None
    ) -> List[float]:
        embeddings = self.embed_batch([text], cancel_event=cancel_event)
        return embeddings[0] if embeddings else []
