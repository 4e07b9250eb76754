"""Cosine-similarity image retrieval and prompt context formatting."""

import logging
import math
import time
from typing import List, Optional, Sequence

import numpy as np

from .embed import OllamaEmbedder
from .logging_config import get_audit_logger, log_image_retrieval
from .models import RetrievedImage, VectorEntry
from .store import ImageVectorStore

logger = logging.getLogger(__name__)

CONTEXT_INSTRUCTION = (
    "Relevant visual context was retrieved. When answering, reference the images "
    "by their label (Image 1, Image 2, etc) where appropriate."
)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector is empty or all zeros, or when their
    lengths differ.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


def sanitize_entry(entry: VectorEntry, score: float, index: int) -> RetrievedImage:
    """Drop the raw vector and label the result by its final rank."""
    return RetrievedImage(
        image_path=entry.image_path,
        source_doc=entry.source_doc,
        page=entry.page,
        metadata=entry.metadata,
        score=score,
        label=f"Image {index + 1}",
    )


class ImageRetriever:
    """Score every stored image against a query and keep the best matches."""

    def __init__(self, store: ImageVectorStore, embedder: OllamaEmbedder):
        self.store = store
        self.embedder = embedder
        self.audit_logger = get_audit_logger("image_retriever")

    def retrieve(self, query: str, top_k: int = 3) -> List[RetrievedImage]:
        """
        Retrieve the top_k images most similar to the query.

        Embedding failures propagate to the caller.
        """
        start_time = time.time()
        entries = self.store.read()
        if not entries:
            return []

        query_vector = self.embedder.embed_text(query or "")

        scored = []
        for entry in entries:
            score = cosine_similarity(query_vector, entry.vector)
            if math.isfinite(score) and score > 0:
                scored.append((score, entry))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        results = [
            sanitize_entry(entry, score, index)
            for index, (score, entry) in enumerate(scored[:max(top_k, 0)])
        ]

        log_image_retrieval(
            self.audit_logger,
            query=query,
            candidates=len(entries),
            results_count=len(results),
            top_score=results[0].score if results else None,
            execution_time_ms=(time.time() - start_time) * 1000,
        )
        return results


def build_image_context(images: Sequence[RetrievedImage]) -> Optional[str]:
    """Format retrieved images as prompt context, or None when there are none."""
    if not images:
        return None

    blocks = []
    for idx, image in enumerate(images):
        parts = [
            f"Image {idx + 1}: {image.image_path}",
            f"Cosine score: {image.score:.4f}",
            f"Source document: {image.source_doc}" if image.source_doc else None,
            f"Page: {image.page}" if image.page is not None else None,
            f"OCR summary: {image.metadata.ocrText}" if image.metadata.ocrText else None,
        ]
        blocks.append("\n".join(part for part in parts if part))

    return f"{CONTEXT_INSTRUCTION}\n" + "\n\n".join(blocks)


def append_image_references(answer: str, images: Sequence[RetrievedImage]) -> str:
    """Append a 'Referenced images' footer citing each image by label."""
    if not images:
        return answer
    references = "; ".join(f"{image.label} ({image.image_path})" for image in images)
    return f"{answer}\n\nReferenced images: {references}"
