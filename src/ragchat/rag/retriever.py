"""Similarity retrieval over the text and image collections.

Scores are certainties in [0, 1] (``1 - cosine_distance / 2``). The store
returns candidates best-first and capped at ``limit``; the retriever then
applies a client-side floor: candidates scoring below ``min_score`` are
dropped, never clamped.

Retrieval favours availability: any embedding or store failure is logged and
turned into an empty result list so that a chat turn continues without
context instead of aborting.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from ragchat.db.models import DocumentChunk, ImageRecord

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_MIN_SCORE = 0.7


@dataclass(frozen=True)
class RetrievedResult:
    """A text chunk returned for a query. Ephemeral, never persisted."""

    content: str
    score: float
    title: str | None = None
    source: str | None = None
    metadata: dict | None = None


@dataclass(frozen=True)
class ImageResult:
    """An image returned for a query (payload not included)."""

    id: str
    filename: str
    mime_type: str
    score: float
    caption: str | None = None
    metadata: dict | None = None


class VectorStore(Protocol):
    """What the retriever needs from the vector-search service."""

    def search_chunks(
        self, embedding: list[float], limit: int = 5
    ) -> list[tuple[DocumentChunk, float]]: ...

    def search_images(
        self, embedding: list[float], limit: int = 5
    ) -> list[tuple[ImageRecord, float]]: ...


TextEmbedder = Callable[[str], list[float]]
ImageEmbedder = Callable[[bytes, str], list[float]]


class Retriever:
    """Query the vector store and filter candidates by score.

    Args:
        store: Vector-search backend (normally :class:`ragchat.db.repository.Repository`).
        embed_text: Embeds a query for the text collection.
        embed_image: Embeds an image for the image collection.
        embed_image_text: Embeds a text query into the image vector space.
    """

    def __init__(
        self,
        store: VectorStore,
        embed_text: TextEmbedder,
        embed_image: ImageEmbedder | None = None,
        embed_image_text: TextEmbedder | None = None,
    ) -> None:
        self._store = store
        self._embed_text = embed_text
        self._embed_image = embed_image
        self._embed_image_text = embed_image_text

    def retrieve(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[RetrievedResult]:
        """Return text chunks similar to *query*, best-first, at or above *min_score*."""
        if not query.strip():
            return []
        try:
            embedding = self._embed_text(query)
            candidates = self._store.search_chunks(embedding, limit=limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Document retrieval failed, continuing without context: %s", exc)
            return []

        return [
            RetrievedResult(
                content=chunk.content,
                title=chunk.title or None,
                source=chunk.source_id or None,
                metadata=chunk.metadata or None,
                score=score,
            )
            for chunk, score in _ranked(candidates, limit)
            if score >= min_score
        ]

    def retrieve_images_by_text(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[ImageResult]:
        """Return images matching a text *query* (text-to-image search)."""
        if self._embed_image_text is None or not query.strip():
            return []
        try:
            embedding = self._embed_image_text(query)
            candidates = self._store.search_images(embedding, limit=limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Image retrieval by text failed: %s", exc)
            return []
        return _image_results(candidates, limit, min_score)

    def retrieve_similar_images(
        self,
        image: bytes,
        mime_type: str,
        limit: int = DEFAULT_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[ImageResult]:
        """Return images visually similar to *image*."""
        if self._embed_image is None or not image:
            return []
        try:
            embedding = self._embed_image(image, mime_type)
            candidates = self._store.search_images(embedding, limit=limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Similar-image retrieval failed: %s", exc)
            return []
        return _image_results(candidates, limit, min_score)


def _ranked(candidates, limit: int):
    """Sort best-first by score and cap at *limit*, whatever order the store returned."""
    return sorted(candidates, key=lambda pair: pair[1], reverse=True)[:limit]


def _image_results(
    candidates: list[tuple[ImageRecord, float]], limit: int, min_score: float
) -> list[ImageResult]:
    return [
        ImageResult(
            id=image.id,
            filename=image.filename,
            mime_type=image.mime_type,
            caption=image.caption or None,
            metadata=image.metadata or None,
            score=score,
        )
        for image, score in _ranked(candidates, limit)
        if score >= min_score
    ]
