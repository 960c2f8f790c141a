"""Text chunker — paragraph-preserving splits with a word-tail overlap.

Two strategies:

* Paragraph mode (default): paragraphs are never split. They are packed
  into a chunk until the next one would overflow the chunk's fresh-content
  budget (``chunk_size - chunk_overlap``); the closed chunk's last words are
  then carried into the next chunk as its overlap tail.
* Window mode: fixed character windows of ``chunk_size`` advancing by
  ``chunk_size - chunk_overlap``.

The overlap tail length is approximated in words: ``chunk_overlap // 7``
(about seven characters per word, including the separating space), with a
minimum of one word whenever overlap is enabled.
"""

from __future__ import annotations

import re
import uuid

from ragchat.db.models import DocumentChunk

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_PARAGRAPH_SEP = "\n\n"
_CHARS_PER_WORD = 7

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 100


class TextChunker:
    """Split raw document text into ordered, overlapping segments.

    Raises:
        ValueError: If ``chunk_size < 1``, ``chunk_overlap < 0`` or
            ``chunk_overlap >= chunk_size`` (the window would never advance).
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        preserve_paragraphs: bool = True,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap must be >= 0")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.preserve_paragraphs = preserve_paragraphs

    @property
    def overlap_words(self) -> int:
        """Number of trailing words carried into the next chunk."""
        if self.chunk_overlap == 0:
            return 0
        return max(1, self.chunk_overlap // _CHARS_PER_WORD)

    def split(self, text: str) -> list[str]:
        """Return the chunks of *text* in document order (``[]`` for blank input)."""
        if not text or not text.strip():
            return []
        if self.preserve_paragraphs:
            return self._split_paragraphs(text)
        return self._split_fixed_window(text)

    def build_chunks(
        self,
        text: str,
        source_id: str,
        title: str = "",
        metadata: dict | None = None,
    ) -> list[DocumentChunk]:
        """Split *text* and wrap each segment in a :class:`DocumentChunk`.

        Every chunk gets a fresh ``chunk_id`` so that re-ingesting the same
        source produces a disjoint set of chunks.
        """
        segments = self.split(text)
        total = len(segments)
        base = dict(metadata or {})
        chunks: list[DocumentChunk] = []
        for index, segment in enumerate(segments):
            chunk_id = str(uuid.uuid4())
            chunks.append(
                DocumentChunk(
                    chunk_id=chunk_id,
                    content=segment,
                    source_id=source_id,
                    title=title,
                    chunk_index=index,
                    total_chunks=total,
                    metadata={
                        **base,
                        "chunkIndex": index,
                        "totalChunks": total,
                        "chunkId": chunk_id,
                        "sourceTag": source_id,
                    },
                )
            )
        return chunks

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _split_paragraphs(self, text: str) -> list[str]:
        paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text)]
        paragraphs = [p for p in paragraphs if p]
        budget = self.chunk_size - self.chunk_overlap

        chunks: list[str] = []
        tail = ""
        fresh: list[str] = []
        fresh_len = 0

        for paragraph in paragraphs:
            added = len(paragraph) + (len(_PARAGRAPH_SEP) if fresh else 0)
            if fresh and fresh_len + added > budget:
                closed = _join(tail, fresh)
                chunks.append(closed)
                tail = self._overlap_tail(closed)
                fresh, fresh_len = [], 0
                added = len(paragraph)
            fresh.append(paragraph)
            fresh_len += added

        if fresh:
            chunks.append(_join(tail, fresh))
        return chunks

    def _split_fixed_window(self, text: str) -> list[str]:
        step = self.chunk_size - self.chunk_overlap
        segments: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + self.chunk_size, length)
            segment = text[pos:end]
            if segment.strip():
                segments.append(segment)
            if end >= length:
                break
            pos += step

        return segments

    def _overlap_tail(self, chunk: str) -> str:
        n = self.overlap_words
        if n == 0:
            return ""
        return " ".join(chunk.split()[-n:])


def _join(tail: str, paragraphs: list[str]) -> str:
    body = _PARAGRAPH_SEP.join(paragraphs)
    return f"{tail}{_PARAGRAPH_SEP}{body}" if tail else body


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    preserve_paragraphs: bool = True,
) -> list[str]:
    """Functional shortcut for ``TextChunker(...).split(text)``."""
    return TextChunker(chunk_size, chunk_overlap, preserve_paragraphs).split(text)
