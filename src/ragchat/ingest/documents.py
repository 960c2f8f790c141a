"""Document ingestion: validate → extract text → chunk → embed → store.

Ingestion favours correctness: input is validated before anything is
written, every chunk is embedded before the first one is stored, and any
failure is raised to the caller.

Supported files:
  .txt .text .md .markdown .rst .csv .log .json → decoded as UTF-8
  .pdf                                          → pypdf page text
  .html .htm                                    → BeautifulSoup + html2text
"""

from __future__ import annotations

import io
import logging
import mimetypes
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import html2text
import pypdf
from bs4 import BeautifulSoup

from ragchat.db.models import DocumentChunk
from ragchat.db.repository import Repository
from ragchat.ingest.chunker import TextChunker

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 100_000
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5 MB

_TEXT_EXTS = {".txt", ".text", ".md", ".markdown", ".rst", ".csv", ".log", ".json"}
_PDF_EXTS = {".pdf"}
_HTML_EXTS = {".html", ".htm"}
SUPPORTED_EXTENSIONS = _TEXT_EXTS | _PDF_EXTS | _HTML_EXTS

_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class IngestValidationError(ValueError):
    """Raised when ingestion input is rejected (size, type, missing fields)."""


@dataclass(frozen=True)
class DocumentInput:
    """Normalized ingestion input."""

    text: str
    title: str
    source: str
    description: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class IngestResult:
    source: str
    title: str
    chunk_ids: list[str]

    @property
    def chunk_count(self) -> int:
        return len(self.chunk_ids)


# ------------------------------------------------------------------
# Validation + extraction
# ------------------------------------------------------------------


def text_input(text: str, title: str, description: str | None = None) -> DocumentInput:
    """Validate directly supplied text.

    Raises:
        IngestValidationError: If text or title is empty, or text is too long.
    """
    if not text or not text.strip() or not title or not title.strip():
        raise IngestValidationError("Text and title are required")
    if len(text) > MAX_TEXT_LENGTH:
        raise IngestValidationError(f"Text exceeds the {MAX_TEXT_LENGTH} character limit")
    metadata = {"inputType": "direct-input"}
    if description:
        metadata["description"] = description
    return DocumentInput(
        text=text,
        title=title.strip(),
        source=title.strip(),
        description=description,
        metadata=metadata,
    )


def file_input(
    data: bytes,
    filename: str,
    title: str | None = None,
    description: str | None = None,
    mime_type: str | None = None,
) -> DocumentInput:
    """Validate an uploaded file and extract its text.

    Raises:
        IngestValidationError: If the file is too large, of an unsupported
            type, or yields no text.
    """
    if len(data) > MAX_FILE_SIZE:
        raise IngestValidationError(
            f"File size exceeds the {MAX_FILE_SIZE // (1024 * 1024)}MB limit"
        )
    mime = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
    text = extract_text(data, filename)
    if text is None:
        raise IngestValidationError(f"Unsupported file type: {mime}")
    if not text.strip():
        raise IngestValidationError(f"No text could be extracted from '{filename}'")
    if len(text) > MAX_TEXT_LENGTH:
        raise IngestValidationError(
            f"Extracted text exceeds the {MAX_TEXT_LENGTH} character limit"
        )

    metadata: dict = {"fileName": filename, "mimeType": mime, "fileSize": len(data)}
    if description:
        metadata["description"] = description
    return DocumentInput(
        text=text,
        title=title or filename,
        source=filename,
        description=description,
        metadata=metadata,
    )


def extract_text(data: bytes, filename: str) -> str | None:
    """Return the text of *data* based on the file extension, or None if unsupported."""
    ext = Path(filename).suffix.lower()
    if ext in _TEXT_EXTS:
        return data.decode("utf-8", errors="replace")
    if ext in _PDF_EXTS:
        return _pdf_text(data)
    if ext in _HTML_EXTS:
        return _html_text(data.decode("utf-8", errors="replace"))
    return None


def _pdf_text(data: bytes) -> str:
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
    except pypdf.errors.PdfReadError as exc:
        raise IngestValidationError(f"Unreadable PDF: {exc}") from exc
    parts: list[str] = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


def _html_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "nav", "footer"]):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


# ------------------------------------------------------------------
# Ingestor
# ------------------------------------------------------------------


class DocumentIngestor:
    """Chunk, embed and store documents in the text collection.

    Args:
        repo: Open repository with collections created.
        embed_text: Embeds one chunk of text.
        chunker: Chunking strategy (defaults to 500/100 paragraph mode).
    """

    def __init__(
        self,
        repo: Repository,
        embed_text: Callable[[str], list[float]],
        chunker: TextChunker | None = None,
    ) -> None:
        self._repo = repo
        self._embed = embed_text
        self._chunker = chunker or TextChunker()

    def ingest(self, document: DocumentInput) -> IngestResult:
        """Store *document* as a new, disjoint set of chunks."""
        chunks = self._chunker.build_chunks(
            document.text,
            source_id=document.source,
            title=document.title,
            metadata=document.metadata,
        )
        if not chunks:
            raise IngestValidationError("Document produced no chunks")

        embedded: list[tuple[DocumentChunk, list[float]]] = [
            (chunk, self._embed(chunk.content)) for chunk in chunks
        ]
        for chunk, embedding in embedded:
            self._repo.add_chunk(chunk, embedding)

        logger.info("Ingested '%s' as %d chunks", document.source, len(chunks))
        return IngestResult(
            source=document.source,
            title=document.title,
            chunk_ids=[c.chunk_id for c in chunks],
        )

    def ingest_text(
        self, text: str, title: str, description: str | None = None
    ) -> IngestResult:
        return self.ingest(text_input(text, title, description))

    def ingest_file(
        self,
        path: Path,
        title: str | None = None,
        description: str | None = None,
    ) -> IngestResult:
        path = Path(path)
        if not path.is_file():
            raise IngestValidationError(f"File not found: {path}")
        if path.stat().st_size > MAX_FILE_SIZE:
            raise IngestValidationError(
                f"File size exceeds the {MAX_FILE_SIZE // (1024 * 1024)}MB limit"
            )
        return self.ingest(file_input(path.read_bytes(), path.name, title, description))

    def list_documents(self, source: str) -> list[DocumentChunk]:
        return self._repo.list_chunks_by_source(source)

    def delete_documents(self, source: str) -> int:
        """Delete every chunk of *source*. Returns the number removed."""
        removed = self._repo.delete_chunks_by_source(source)
        logger.info("Deleted %d chunks for '%s'", removed, source)
        return removed

    def list_sources(self) -> list[tuple[str, str, int]]:
        """Return ``(source, title, chunk_count)`` for every stored source."""
        return self._repo.list_sources()
