"""Tests for document validation, text extraction and DocumentIngestor."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from ragchat.db.repository import Repository
from ragchat.ingest.chunker import TextChunker
from ragchat.ingest.documents import (
    MAX_FILE_SIZE,
    MAX_TEXT_LENGTH,
    DocumentIngestor,
    IngestValidationError,
    extract_text,
    file_input,
    text_input,
)


def _fake_embed(text: str) -> list[float]:
    return [1.0, float(len(text) % 5), 0.5]


@pytest.fixture
def ingestor(tmp_db):
    return DocumentIngestor(
        Repository(tmp_db), _fake_embed, TextChunker(chunk_size=20, chunk_overlap=5)
    )


# ------------------------------------------------------------------
# text_input
# ------------------------------------------------------------------

def test_text_input_metadata():
    doc = text_input("Some text", "  My Note ", description="scratch")
    assert doc.title == "My Note"
    assert doc.source == "My Note"
    assert doc.metadata == {"inputType": "direct-input", "description": "scratch"}


@pytest.mark.parametrize("text,title", [("", "t"), ("body", ""), ("   ", "t"), ("body", "  ")])
def test_text_input_requires_text_and_title(text, title):
    with pytest.raises(IngestValidationError, match="Text and title are required"):
        text_input(text, title)


def test_text_input_length_limit():
    text_input("x" * MAX_TEXT_LENGTH, "ok")
    with pytest.raises(IngestValidationError, match="character limit"):
        text_input("x" * (MAX_TEXT_LENGTH + 1), "too long")


# ------------------------------------------------------------------
# file_input / extract_text
# ------------------------------------------------------------------

def test_file_input_plain_text():
    doc = file_input(b"hello file", "notes.txt")
    assert doc.text == "hello file"
    assert doc.title == "notes.txt"
    assert doc.source == "notes.txt"
    assert doc.metadata == {"fileName": "notes.txt", "mimeType": "text/plain", "fileSize": 10}


def test_file_input_title_override():
    doc = file_input(b"hello", "notes.txt", title="Meeting notes", description="weekly")
    assert doc.title == "Meeting notes"
    assert doc.source == "notes.txt"
    assert doc.metadata["description"] == "weekly"


def test_file_input_too_large():
    with pytest.raises(IngestValidationError, match="5MB limit"):
        file_input(b"x" * (MAX_FILE_SIZE + 1), "big.txt")


def test_file_input_unsupported_type():
    with pytest.raises(IngestValidationError, match="Unsupported file type"):
        file_input(b"\x00\x01", "archive.zip")


def test_file_input_no_text():
    with pytest.raises(IngestValidationError, match="No text could be extracted"):
        file_input(b"   \n", "empty.md")


def test_extract_text_unsupported_returns_none():
    assert extract_text(b"data", "image.png") is None


def test_extract_text_html_strips_chrome():
    html = (
        b"<html><body><nav>menu</nav><h1>Title</h1>"
        b"<p>Hello <a href='https://example.com'>world</a></p>"
        b"<script>track()</script><footer>legal</footer></body></html>"
    )
    text = extract_text(html, "page.html")
    assert "Title" in text
    assert "Hello world" in text
    assert "menu" not in text
    assert "track()" not in text
    assert "legal" not in text
    assert "example.com" not in text


def test_extract_text_pdf_joins_pages():
    pages = [MagicMock(), MagicMock(), MagicMock()]
    pages[0].extract_text.return_value = "Page one"
    pages[1].extract_text.return_value = "  "
    pages[2].extract_text.return_value = "Page three"
    reader = MagicMock(pages=pages)

    with patch("ragchat.ingest.documents.pypdf.PdfReader", return_value=reader):
        assert extract_text(b"%PDF-1.4", "doc.pdf") == "Page one\n\nPage three"


# ------------------------------------------------------------------
# DocumentIngestor
# ------------------------------------------------------------------

def test_ingest_text_stores_chunks(ingestor):
    result = ingestor.ingest_text("Para A.\n\nPara B.", "Notes")
    assert result.source == "Notes"
    assert result.chunk_count == 2

    stored = ingestor.list_documents("Notes")
    assert [c.content for c in stored] == ["Para A.", "A.\n\nPara B."]
    assert stored[0].metadata["inputType"] == "direct-input"


def test_ingest_embeds_every_chunk_before_storing(tmp_db):
    calls = []

    def flaky_embed(text):
        calls.append(text)
        if len(calls) == 2:
            raise RuntimeError("embedding service down")
        return [1.0, 0.0, 0.0]

    ingestor = DocumentIngestor(
        Repository(tmp_db), flaky_embed, TextChunker(chunk_size=20, chunk_overlap=5)
    )
    with pytest.raises(RuntimeError):
        ingestor.ingest_text("Para A.\n\nPara B.", "Notes")
    assert ingestor.list_documents("Notes") == []


def test_reingest_produces_disjoint_chunks(ingestor):
    first = ingestor.ingest_text("Same body.", "Doc")
    second = ingestor.ingest_text("Same body.", "Doc")
    assert set(first.chunk_ids).isdisjoint(second.chunk_ids)
    assert len(ingestor.list_documents("Doc")) == 2


def test_ingest_file(ingestor, tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("# Guide\n\nStep one.", encoding="utf-8")

    result = ingestor.ingest_file(path, description="setup")
    assert result.source == "guide.md"
    chunk = ingestor.list_documents("guide.md")[0]
    assert chunk.metadata["fileName"] == "guide.md"
    assert chunk.metadata["description"] == "setup"


def test_ingest_file_missing(ingestor, tmp_path):
    with pytest.raises(IngestValidationError, match="File not found"):
        ingestor.ingest_file(tmp_path / "nope.txt")


def test_delete_documents(ingestor):
    ingestor.ingest_text("Para A.\n\nPara B.", "Notes")
    ingestor.ingest_text("Other.", "Keep")

    assert ingestor.delete_documents("Notes") == 2
    assert ingestor.list_documents("Notes") == []
    assert [s for s, _, _ in ingestor.list_sources()] == ["Keep"]


def test_delete_documents_unknown_source(ingestor):
    assert ingestor.delete_documents("missing") == 0
