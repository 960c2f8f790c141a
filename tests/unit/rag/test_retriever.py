"""Tests for the similarity Retriever."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ragchat.db.models import DocumentChunk, ImageRecord
from ragchat.db.repository import Repository
from ragchat.rag.retriever import ImageResult, RetrievedResult, Retriever


def _chunk(content, title="Doc", source="doc.md"):
    return DocumentChunk(
        chunk_id=content, content=content, source_id=source, title=title,
        chunk_index=0, total_chunks=1,
    )


def _image(id, caption="", filename="a.png"):
    return ImageRecord(id=id, filename=filename, mime_type="image/png", image_b64="", caption=caption)


def _store(chunks=(), images=()):
    store = MagicMock()
    store.search_chunks.return_value = list(chunks)
    store.search_images.return_value = list(images)
    return store


# ------------------------------------------------------------------
# Text retrieval
# ------------------------------------------------------------------

def test_retrieve_filters_below_min_score():
    store = _store([(_chunk("a"), 0.95), (_chunk("b"), 0.91), (_chunk("c"), 0.85)])
    retriever = Retriever(store, embed_text=lambda q: [1.0])

    results = retriever.retrieve("query", limit=5, min_score=0.9)

    assert [r.content for r in results] == ["a", "b"]
    assert all(isinstance(r, RetrievedResult) for r in results)
    assert results[0].title == "Doc"
    assert results[0].source == "doc.md"


def test_retrieve_keeps_score_equal_to_floor():
    store = _store([(_chunk("edge"), 0.7)])
    results = Retriever(store, lambda q: [1.0]).retrieve("q", min_score=0.7)
    assert [r.score for r in results] == [0.7]


def test_retrieve_passes_limit_to_store():
    store = _store()
    Retriever(store, lambda q: [0.5, 0.5]).retrieve("q", limit=3)
    store.search_chunks.assert_called_once_with([0.5, 0.5], limit=3)


def test_retrieve_orders_best_first_and_caps():
    store = _store([(_chunk("low"), 0.8), (_chunk("high"), 0.99), (_chunk("mid"), 0.9)])
    results = Retriever(store, lambda q: [1.0]).retrieve("q", limit=2, min_score=0.0)
    assert [r.content for r in results] == ["high", "mid"]


def test_retrieve_blank_query_skips_store():
    store = _store()
    assert Retriever(store, lambda q: [1.0]).retrieve("   ") == []
    store.search_chunks.assert_not_called()


def test_retrieve_embedding_failure_returns_empty():
    def broken(_q):
        raise ConnectionError("embedding service down")

    assert Retriever(_store(), broken).retrieve("q") == []


def test_retrieve_store_failure_returns_empty():
    store = MagicMock()
    store.search_chunks.side_effect = RuntimeError("no such table")
    assert Retriever(store, lambda q: [1.0]).retrieve("q") == []


def test_retrieve_against_repository(tmp_db):
    repo = Repository(tmp_db)
    repo.add_chunk(_chunk("cats purr"), [1.0, 0.0, 0.0])
    repo.add_chunk(_chunk("dogs bark"), [0.0, 1.0, 0.0])

    results = Retriever(repo, lambda q: [1.0, 0.05, 0.0]).retrieve("cats", min_score=0.9)

    assert [r.content for r in results] == ["cats purr"]
    assert results[0].score == pytest.approx(1.0, abs=0.01)


# ------------------------------------------------------------------
# Image retrieval
# ------------------------------------------------------------------

def test_retrieve_images_by_text():
    store = _store(images=[(_image("i1", caption="a cat"), 0.92), (_image("i2"), 0.5)])
    retriever = Retriever(store, lambda q: [1.0], embed_image_text=lambda q: [0.0, 1.0])

    results = retriever.retrieve_images_by_text("cat", min_score=0.7)

    assert results == [
        ImageResult(id="i1", filename="a.png", mime_type="image/png", score=0.92, caption="a cat")
    ]
    store.search_images.assert_called_once_with([0.0, 1.0], limit=5)


def test_retrieve_images_by_text_without_embedder():
    assert Retriever(_store(), lambda q: [1.0]).retrieve_images_by_text("cat") == []


def test_retrieve_similar_images():
    store = _store(images=[(_image("i1"), 0.99)])
    embed_image = MagicMock(return_value=[1.0, 0.0])
    retriever = Retriever(store, lambda q: [1.0], embed_image=embed_image)

    results = retriever.retrieve_similar_images(b"png-bytes", "image/png")

    assert [r.id for r in results] == ["i1"]
    embed_image.assert_called_once_with(b"png-bytes", "image/png")


def test_retrieve_similar_images_failure_returns_empty():
    retriever = Retriever(
        _store(), lambda q: [1.0], embed_image=MagicMock(side_effect=RuntimeError("boom"))
    )
    assert retriever.retrieve_similar_images(b"x", "image/png") == []
