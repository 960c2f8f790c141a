"""Tests for the context assembler."""

from __future__ import annotations

from unittest.mock import MagicMock

from ragchat.rag.assembler import (
    apply_system_prompt,
    augment_messages,
    format_context,
    format_system_prompt,
    last_user_message,
)
from ragchat.rag.retriever import RetrievedResult

BASE = "You are helpful."


def _retriever(results):
    retriever = MagicMock()
    retriever.retrieve.return_value = results
    return retriever


# ------------------------------------------------------------------
# format_context
# ------------------------------------------------------------------


def test_format_context_numbers_documents_in_order():
    results = [
        RetrievedResult(content="First body", score=0.9, title="Doc1", source="a.md"),
        RetrievedResult(content="Second body", score=0.8, title="Doc2"),
    ]
    context = format_context(results)

    assert context == (
        "[Document 1]\nTitle: Doc1 | Source: a.md\nFirst body\n\n"
        "[Document 2]\nTitle: Doc2\nSecond body"
    )


def test_format_context_without_title_or_source():
    context = format_context([RetrievedResult(content="Bare", score=0.9)])
    assert context == "[Document 1]\nBare"


def test_format_context_empty():
    assert format_context([]) == ""


# ------------------------------------------------------------------
# format_system_prompt / apply_system_prompt
# ------------------------------------------------------------------


def test_format_system_prompt_frames_context():
    prompt = format_system_prompt("[Document 1]\nBody", BASE)
    assert prompt.startswith(BASE + "\n\nContext information is below.\n[Document 1]")
    assert prompt.endswith("Given the information above, respond to the user's query.")


def test_format_system_prompt_empty_context_is_noop():
    assert format_system_prompt("", BASE) == BASE


def test_apply_system_prompt_prepends_when_missing():
    messages = [{"role": "user", "content": "Hi"}]
    result = apply_system_prompt(messages, "SYS")
    assert result == [{"role": "system", "content": "SYS"}, {"role": "user", "content": "Hi"}]
    assert messages == [{"role": "user", "content": "Hi"}]


def test_apply_system_prompt_replaces_first_and_drops_others():
    messages = [
        {"role": "user", "content": "Hi"},
        {"role": "system", "content": "old"},
        {"role": "assistant", "content": "Hello"},
        {"role": "system", "content": "older"},
    ]
    result = apply_system_prompt(messages, "SYS")
    assert [m["role"] for m in result] == ["user", "system", "assistant"]
    assert result[1]["content"] == "SYS"
    assert messages[1]["content"] == "old"


def test_last_user_message():
    messages = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "answer"},
        {"role": "user", "content": "second"},
        {"role": "assistant", "content": "another"},
    ]
    assert last_user_message(messages) == "second"
    assert last_user_message([{"role": "assistant", "content": "x"}]) is None


# ------------------------------------------------------------------
# augment_messages
# ------------------------------------------------------------------


def test_augment_messages_injects_context_for_latest_user_message():
    retriever = _retriever([RetrievedResult(content="Cats purr.", score=0.95, title="Cats")])
    messages = [
        {"role": "user", "content": "old question"},
        {"role": "assistant", "content": "old answer"},
        {"role": "user", "content": "Do cats purr?"},
    ]

    result = augment_messages(messages, retriever, base_prompt=BASE, limit=3, min_score=0.8)

    retriever.retrieve.assert_called_once_with("Do cats purr?", limit=3, min_score=0.8)
    assert result[0]["role"] == "system"
    assert "[Document 1]\nTitle: Cats\nCats purr." in result[0]["content"]
    assert result[1:] == messages


def test_augment_messages_no_results_uses_base_prompt():
    result = augment_messages([{"role": "user", "content": "Hi"}], _retriever([]), base_prompt=BASE)
    assert result[0] == {"role": "system", "content": BASE}


def test_augment_messages_rag_disabled_passes_through():
    retriever = _retriever([RetrievedResult(content="x", score=1.0)])
    messages = [{"role": "user", "content": "Hi"}]

    result = augment_messages(messages, retriever, use_rag=False)

    assert result == messages
    assert result is not messages
    retriever.retrieve.assert_not_called()


def test_augment_messages_without_user_message_skips_retrieval():
    retriever = _retriever([])
    augment_messages([{"role": "system", "content": "s"}], retriever)
    retriever.retrieve.assert_not_called()
