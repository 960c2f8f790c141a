"""Context assembler: retrieved chunks → context block → augmented system prompt.

Pipeline:
  1. Retrieve on the latest user message.
  2. Render results as numbered ``[Document N]`` blocks.
  3. Wrap the block in the fixed context framing after the base prompt.
  4. Install the result as the single system message of the outgoing list.

An empty retrieval is a no-op: the base prompt goes out unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ragchat.config import DEFAULT_SYSTEM_PROMPT
from ragchat.rag.retriever import DEFAULT_LIMIT, DEFAULT_MIN_SCORE, RetrievedResult, Retriever

logger = logging.getLogger(__name__)

_CONTEXT_HEADER = "Context information is below."
_CONTEXT_FOOTER = "Given the information above, respond to the user's query."

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "apply_system_prompt",
    "augment_messages",
    "format_context",
    "format_system_prompt",
    "last_user_message",
]


def format_context(results: Sequence[RetrievedResult]) -> str:
    """Render *results* as blank-line separated, 1-indexed document blocks."""
    if not results:
        return ""

    blocks: list[str] = []
    for index, doc in enumerate(results, start=1):
        fields = [
            f"Title: {doc.title}" if doc.title else "",
            f"Source: {doc.source}" if doc.source else "",
        ]
        header = " | ".join(f for f in fields if f)
        block = f"[Document {index}]"
        if header:
            block += f"\n{header}"
        blocks.append(f"{block}\n{doc.content}")
    return "\n\n".join(blocks)


def format_system_prompt(context: str, base_prompt: str) -> str:
    """Append the framed *context* to *base_prompt*; return it unchanged if empty."""
    if not context:
        return base_prompt
    return f"{base_prompt}\n\n{_CONTEXT_HEADER}\n{context}\n\n{_CONTEXT_FOOTER}"


def apply_system_prompt(messages: Sequence[dict], prompt: str) -> list[dict]:
    """Return a copy of *messages* whose only system message carries *prompt*.

    The first existing system message is replaced in place (keeping its
    position); any further system messages are dropped. Without one, a new
    system message is prepended. The input list and dicts are not mutated.
    """
    result: list[dict] = []
    replaced = False
    for message in messages:
        if message.get("role") == "system":
            if replaced:
                continue
            result.append({**message, "content": prompt})
            replaced = True
        else:
            result.append(dict(message))
    if not replaced:
        result.insert(0, {"role": "system", "content": prompt})
    return result


def last_user_message(messages: Sequence[dict]) -> str | None:
    """Return the content of the most recent user message, if any."""
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content")
    return None


def augment_messages(
    messages: Sequence[dict],
    retriever: Retriever,
    base_prompt: str = DEFAULT_SYSTEM_PROMPT,
    use_rag: bool = True,
    limit: int = DEFAULT_LIMIT,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[dict]:
    """Prepare the outgoing message list for the generation service.

    With ``use_rag`` and a user message present, context retrieved for the
    latest user message is merged into the system prompt. Otherwise the
    messages pass through as a copy.
    """
    query = last_user_message(messages)
    if not use_rag or not query:
        return [dict(m) for m in messages]

    results = retriever.retrieve(query, limit=limit, min_score=min_score)
    logger.debug("Retrieved %d context documents", len(results))
    prompt = format_system_prompt(format_context(results), base_prompt)
    return apply_system_prompt(messages, prompt)
