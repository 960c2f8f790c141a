"""Key-value persistence for chat state.

State is split over four independent keys so that each can be missing:

    rag-app-conversations         JSON list of conversations
    rag-app-active-conversation   plain conversation id
    rag-app-messages              JSON list of messages
    rag-app-uploaded-files        JSON list of uploaded-file records

Timestamps are written as ISO-8601 and parsed back into ``datetime``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from ragchat.chat.models import (
    ChatState,
    Conversation,
    Message,
    MessageStatus,
    Role,
    UploadedFileRecord,
    collect_garbage,
    utcnow,
)
from ragchat.db.repository import Repository

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "conversations": "rag-app-conversations",
    "active_conversation": "rag-app-active-conversation",
    "messages": "rag-app-messages",
    "uploaded_files": "rag-app-uploaded-files",
}


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def set_many(self, items: dict[str, str]) -> None:
        """Write every item or none of them."""
        ...


class MemoryStateStore:
    """In-process store; used by tests and ``--no-persist`` sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def set_many(self, items: dict[str, str]) -> None:
        snapshot = dict(self.data)
        try:
            for key, value in items.items():
                self.set(key, value)
        except BaseException:
            self.data = snapshot
            raise


class SqliteStateStore:
    """Store backed by the ``app_state`` table of the project database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._repo = Repository(conn)

    def get(self, key: str) -> str | None:
        return self._repo.get_state(key)

    def set(self, key: str, value: str) -> None:
        self._repo.set_state(key, value)

    def set_many(self, items: dict[str, str]) -> None:
        self._repo.set_states(items)


# ------------------------------------------------------------------
# Serialization
# ------------------------------------------------------------------


def _ts(value: datetime) -> str:
    return value.isoformat()


def _parse_ts(value: str | None) -> datetime:
    return datetime.fromisoformat(value) if value else utcnow()


def serialize_state(state: ChatState) -> dict[str, str]:
    """Return the four storage values for *state*."""
    conversations = [
        {
            "id": c.id,
            "title": c.title,
            "createdAt": _ts(c.created_at),
            "updatedAt": _ts(c.updated_at),
            "messageIds": list(c.message_ids),
        }
        for c in state.conversations
    ]
    messages = [
        {
            "id": m.id,
            "role": m.role.value,
            "content": m.content,
            "createdAt": _ts(m.created_at),
            "status": m.status.value,
        }
        for m in state.messages.values()
    ]
    files = [
        {
            "id": f.id,
            "name": f.name,
            "type": f.type,
            "url": f.url,
            "uploadedAt": _ts(f.uploaded_at),
        }
        for f in state.uploaded_files
    ]
    return {
        STORAGE_KEYS["conversations"]: json.dumps(conversations),
        STORAGE_KEYS["active_conversation"]: state.active_conversation_id or "",
        STORAGE_KEYS["messages"]: json.dumps(messages),
        STORAGE_KEYS["uploaded_files"]: json.dumps(files),
    }


def deserialize_state(values: dict[str, str | None]) -> ChatState:
    """Rebuild a :class:`ChatState` from stored values.

    Missing keys are treated as empty. A state without conversations gets a
    fresh one; an unknown active id falls back to the first conversation.
    Message ids that do not resolve are dropped, and so are messages that no
    conversation references.

    Raises:
        ValueError: On malformed JSON, records or timestamps.
        KeyError: On records missing a required field.
    """
    raw_conversations = values.get(STORAGE_KEYS["conversations"])
    raw_messages = values.get(STORAGE_KEYS["messages"])
    raw_files = values.get(STORAGE_KEYS["uploaded_files"])
    active_id = values.get(STORAGE_KEYS["active_conversation"]) or None

    conversations = tuple(
        Conversation(
            id=c["id"],
            title=c["title"],
            created_at=_parse_ts(c.get("createdAt")),
            updated_at=_parse_ts(c.get("updatedAt")),
            message_ids=tuple(c.get("messageIds", [])),
        )
        for c in (json.loads(raw_conversations) if raw_conversations else [])
    )
    messages = {
        m["id"]: Message(
            id=m["id"],
            role=Role(m["role"]),
            content=m.get("content", ""),
            created_at=_parse_ts(m.get("createdAt")),
            status=_restored_status(m.get("status")),
        )
        for m in (json.loads(raw_messages) if raw_messages else [])
    }
    files = tuple(
        UploadedFileRecord(
            id=f["id"],
            name=f["name"],
            type=f.get("type", ""),
            url=f.get("url", ""),
            uploaded_at=_parse_ts(f.get("uploadedAt")),
        )
        for f in (json.loads(raw_files) if raw_files else [])
    )

    # The four keys may come from different writes; keep only consistent links.
    conversations = tuple(
        replace(c, message_ids=tuple(mid for mid in c.message_ids if mid in messages))
        for c in conversations
    )
    messages = collect_garbage(conversations, messages)

    if not conversations:
        fresh = ChatState.fresh()
        return ChatState(
            conversations=fresh.conversations,
            active_conversation_id=fresh.active_conversation_id,
            messages=messages,
            uploaded_files=files,
        )

    if active_id is None or not any(c.id == active_id for c in conversations):
        active_id = conversations[0].id
    return ChatState(
        conversations=conversations,
        active_conversation_id=active_id,
        messages=messages,
        uploaded_files=files,
    )


def _restored_status(value: str | None) -> MessageStatus:
    # A message still streaming when the process stopped never completed.
    status = MessageStatus(value) if value else MessageStatus.COMPLETE
    return MessageStatus.PARTIAL if status is MessageStatus.STREAMING else status


def load_state(store: KeyValueStore) -> ChatState:
    """Load state from *store*, starting fresh if it is unreadable."""
    try:
        return deserialize_state({key: store.get(key) for key in STORAGE_KEYS.values()})
    except (ValueError, KeyError, TypeError, sqlite3.Error) as exc:
        logger.error("Error loading chat state; starting fresh: %s", exc)
        return ChatState.fresh()


def save_state(store: KeyValueStore, state: ChatState) -> bool:
    """Write *state* to *store*. Returns False (and logs) if the write failed."""
    try:
        store.set_many(serialize_state(state))
    except (OSError, sqlite3.Error) as exc:
        logger.warning("Could not persist chat state; continuing in memory: %s", exc)
        return False
    return True
