"""Immutable chat state records.

Every mutation in :mod:`ragchat.chat.store` returns a new :class:`ChatState`;
nothing here is modified in place.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

DEFAULT_TITLE = "New Conversation"
TITLE_LENGTH = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    COMPLETE = "complete"
    STREAMING = "streaming"
    PARTIAL = "partial"


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    created_at: datetime
    status: MessageStatus = MessageStatus.COMPLETE

    def as_chat_message(self) -> dict:
        """Return the ``{"role", "content"}`` dict sent to the generation service."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_ids: tuple[str, ...] = ()

    @classmethod
    def new(cls) -> Conversation:
        now = utcnow()
        return cls(id=new_id(), title=DEFAULT_TITLE, created_at=now, updated_at=now)


@dataclass(frozen=True)
class UploadedFileRecord:
    id: str
    name: str
    type: str
    url: str
    uploaded_at: datetime


@dataclass(frozen=True)
class ChatState:
    conversations: tuple[Conversation, ...] = ()
    active_conversation_id: str | None = None
    messages: dict[str, Message] = field(default_factory=dict)
    uploaded_files: tuple[UploadedFileRecord, ...] = ()

    @classmethod
    def fresh(cls) -> ChatState:
        """A state holding one empty, active conversation."""
        conversation = Conversation.new()
        return cls(conversations=(conversation,), active_conversation_id=conversation.id)

    def conversation(self, conversation_id: str) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    @property
    def active_conversation(self) -> Conversation | None:
        if self.active_conversation_id is None:
            return None
        return self.conversation(self.active_conversation_id)

    def messages_for(self, conversation_id: str) -> list[Message]:
        """Messages of *conversation_id* in ``message_ids`` order."""
        conversation = self.conversation(conversation_id)
        if conversation is None:
            return []
        return [self.messages[mid] for mid in conversation.message_ids if mid in self.messages]


def collect_garbage(
    conversations: tuple[Conversation, ...], messages: dict[str, Message]
) -> dict[str, Message]:
    """Drop messages that no conversation references."""
    referenced = {mid for c in conversations for mid in c.message_ids}
    return {mid: m for mid, m in messages.items() if mid in referenced}
