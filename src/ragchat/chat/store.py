"""Conversation store: pure state transitions plus a persisting holder.

The module-level functions take a :class:`ChatState` and return a new one
(and, where a message is created, the message). They never mutate their
input. :class:`ConversationStore` holds the current snapshot, swaps it on
every transition, writes it to the key-value store and notifies
subscribers.

Invariants kept by every transition:
  - every ``message_ids`` entry resolves to a message;
  - messages no conversation references are dropped;
  - exactly one conversation is active.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from ragchat.chat.models import (
    DEFAULT_TITLE,
    TITLE_LENGTH,
    ChatState,
    Conversation,
    Message,
    MessageStatus,
    Role,
    UploadedFileRecord,
    collect_garbage,
    new_id,
    utcnow,
)
from ragchat.chat.persistence import KeyValueStore, MemoryStateStore, load_state, save_state

logger = logging.getLogger(__name__)

Listener = Callable[[ChatState], None]


class ConversationError(ValueError):
    """Raised for unknown ids and invalid message updates."""


def derive_title(content: str) -> str:
    """First 30 characters of *content*, with ``...`` when truncated."""
    if len(content) > TITLE_LENGTH:
        return content[:TITLE_LENGTH] + "..."
    return content


# ------------------------------------------------------------------
# Transitions
# ------------------------------------------------------------------


def _require_conversation(state: ChatState, conversation_id: str | None) -> Conversation:
    conversation = state.conversation(conversation_id) if conversation_id else None
    if conversation is None:
        raise ConversationError(f"Unknown conversation: {conversation_id}")
    return conversation


def _replace_conversation(state: ChatState, updated: Conversation) -> tuple[Conversation, ...]:
    return tuple(updated if c.id == updated.id else c for c in state.conversations)


def _append(
    state: ChatState, message: Message, conversation_id: str | None = None
) -> ChatState:
    target = _require_conversation(state, conversation_id or state.active_conversation_id)
    title = target.title
    if (
        message.role is Role.USER
        and message.content.strip()
        and not target.message_ids
        and target.title == DEFAULT_TITLE
    ):
        title = derive_title(message.content)
    updated = replace(
        target,
        title=title,
        message_ids=(*target.message_ids, message.id),
        updated_at=message.created_at,
    )
    return replace(
        state,
        conversations=_replace_conversation(state, updated),
        messages={**state.messages, message.id: message},
    )


def append_user_message(state: ChatState, content: str) -> tuple[ChatState, Message]:
    """Append a user message to the active conversation."""
    message = Message(id=new_id(), role=Role.USER, content=content, created_at=utcnow())
    return _append(state, message), message


def append_assistant_placeholder(state: ChatState) -> tuple[ChatState, Message]:
    """Append an empty assistant message in ``streaming`` status."""
    message = Message(
        id=new_id(),
        role=Role.ASSISTANT,
        content="",
        created_at=utcnow(),
        status=MessageStatus.STREAMING,
    )
    return _append(state, message), message


def append_assistant_message(state: ChatState, content: str) -> tuple[ChatState, Message]:
    """Append a complete assistant message (notices, upload confirmations)."""
    message = Message(id=new_id(), role=Role.ASSISTANT, content=content, created_at=utcnow())
    return _append(state, message), message


def _owner_of(state: ChatState, message_id: str) -> Conversation | None:
    for conversation in state.conversations:
        if message_id in conversation.message_ids:
            return conversation
    return None


def update_assistant_content(state: ChatState, message_id: str, text: str) -> ChatState:
    """Replace a streaming message's content with a longer prefix-extension.

    Identical text is a no-op.

    Raises:
        ConversationError: If the message is unknown, not a streaming
            assistant message, or *text* does not extend its content.
    """
    message = state.messages.get(message_id)
    if message is None:
        raise ConversationError(f"Unknown message: {message_id}")
    if message.role is not Role.ASSISTANT or message.status is not MessageStatus.STREAMING:
        raise ConversationError(f"Message {message_id} is not a streaming assistant message")
    if text == message.content:
        return state
    if not text.startswith(message.content):
        raise ConversationError(
            f"Update for {message_id} does not extend its current content"
        )

    messages = {**state.messages, message_id: replace(message, content=text)}
    conversations = state.conversations
    owner = _owner_of(state, message_id)
    if owner is not None:
        conversations = _replace_conversation(state, replace(owner, updated_at=utcnow()))
    return replace(state, conversations=conversations, messages=messages)


def finish_assistant_message(
    state: ChatState, message_id: str, partial: bool = False
) -> ChatState:
    """Move a streaming message to ``complete`` (or ``partial``)."""
    message = state.messages.get(message_id)
    if message is None:
        raise ConversationError(f"Unknown message: {message_id}")
    if message.status is not MessageStatus.STREAMING:
        return state
    status = MessageStatus.PARTIAL if partial else MessageStatus.COMPLETE
    return replace(state, messages={**state.messages, message_id: replace(message, status=status)})


def start_new_conversation(state: ChatState) -> tuple[ChatState, Conversation]:
    conversation = Conversation.new()
    return (
        replace(
            state,
            conversations=(*state.conversations, conversation),
            active_conversation_id=conversation.id,
        ),
        conversation,
    )


def switch_conversation(state: ChatState, conversation_id: str) -> ChatState:
    _require_conversation(state, conversation_id)
    return replace(state, active_conversation_id=conversation_id)


def delete_conversation(state: ChatState, conversation_id: str) -> ChatState:
    """Remove a conversation and the messages only it referenced.

    Deleting the active conversation activates the first remaining one, or a
    fresh conversation when none remain.
    """
    _require_conversation(state, conversation_id)
    remaining = tuple(c for c in state.conversations if c.id != conversation_id)
    if not remaining:
        remaining = (Conversation.new(),)

    active_id = state.active_conversation_id
    if active_id == conversation_id or all(c.id != active_id for c in remaining):
        active_id = remaining[0].id
    return replace(
        state,
        conversations=remaining,
        active_conversation_id=active_id,
        messages=collect_garbage(remaining, state.messages),
    )


def rename_conversation(state: ChatState, conversation_id: str, title: str) -> ChatState:
    conversation = _require_conversation(state, conversation_id)
    if not title.strip():
        raise ConversationError("Conversation title must not be empty")
    updated = replace(conversation, title=title.strip(), updated_at=utcnow())
    return replace(state, conversations=_replace_conversation(state, updated))


def clear_conversation(state: ChatState, conversation_id: str) -> ChatState:
    """Empty a conversation and reset its title."""
    conversation = _require_conversation(state, conversation_id)
    updated = replace(conversation, message_ids=(), title=DEFAULT_TITLE, updated_at=utcnow())
    conversations = _replace_conversation(state, updated)
    return replace(
        state,
        conversations=conversations,
        messages=collect_garbage(conversations, state.messages),
    )


def add_uploaded_file(
    state: ChatState, name: str, mime_type: str, url: str = ""
) -> tuple[ChatState, UploadedFileRecord]:
    record = UploadedFileRecord(
        id=new_id(), name=name, type=mime_type, url=url, uploaded_at=utcnow()
    )
    return replace(state, uploaded_files=(*state.uploaded_files, record)), record


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


class ConversationStore:
    """Holds the current :class:`ChatState` and applies transitions to it.

    Each transition replaces the snapshot atomically, persists it and then
    notifies subscribers of the affected conversation. A failed write is
    logged and the in-memory state is kept.

    Args:
        storage: Key-value persistence port; an in-memory store if omitted.
        state: Initial snapshot; loaded from *storage* if omitted.
    """

    def __init__(
        self,
        storage: KeyValueStore | None = None,
        state: ChatState | None = None,
    ) -> None:
        self._storage = storage if storage is not None else MemoryStateStore()
        self._listeners: list[tuple[str | None, Listener]] = []
        self.persist_ok = True
        if state is None:
            # Write back so a synthesized conversation keeps its id.
            state = load_state(self._storage)
            self.persist_ok = save_state(self._storage, state)
        self._state = state

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def active_conversation_id(self) -> str:
        return self._state.active_conversation_id or ""

    def active_messages(self) -> list[Message]:
        return self._state.messages_for(self.active_conversation_id)

    def get_message(self, message_id: str) -> Message | None:
        return self._state.messages.get(message_id)

    def on_change(
        self, conversation_id: str | None, callback: Listener
    ) -> Callable[[], None]:
        """Subscribe to changes of one conversation (``None``: all of them).

        Returns:
            A callable that removes the subscription.
        """
        entry = (conversation_id, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _commit(self, state: ChatState, conversation_id: str | None) -> None:
        if state is self._state:
            return
        self._state = state
        self.persist_ok = save_state(self._storage, state)
        for wanted, callback in list(self._listeners):
            if wanted is None or wanted == conversation_id:
                callback(state)

    # Transitions -------------------------------------------------------

    def append_user_message(self, content: str) -> Message:
        conversation_id = self.active_conversation_id
        state, message = append_user_message(self._state, content)
        self._commit(state, conversation_id)
        return message

    def append_assistant_placeholder(self) -> Message:
        conversation_id = self.active_conversation_id
        state, message = append_assistant_placeholder(self._state)
        self._commit(state, conversation_id)
        return message

    def append_assistant_message(self, content: str) -> Message:
        conversation_id = self.active_conversation_id
        state, message = append_assistant_message(self._state, content)
        self._commit(state, conversation_id)
        return message

    def update_assistant_content(self, message_id: str, text: str) -> None:
        owner = _owner_of(self._state, message_id)
        self._commit(
            update_assistant_content(self._state, message_id, text),
            owner.id if owner else None,
        )

    def finish_assistant_message(self, message_id: str, partial: bool = False) -> None:
        owner = _owner_of(self._state, message_id)
        self._commit(
            finish_assistant_message(self._state, message_id, partial),
            owner.id if owner else None,
        )

    def start_new_conversation(self) -> Conversation:
        state, conversation = start_new_conversation(self._state)
        self._commit(state, conversation.id)
        return conversation

    def switch_conversation(self, conversation_id: str) -> None:
        self._commit(switch_conversation(self._state, conversation_id), conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        self._commit(delete_conversation(self._state, conversation_id), conversation_id)

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        self._commit(rename_conversation(self._state, conversation_id, title), conversation_id)

    def clear_conversation(self, conversation_id: str | None = None) -> None:
        target = conversation_id or self.active_conversation_id
        self._commit(clear_conversation(self._state, target), target)

    def add_uploaded_file(self, name: str, mime_type: str, url: str = "") -> UploadedFileRecord:
        state, record = add_uploaded_file(self._state, name, mime_type, url)
        self._commit(state, self.active_conversation_id)
        return record
