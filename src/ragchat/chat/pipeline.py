"""ChatPipeline — wires ingestion, retrieval, generation and the conversation store.

A streamed turn::

    user text ─▶ ConversationStore ─▶ HealthGate.authorize()
              ─▶ augment_messages() (Retriever + ContextAssembler)
              ─▶ llm_client.stream() ─▶ frames_from_deltas() ─▶ StreamDecoder
              ─▶ ConversationStore.update_assistant_content() ─▶ subscribers

Turns run one at a time; a turn finishes (including its stream) before the
next one starts.
"""

from __future__ import annotations

import contextlib
import functools
import logging
import mimetypes
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from ragchat.chat.models import Message, MessageStatus, UploadedFileRecord
from ragchat.chat.persistence import SqliteStateStore
from ragchat.chat.store import ConversationStore
from ragchat.config import RagChatConfig
from ragchat.db.connection import Database
from ragchat.db.repository import Repository
from ragchat.db.schema import create_collections, initialize
from ragchat.ingest.chunker import TextChunker
from ragchat.ingest.documents import DocumentIngestor
from ragchat.ingest.images import ImageStore, is_image_file
from ragchat.rag import llm_client
from ragchat.rag.assembler import augment_messages
from ragchat.rag.health import (
    HealthGate,
    probe_generation_service,
    probe_vector_store,
    read_collection_status,
)
from ragchat.rag.retriever import Retriever
from ragchat.rag.stream import StreamDecoder, StreamError, frames_from_deltas

logger = logging.getLogger(__name__)

FAILURE_NOTICE = "Sorry, an error occurred while processing your request."

StreamFn = Callable[[list[dict]], Iterator[str]]
CompleteFn = Callable[[list[dict]], str]


@dataclass(frozen=True)
class TurnResult:
    """Outcome of :meth:`ChatPipeline.send_message`.

    ``reply`` is the streamed assistant message (``complete`` or ``partial``)
    and ``error`` the failure that ended the turn, if any.
    """

    user_message: Message
    reply: Message | None = None
    uploads: tuple[UploadedFileRecord, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_health_gate(
    cfg: RagChatConfig, conn: sqlite3.Connection, db_path: Path | str
) -> HealthGate:
    """HealthGate probing the configured Ollama server and project database."""
    gen = cfg.generation
    emb = cfg.embedding
    return HealthGate(
        vector_probe=lambda: probe_vector_store(db_path, cfg.health.timeout),
        generation_probe=lambda: probe_generation_service(gen.api_base, cfg.health.timeout),
        schema_probe=lambda: read_collection_status(db_path, cfg.health.timeout),
        schema_initializer=lambda: create_collections(conn, emb.dimensions, emb.image_dimensions),
        retries=cfg.health.retries,
        backoff=cfg.health.backoff,
    )


class ChatPipeline:
    """Composition root for chat turns and uploads.

    Args:
        store: Conversation state holder.
        retriever: Context retriever.
        gate: Health gate consulted before every generated turn.
        ingestor: Text document ingestion.
        images: Image store.
        stream_fn: Returns generation deltas for a message list.
        complete_fn: Returns a whole answer for a message list.
        system_prompt: Base system prompt for augmented turns.
        use_rag: Default for turns that do not say.
        limit: Retrieval limit.
        min_score: Retrieval score floor.
    """

    def __init__(
        self,
        store: ConversationStore,
        retriever: Retriever,
        gate: HealthGate,
        ingestor: DocumentIngestor,
        images: ImageStore,
        stream_fn: StreamFn,
        complete_fn: CompleteFn,
        system_prompt: str,
        use_rag: bool = True,
        limit: int = 5,
        min_score: float = 0.7,
    ) -> None:
        self.store = store
        self.retriever = retriever
        self.gate = gate
        self.ingestor = ingestor
        self.images = images
        self._stream_fn = stream_fn
        self._complete_fn = complete_fn
        self._system_prompt = system_prompt
        self._use_rag = use_rag
        self._limit = limit
        self._min_score = min_score

    @classmethod
    def from_config(
        cls,
        cfg: RagChatConfig,
        conn: sqlite3.Connection,
        db_path: Path | str,
        persist: bool = True,
    ) -> ChatPipeline:
        """Build a pipeline backed by LiteLLM and the project database."""
        initialize(conn)
        repo = Repository(conn)
        gen = cfg.generation
        emb = cfg.embedding

        embed_text = functools.partial(
            llm_client.embed, emb.model, api_base=gen.api_base, timeout=emb.timeout
        )
        embed_image = functools.partial(llm_client.embed_image, emb.image_model, timeout=emb.timeout)
        embed_image_text = functools.partial(llm_client.embed, emb.image_model, timeout=emb.timeout)
        retriever = Retriever(repo, embed_text, embed_image, embed_image_text)

        gate = build_health_gate(cfg, conn, db_path)

        chunker = TextChunker(
            cfg.chunking.chunk_size,
            cfg.chunking.chunk_overlap,
            cfg.chunking.preserve_paragraphs,
        )
        generation_kwargs = dict(
            api_base=gen.api_base,
            max_tokens=gen.max_tokens,
            temperature=gen.temperature,
            timeout=gen.timeout,
        )
        store = ConversationStore(SqliteStateStore(conn) if persist else None)
        return cls(
            store=store,
            retriever=retriever,
            gate=gate,
            ingestor=DocumentIngestor(repo, embed_text, chunker),
            images=ImageStore(repo, embed_image),
            stream_fn=lambda messages: llm_client.stream(gen.model, messages, **generation_kwargs),
            complete_fn=lambda messages: llm_client.complete(
                gen.model, messages, **generation_kwargs
            ),
            system_prompt=cfg.chat.system_prompt,
            use_rag=cfg.chat.use_rag,
            limit=cfg.retrieval.limit,
            min_score=cfg.retrieval.min_score,
        )

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def _history(self) -> list[dict]:
        return [
            m.as_chat_message()
            for m in self.store.active_messages()
            if m.content and m.status is not MessageStatus.STREAMING
        ]

    def _prepare(self, messages: Sequence[dict], use_rag: bool | None) -> list[dict]:
        return augment_messages(
            messages,
            self.retriever,
            base_prompt=self._system_prompt,
            use_rag=self._use_rag if use_rag is None else use_rag,
            limit=self._limit,
            min_score=self._min_score,
        )

    def complete(self, messages: Sequence[dict], use_rag: bool | None = None) -> str:
        """One-shot, non-streamed answer for *messages* (store untouched).

        Raises:
            ServiceUnavailableError: If a service is down.
        """
        self.gate.authorize()
        return self._complete_fn(self._prepare(messages, use_rag))

    def send_message(
        self,
        content: str,
        use_rag: bool | None = None,
        files: Sequence[Path] = (),
    ) -> TurnResult:
        """Run one chat turn in the active conversation.

        Uploads are ingested first, each confirmed by an assistant message.
        When *content* is non-blank the answer is streamed into a placeholder
        message. Any failure ends the turn with the failure notice appended;
        text streamed before a failure stays in a ``partial`` message.
        """
        user_message = self.store.append_user_message(content)
        uploads: list[UploadedFileRecord] = []
        reply_id: str | None = None

        try:
            if files or content.strip():
                self.gate.authorize()
            for path in files:
                uploads.append(self.upload_file(Path(path)))

            if content.strip():
                outgoing = self._prepare(self._history(), use_rag)
                reply_id = self.store.append_assistant_placeholder().id
                decoder = StreamDecoder()
                try:
                    decoder.decode(
                        frames_from_deltas(self._stream_fn(outgoing)),
                        on_text=functools.partial(self.store.update_assistant_content, reply_id),
                    )
                except BaseException as exc:
                    if not isinstance(exc, Exception):
                        # Cancelled (Ctrl-C): keep what arrived, then let it propagate.
                        decoder.abort(f"Cancelled: {type(exc).__name__}")
                        self.store.finish_assistant_message(reply_id, partial=True)
                    raise
                self.store.finish_assistant_message(reply_id)
        except StreamError as exc:
            logger.error("Chat stream failed after %d chars: %s", len(exc.partial), exc)
            return self._fail_turn(user_message, uploads, reply_id, str(exc))
        except Exception as exc:  # noqa: BLE001 - the turn ends with the failure notice
            logger.error("Chat turn failed: %s", exc)
            return self._fail_turn(user_message, uploads, reply_id, str(exc))

        return TurnResult(
            user_message=user_message,
            reply=self.store.get_message(reply_id) if reply_id else None,
            uploads=tuple(uploads),
        )

    def _fail_turn(
        self,
        user_message: Message,
        uploads: list[UploadedFileRecord],
        reply_id: str | None,
        error: str,
    ) -> TurnResult:
        if reply_id is not None:
            self.store.finish_assistant_message(reply_id, partial=True)
        self.store.append_assistant_message(FAILURE_NOTICE)
        return TurnResult(
            user_message=user_message,
            reply=self.store.get_message(reply_id) if reply_id else None,
            uploads=tuple(uploads),
            error=error,
        )

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def upload_file(self, path: Path) -> UploadedFileRecord:
        """Ingest *path* as an image or a text document and record the upload."""
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        if is_image_file(path.name):
            image_id = self.images.store_file(path)
            url = f"ragchat://images/{image_id}"
        else:
            result = self.ingestor.ingest_file(path)
            url = f"ragchat://documents/{result.source}"

        record = self.store.add_uploaded_file(path.name, mime, url)
        self.store.append_assistant_message(
            f'File "{path.name}" uploaded and processed successfully.'
        )
        return record


@contextlib.contextmanager
def open_pipeline(cfg: RagChatConfig, persist: bool = True) -> Iterator[ChatPipeline]:
    """Open the configured database and yield a pipeline bound to it."""
    with Database(cfg.storage.db) as conn:
        yield ChatPipeline.from_config(cfg, conn, cfg.storage.db, persist=persist)
