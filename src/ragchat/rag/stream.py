"""Event-stream framing for streamed chat answers.

Wire format (one frame per event, frames separated by a blank line)::

    data: {"text": "Hel"}

    data: {"text": "lo"}

    data: [DONE]

A frame payload is JSON carrying either ``text`` (a delta to append) or
``error`` (the producer gave up), or the literal ``[DONE]`` sentinel.

The producer side (:func:`frames_from_deltas`) turns generation deltas into
frames. The consumer side (:class:`StreamDecoder`) accepts the frames as raw
byte chunks of any size, so multi-byte UTF-8 sequences and frames may be
split across reads, and rebuilds the answer text.

Decoder states::

    IDLE ──feed──▶ STREAMING ──[DONE]──▶ DONE
                       │
                       └──{error} / bad frame / transport failure──▶ ERRORED

DONE and ERRORED are terminal; a new decode needs a new decoder.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Callable, Iterable, Iterator
from enum import Enum

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_FRAME_DELIMITER = "\n\n"
_DATA_FIELD = "data:"
STREAM_ERROR_MESSAGE = "Streaming error occurred"


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"


class StreamError(RuntimeError):
    """The stream ended abnormally. ``partial`` holds the text decoded so far."""

    def __init__(self, message: str, partial: str = "") -> None:
        super().__init__(message)
        self.partial = partial


class StreamStateError(RuntimeError):
    """Raised when a terminal decoder is fed again."""


# ------------------------------------------------------------------
# Producer
# ------------------------------------------------------------------


def encode_frame(payload: dict | str) -> bytes:
    """Encode one event frame. A ``str`` payload is sent verbatim (``[DONE]``)."""
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"{_DATA_FIELD} {data}{_FRAME_DELIMITER}".encode("utf-8")


def frames_from_deltas(deltas: Iterable[str]) -> Iterator[bytes]:
    """Frame generation *deltas*; end with ``[DONE]`` or a single error frame."""
    try:
        for delta in deltas:
            if delta:
                yield encode_frame({"text": delta})
    except Exception as exc:  # noqa: BLE001
        logger.error("Generation stream failed: %s", exc)
        yield encode_frame({"error": STREAM_ERROR_MESSAGE})
        return
    yield encode_frame(DONE_SENTINEL)


# ------------------------------------------------------------------
# Consumer
# ------------------------------------------------------------------


class StreamDecoder:
    """Incrementally rebuild the answer text from event-stream byte chunks.

    The accumulated :attr:`text` only ever grows; each ``text`` frame is
    appended in arrival order. On any abnormal end the decoder moves to
    ``ERRORED`` and raises :class:`StreamError` whose ``partial`` attribute
    keeps everything decoded up to that point.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._parts: list[str] = []
        self.state = StreamState.IDLE
        self.error: str | None = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def is_terminal(self) -> bool:
        return self.state in (StreamState.DONE, StreamState.ERRORED)

    def feed(self, chunk: bytes | str) -> list[str]:
        """Consume one transport read. Returns the text deltas it completed.

        Raises:
            StreamStateError: If the decoder already reached a terminal state.
            StreamError: On an ``error`` frame, a malformed frame or invalid UTF-8.
        """
        if self.is_terminal:
            raise StreamStateError(f"Decoder is {self.state.value}; create a new one.")
        self.state = StreamState.STREAMING

        data = chunk.encode("utf-8") if isinstance(chunk, str) else chunk
        try:
            self._buffer += self._utf8.decode(data)
        except UnicodeDecodeError as exc:
            self._fail(f"Invalid UTF-8 in stream: {exc}")
        self._buffer = self._buffer.replace("\r\n", "\n")

        deltas: list[str] = []
        while self.state is StreamState.STREAMING:
            end = self._buffer.find(_FRAME_DELIMITER)
            if end < 0:
                break
            frame = self._buffer[:end]
            self._buffer = self._buffer[end + len(_FRAME_DELIMITER):]
            delta = self._handle_frame(frame)
            if delta:
                deltas.append(delta)
        return deltas

    def finish(self) -> str:
        """Signal end of transport. Returns the text if the stream completed.

        A trailing frame without its blank-line delimiter is still honoured;
        a transport that ends before ``[DONE]`` is a truncated stream.
        """
        if self.state is StreamState.DONE:
            return self.text
        if self.state is StreamState.ERRORED:
            raise StreamError(self.error or "Stream failed", partial=self.text)

        try:
            self._buffer += self._utf8.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            self._fail(f"Stream ended inside a UTF-8 sequence: {exc}")
        self.state = StreamState.STREAMING
        remainder = self._buffer.replace("\r\n", "\n").strip("\n")
        self._buffer = ""
        if remainder:
            self._handle_frame(remainder)

        if self.state is not StreamState.DONE:
            self._fail(f"Stream ended before {DONE_SENTINEL}")
        return self.text

    def abort(self, reason: str = "Stream aborted") -> None:
        """Move a live decoder to ``ERRORED`` without raising (cancellation)."""
        if not self.is_terminal:
            self.state = StreamState.ERRORED
            self.error = reason

    def decode(
        self,
        chunks: Iterable[bytes | str],
        on_text: Callable[[str], None] | None = None,
    ) -> str:
        """Drive a whole transport through the decoder.

        Args:
            chunks: Transport reads, e.g. an HTTP body iterator.
            on_text: Called with the accumulated text after every delta.

        Returns:
            The complete answer text.

        Raises:
            StreamError: On an in-band error, a malformed or truncated stream
                or a transport exception (chained as ``__cause__``).
        """
        try:
            for chunk in chunks:
                for _ in self.feed(chunk):
                    if on_text is not None:
                        on_text(self.text)
                if self.state is StreamState.DONE:
                    break
        except (StreamError, StreamStateError):
            raise
        except Exception as exc:
            self.state = StreamState.ERRORED
            self.error = f"Transport failed: {exc}"
            raise StreamError(self.error, partial=self.text) from exc
        return self.finish()

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    def _handle_frame(self, frame: str) -> str | None:
        payload = _frame_payload(frame)
        if payload is None:
            return None
        if payload == DONE_SENTINEL:
            self.state = StreamState.DONE
            return None

        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            self._fail(f"Malformed stream frame: {payload[:80]!r}")
        if not isinstance(event, dict):
            self._fail(f"Malformed stream frame: {payload[:80]!r}")

        if event.get("error"):
            self._fail(str(event["error"]))
        text = event.get("text")
        if isinstance(text, str) and text:
            self._parts.append(text)
            return text
        return None

    def _fail(self, message: str) -> None:
        self.state = StreamState.ERRORED
        self.error = message
        raise StreamError(message, partial=self.text)


def _frame_payload(frame: str) -> str | None:
    """Join the ``data:`` lines of *frame*; None for comment-only or empty frames."""
    lines = [
        line[len(_DATA_FIELD):].removeprefix(" ")
        for line in frame.split("\n")
        if line.startswith(_DATA_FIELD)
    ]
    if not lines:
        return None
    return "\n".join(lines).strip()
