"""Tests for event-stream framing and decoding."""

from __future__ import annotations

import pytest

from ragchat.rag.stream import (
    STREAM_ERROR_MESSAGE,
    StreamDecoder,
    StreamError,
    StreamState,
    StreamStateError,
    encode_frame,
    frames_from_deltas,
)


def _frames(*deltas: str) -> bytes:
    return b"".join(frames_from_deltas(deltas))


# ------------------------------------------------------------------
# Producer
# ------------------------------------------------------------------


def test_encode_frame():
    assert encode_frame({"text": "hé"}) == 'data: {"text": "hé"}\n\n'.encode("utf-8")
    assert encode_frame("[DONE]") == b"data: [DONE]\n\n"


def test_frames_from_deltas_ends_with_done():
    frames = list(frames_from_deltas(["Hel", "", "lo"]))
    assert frames == [
        b'data: {"text": "Hel"}\n\n',
        b'data: {"text": "lo"}\n\n',
        b"data: [DONE]\n\n",
    ]


def test_frames_from_deltas_reports_failure_in_band():
    def broken():
        yield "partial"
        raise ConnectionError("reset")

    frames = list(frames_from_deltas(broken()))
    assert frames[-1] == encode_frame({"error": STREAM_ERROR_MESSAGE})
    assert b"[DONE]" not in b"".join(frames)


# ------------------------------------------------------------------
# Decoder
# ------------------------------------------------------------------


def test_decode_accumulates_text():
    updates = []
    decoder = StreamDecoder()

    text = decoder.decode(frames_from_deltas(["Hel", "lo"]), on_text=updates.append)

    assert text == "Hello"
    assert updates == ["Hel", "Hello"]
    assert decoder.state is StreamState.DONE


def test_decode_frame_split_mid_json():
    payload = _frames("Hello", " world")
    pieces = [payload[:9], payload[9:23], payload[23:]]
    assert StreamDecoder().decode(pieces) == "Hello world"


def test_decode_byte_at_a_time():
    payload = _frames("a", "b", "c")
    assert StreamDecoder().decode(payload[i:i + 1] for i in range(len(payload))) == "abc"


def test_decode_multibyte_utf8_split_across_reads():
    payload = _frames("café ☕")
    split = payload.index("☕".encode("utf-8")) + 1
    assert StreamDecoder().decode([payload[:split], payload[split:]]) == "café ☕"


def test_decode_accepts_crlf_delimiters():
    payload = b'data: {"text": "x"}\r\n\r\ndata: [DONE]\r\n\r\n'
    assert StreamDecoder().decode([payload]) == "x"


def test_decode_ignores_comment_frames():
    payload = b': keep-alive\n\n' + _frames("ok")
    assert StreamDecoder().decode([payload]) == "ok"


def test_trailing_done_without_delimiter():
    payload = b'data: {"text": "x"}\n\ndata: [DONE]'
    assert StreamDecoder().decode([payload]) == "x"


def test_error_frame_keeps_partial_text():
    payload = _frames("Par") + encode_frame({"error": "model crashed"})
    decoder = StreamDecoder()

    with pytest.raises(StreamError, match="model crashed") as info:
        decoder.decode([payload])

    assert info.value.partial == "Par"
    assert decoder.state is StreamState.ERRORED


def test_malformed_frame_errors():
    with pytest.raises(StreamError, match="Malformed"):
        StreamDecoder().decode([b"data: {not json}\n\n"])


def test_non_object_frame_errors():
    with pytest.raises(StreamError, match="Malformed"):
        StreamDecoder().decode([b"data: [1, 2]\n\n"])


def test_invalid_utf8_errors():
    with pytest.raises(StreamError, match="UTF-8"):
        StreamDecoder().decode([b"data: \xff\xfe\n\n"])


def test_truncated_stream_errors():
    payload = b'data: {"text": "half"}\n\n'
    with pytest.raises(StreamError, match=r"\[DONE\]") as info:
        StreamDecoder().decode([payload])
    assert info.value.partial == "half"


def test_empty_transport_is_truncated():
    with pytest.raises(StreamError):
        StreamDecoder().decode([])


def test_transport_exception_chained():
    def transport():
        yield b'data: {"text": "so far"}\n\n'
        raise ConnectionResetError("peer reset")

    with pytest.raises(StreamError, match="Transport failed") as info:
        StreamDecoder().decode(transport())

    assert info.value.partial == "so far"
    assert isinstance(info.value.__cause__, ConnectionResetError)


def test_feed_after_done_raises_state_error():
    decoder = StreamDecoder()
    decoder.decode([_frames("x")])
    with pytest.raises(StreamStateError):
        decoder.feed(b'data: {"text": "more"}\n\n')


def test_feed_after_error_raises_state_error():
    decoder = StreamDecoder()
    with pytest.raises(StreamError):
        decoder.feed(encode_frame({"error": "bad"}))
    with pytest.raises(StreamStateError):
        decoder.feed(b"data: [DONE]\n\n")


def test_bytes_after_done_are_ignored():
    payload = _frames("x") + b'data: {"text": "ignored"}\n\n'
    assert StreamDecoder().decode([payload]) == "x"


def test_abort_moves_to_errored():
    decoder = StreamDecoder()
    decoder.feed(b'data: {"text": "x"}\n\n')
    decoder.abort("cancelled")
    assert decoder.state is StreamState.ERRORED
    with pytest.raises(StreamError, match="cancelled"):
        decoder.finish()
