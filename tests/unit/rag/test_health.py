"""Tests for the health gate and service probes."""

from __future__ import annotations

import http.client
import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from ragchat.rag.health import (
    HealthGate,
    HealthStatus,
    ServiceUnavailableError,
    list_generation_models,
    probe_generation_service,
    probe_vector_store,
    read_collection_status,
    with_retries,
)

_ALL = {"text_documents": True, "image_documents": True}
_NONE = {"text_documents": False, "image_documents": False}


def _gate(vector=True, generation=True, schema=None, initializer=None, sleep=None, retries=2):
    return HealthGate(
        vector_probe=vector if callable(vector) else (lambda: vector),
        generation_probe=generation if callable(generation) else (lambda: generation),
        schema_probe=schema or (lambda: dict(_ALL)),
        schema_initializer=initializer or MagicMock(),
        retries=retries,
        backoff=0.3,
        sleep=sleep or (lambda _s: None),
    )


# ------------------------------------------------------------------
# with_retries
# ------------------------------------------------------------------


def test_with_retries_backs_off_exponentially():
    delays = []
    probe = MagicMock(side_effect=[OSError("refused"), False, True])

    assert with_retries(probe, retries=2, backoff=0.3, sleep=delays.append) is True
    assert probe.call_count == 3
    assert delays == pytest.approx([0.3, 0.6])


def test_with_retries_gives_up():
    delays = []
    probe = MagicMock(side_effect=OSError("refused"))

    assert with_retries(probe, retries=2, backoff=0.3, sleep=delays.append) is False
    assert probe.call_count == 3
    assert len(delays) == 2


@pytest.mark.parametrize(
    "error",
    [
        http.client.IncompleteRead(b""),
        http.client.BadStatusLine("garbage"),
        http.client.RemoteDisconnected("closed"),
    ],
)
def test_with_retries_treats_http_protocol_errors_as_down(error):
    probe = MagicMock(side_effect=error)

    assert with_retries(probe, retries=1, sleep=lambda _s: None) is False
    assert probe.call_count == 2


def test_with_retries_zero_retries_no_sleep():
    sleep = MagicMock()
    assert with_retries(lambda: False, retries=0, sleep=sleep) is False
    sleep.assert_not_called()


def test_with_retries_unexpected_error_propagates():
    def probe():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        with_retries(probe, retries=1, sleep=lambda _s: None)


# ------------------------------------------------------------------
# HealthStatus
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "status,label",
    [
        (HealthStatus(True, True, True, True), "ok"),
        (HealthStatus(True, True, True, False), "degraded"),
        (HealthStatus(False, True), "unavailable"),
        (HealthStatus(True, False, True, True), "unavailable"),
    ],
)
def test_health_status_label(status, label):
    assert status.label == label


def test_service_unavailable_error_names_down_services():
    error = ServiceUnavailableError(HealthStatus(False, False))
    assert "vector store" in str(error)
    assert "generation service" in str(error)
    assert error.status.all_healthy is False


# ------------------------------------------------------------------
# HealthGate
# ------------------------------------------------------------------


def test_check_health_all_ok():
    status = _gate().check_health()
    assert status.all_healthy
    assert status.schema_initialized


def test_check_health_skips_schema_when_store_down():
    schema = MagicMock(return_value=dict(_ALL))
    status = _gate(vector=False, schema=schema).check_health()
    assert status.vector_store_up is False
    assert status.schema_initialized is False
    schema.assert_not_called()


def test_check_health_schema_read_failure_reports_missing():
    def broken_schema():
        raise sqlite3.OperationalError("locked")

    status = _gate(schema=broken_schema).check_health()
    assert status.degraded


def test_authorize_raises_when_generation_down():
    with pytest.raises(ServiceUnavailableError) as info:
        _gate(generation=False).authorize()
    assert info.value.status.generation_service_up is False


def test_authorize_retries_before_failing():
    sleeps = []
    probe = MagicMock(return_value=False)
    with pytest.raises(ServiceUnavailableError):
        _gate(generation=probe, sleep=sleeps.append, retries=2).authorize()
    assert probe.call_count == 3
    assert sleeps == pytest.approx([0.3, 0.6])


def test_authorize_recovers_after_transient_failure():
    probe = MagicMock(side_effect=[OSError("refused"), True])
    status = _gate(generation=probe).authorize()
    assert status.all_healthy


def test_authorize_triggers_schema_once_while_missing():
    initializer = MagicMock()
    gate = _gate(schema=lambda: dict(_NONE), initializer=initializer)

    gate.authorize()
    gate.authorize()
    gate.authorize()

    initializer.assert_called_once()


def test_authorize_rearms_after_schema_seen():
    states = iter([_NONE, _ALL, _NONE])
    initializer = MagicMock()
    gate = _gate(schema=lambda: dict(next(states)), initializer=initializer)

    gate.authorize()
    gate.authorize()
    gate.authorize()

    assert initializer.call_count == 2


def test_authorize_rearms_after_failed_initialization():
    initializer = MagicMock(side_effect=[sqlite3.OperationalError("disk full"), None])
    gate = _gate(schema=lambda: dict(_NONE), initializer=initializer)

    status = gate.authorize()
    gate.authorize()

    assert status.degraded
    assert initializer.call_count == 2


def test_ensure_schema_delegates():
    initializer = MagicMock()
    _gate(initializer=initializer).ensure_schema()
    initializer.assert_called_once_with()


# ------------------------------------------------------------------
# Probes
# ------------------------------------------------------------------


def _http_response(body: bytes, status: int = 200):
    response = MagicMock()
    response.status = status
    response.read.return_value = body
    response.__enter__.return_value = response
    return response


def test_probe_generation_service_ok():
    response = _http_response(b'{"models": []}')
    with patch("ragchat.rag.health.urllib.request.urlopen", return_value=response) as mock_open:
        assert probe_generation_service("http://localhost:11434/") is True
    request = mock_open.call_args.args[0]
    assert request.full_url == "http://localhost:11434/api/tags"


def test_probe_generation_service_non_200():
    with patch(
        "ragchat.rag.health.urllib.request.urlopen", return_value=_http_response(b"", 503)
    ):
        assert probe_generation_service("http://localhost:11434") is False


def test_list_generation_models():
    body = b'{"models": [{"name": "llama3:latest"}, {"name": "nomic-embed-text:latest"}]}'
    with patch("ragchat.rag.health.urllib.request.urlopen", return_value=_http_response(body)):
        assert list_generation_models("http://localhost:11434") == [
            "llama3:latest",
            "nomic-embed-text:latest",
        ]


def test_probe_vector_store_and_collection_status(tmp_db, tmp_path):
    db_path = tmp_path / ".ragchat.db"
    assert probe_vector_store(db_path) is True
    assert read_collection_status(db_path) == _ALL
