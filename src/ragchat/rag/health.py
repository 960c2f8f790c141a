"""Health gate for the vector store and the generation service.

Each probe gets ``1 + retries`` attempts with exponential backoff
(``backoff``, ``2 * backoff``, ...) before the service is declared down.
Both services up with missing collections is a valid degraded state: the
gate triggers collection creation once per detected-missing state instead
of on every turn.
"""

from __future__ import annotations

import http.client
import json
import logging
import sqlite3
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ragchat.db.connection import Database, vec_version
from ragchat.db.schema import IMAGE_COLLECTION, TEXT_COLLECTION, collection_status

logger = logging.getLogger(__name__)

Probe = Callable[[], bool]


class ServiceUnavailableError(RuntimeError):
    """Raised when a chat turn is attempted while a service is down."""

    def __init__(self, status: HealthStatus) -> None:
        down = [
            name
            for name, up in (
                ("vector store", status.vector_store_up),
                ("generation service", status.generation_service_up),
            )
            if not up
        ]
        super().__init__(f"Service unavailable: {', '.join(down)}")
        self.status = status


@dataclass(frozen=True)
class HealthStatus:
    vector_store_up: bool
    generation_service_up: bool
    text_collection_exists: bool = False
    image_collection_exists: bool = False

    @property
    def schema_initialized(self) -> bool:
        return self.text_collection_exists and self.image_collection_exists

    @property
    def all_healthy(self) -> bool:
        """Both services reachable; collections may still be created lazily."""
        return self.vector_store_up and self.generation_service_up

    @property
    def degraded(self) -> bool:
        return self.all_healthy and not self.schema_initialized

    @property
    def label(self) -> str:
        if not self.all_healthy:
            return "unavailable"
        return "degraded" if self.degraded else "ok"


# ------------------------------------------------------------------
# Probes
# ------------------------------------------------------------------


def probe_generation_service(api_base: str, timeout: float = 2.0) -> bool:
    """Return True if the Ollama server answers ``GET /api/tags``."""
    url = f"{api_base.rstrip('/')}/api/tags"
    request = urllib.request.Request(url, method="GET")
    with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
        if response.status != 200:
            return False
        json.loads(response.read() or b"{}")
    return True


def list_generation_models(api_base: str, timeout: float = 2.0) -> list[str]:
    """Return the model names the Ollama server reports."""
    url = f"{api_base.rstrip('/')}/api/tags"
    with urllib.request.urlopen(url, timeout=timeout) as response:  # noqa: S310
        data = json.loads(response.read() or b"{}")
    return [m.get("name", "") for m in data.get("models", [])]


def probe_vector_store(db_path: Path | str, timeout: float = 2.0) -> bool:
    """Return True if the database opens with sqlite-vec loaded."""
    with Database(db_path, timeout=timeout, create=False) as conn:
        vec_version(conn)
    return True


def read_collection_status(db_path: Path | str, timeout: float = 2.0) -> dict[str, bool]:
    with Database(db_path, timeout=timeout, create=False) as conn:
        return collection_status(conn)


def with_retries(
    probe: Probe,
    retries: int = 2,
    backoff: float = 0.3,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "service",
) -> bool:
    """Run *probe* until it returns True, at most ``1 + retries`` times.

    Exceptions and False results both count as failed attempts.
    """
    delay = backoff
    for attempt in range(retries + 1):
        try:
            if probe():
                return True
            logger.debug("%s probe attempt %d reported down", name, attempt + 1)
        except (
            OSError,
            urllib.error.URLError,
            http.client.HTTPException,
            sqlite3.Error,
            ValueError,
        ) as exc:
            logger.debug("%s probe attempt %d failed: %s", name, attempt + 1, exc)
        if attempt < retries:
            sleep(delay)
            delay *= 2
    logger.warning("%s is unavailable after %d attempts", name, retries + 1)
    return False


# ------------------------------------------------------------------
# Gate
# ------------------------------------------------------------------


class HealthGate:
    """Authorize chat turns against service health.

    Args:
        vector_probe: Returns True when the vector store is reachable.
        generation_probe: Returns True when the generation service is reachable.
        schema_probe: Returns ``{collection: exists}``.
        schema_initializer: Creates missing collections.
        retries: Extra attempts per probe.
        backoff: Initial backoff delay in seconds.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        vector_probe: Probe,
        generation_probe: Probe,
        schema_probe: Callable[[], dict[str, bool]],
        schema_initializer: Callable[[], object],
        retries: int = 2,
        backoff: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._vector_probe = vector_probe
        self._generation_probe = generation_probe
        self._schema_probe = schema_probe
        self._schema_initializer = schema_initializer
        self._retries = retries
        self._backoff = backoff
        self._sleep = sleep
        self._schema_trigger_armed = True

    def check_health(self) -> HealthStatus:
        """Probe both services (with retries) and the collection state. Read-only."""
        vector_up = with_retries(
            self._vector_probe, self._retries, self._backoff, self._sleep, "vector store"
        )
        generation_up = with_retries(
            self._generation_probe,
            self._retries,
            self._backoff,
            self._sleep,
            "generation service",
        )

        collections: dict[str, bool] = {}
        if vector_up:
            try:
                collections = self._schema_probe()
            except sqlite3.Error as exc:
                logger.warning("Could not read collection status: %s", exc)

        return HealthStatus(
            vector_store_up=vector_up,
            generation_service_up=generation_up,
            text_collection_exists=collections.get(TEXT_COLLECTION, False),
            image_collection_exists=collections.get(IMAGE_COLLECTION, False),
        )

    def ensure_schema(self) -> None:
        """Create any missing collections (idempotent)."""
        self._schema_initializer()

    def authorize(self) -> HealthStatus:
        """Return the health status if a chat turn may run.

        Raises:
            ServiceUnavailableError: If either service is down.
        """
        status = self.check_health()
        if not status.all_healthy:
            raise ServiceUnavailableError(status)

        if status.schema_initialized:
            self._schema_trigger_armed = True
            return status

        if self._schema_trigger_armed:
            self._schema_trigger_armed = False
            logger.info("Collections missing; initializing schema")
            try:
                self.ensure_schema()
            except sqlite3.Error as exc:
                self._schema_trigger_armed = True
                logger.warning("Schema initialization failed: %s", exc)
        return status
