"""Domain models for the ragchat vector-search layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DocumentChunk:
    """One retrievable segment of an ingested document.

    ``chunk_index`` / ``total_chunks`` are metadata, not a storage key;
    ``chunk_id`` is the stored identity.
    """

    chunk_id: str
    content: str
    source_id: str
    title: str
    chunk_index: int
    total_chunks: int
    metadata: dict = field(default_factory=dict)
    created_at: str | None = None

    @property
    def metadata_json(self) -> str:
        return json.dumps(self.metadata, sort_keys=True)


@dataclass(frozen=True)
class ImageRecord:
    """A stored image: base64 payload plus caption and metadata."""

    id: str
    filename: str
    mime_type: str
    image_b64: str
    caption: str = ""
    metadata: dict = field(default_factory=dict)
    created_at: str | None = None
