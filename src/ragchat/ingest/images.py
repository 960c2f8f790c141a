"""Image ingestion: validated uploads stored as base64 with caption + metadata.

Images are opaque payloads here; only the embedding model looks inside them.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from ragchat.db.models import ImageRecord
from ragchat.db.repository import Repository
from ragchat.ingest.documents import IngestValidationError

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5 MB
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


@dataclass(frozen=True)
class ImageInput:
    data: bytes
    filename: str
    mime_type: str
    caption: str = ""
    metadata: dict = field(default_factory=dict)


def image_input(
    data: bytes,
    filename: str,
    mime_type: str | None = None,
    caption: str = "",
    description: str = "",
) -> ImageInput:
    """Validate an image upload.

    Raises:
        IngestValidationError: If the image is empty, too large or of an
            unsupported MIME type.
    """
    if not data:
        raise IngestValidationError("No image provided")
    if len(data) > MAX_IMAGE_SIZE:
        raise IngestValidationError(
            f"Image size exceeds the {MAX_IMAGE_SIZE // (1024 * 1024)}MB limit"
        )
    mime = mime_type or mimetypes.guess_type(filename)[0] or ""
    if mime not in ALLOWED_IMAGE_TYPES:
        raise IngestValidationError(
            f"Unsupported image type: {mime or 'unknown'}. "
            f"Supported types: {', '.join(ALLOWED_IMAGE_TYPES)}"
        )
    return ImageInput(
        data=data,
        filename=filename,
        mime_type=mime,
        caption=caption,
        metadata={"description": description, "fileSize": len(data)},
    )


def is_image_file(filename: str) -> bool:
    return (mimetypes.guess_type(filename)[0] or "").startswith("image/")


class ImageStore:
    """Store, fetch and delete images in the image collection."""

    def __init__(
        self,
        repo: Repository,
        embed_image: Callable[[bytes, str], list[float]],
    ) -> None:
        self._repo = repo
        self._embed = embed_image

    def store(self, image: ImageInput) -> str:
        """Embed and store *image*. Returns the new image id."""
        embedding = self._embed(image.data, image.mime_type)
        image_id = str(uuid.uuid4())
        self._repo.add_image(
            ImageRecord(
                id=image_id,
                filename=image.filename,
                mime_type=image.mime_type,
                image_b64=base64.b64encode(image.data).decode("ascii"),
                caption=image.caption,
                metadata={**image.metadata, "imageId": image_id},
            ),
            embedding,
        )
        logger.info("Stored image '%s' as %s", image.filename, image_id)
        return image_id

    def store_image(
        self,
        data: bytes,
        filename: str,
        mime_type: str | None = None,
        caption: str = "",
        metadata: dict | None = None,
    ) -> str:
        """Validate raw upload bytes, then embed and store them.

        Extra *metadata* is merged over the computed ``fileSize`` entry.

        Raises:
            IngestValidationError: Before anything is embedded or written.
        """
        image = image_input(data, filename, mime_type, caption=caption)
        if metadata:
            image = replace(image, metadata={**image.metadata, **metadata})
        return self.store(image)

    def store_file(self, path: Path, caption: str = "", description: str = "") -> str:
        path = Path(path)
        if not path.is_file():
            raise IngestValidationError(f"File not found: {path}")
        if path.stat().st_size > MAX_IMAGE_SIZE:
            raise IngestValidationError(
                f"Image size exceeds the {MAX_IMAGE_SIZE // (1024 * 1024)}MB limit"
            )
        return self.store(
            image_input(path.read_bytes(), path.name, caption=caption, description=description)
        )

    def get(self, image_id: str) -> tuple[bytes, str, str] | None:
        """Return ``(data, filename, mime_type)`` or None if the id is unknown."""
        record = self._repo.get_image(image_id)
        if record is None:
            return None
        return base64.b64decode(record.image_b64), record.filename, record.mime_type

    def list_images(self) -> list[ImageRecord]:
        return self._repo.list_images()

    def delete(self, image_id: str) -> bool:
        deleted = self._repo.delete_image(image_id)
        if deleted:
            logger.info("Deleted image %s", image_id)
        return deleted
