"""ragchat ingest pipeline — chunker, document and image ingestion."""

from ragchat.ingest.chunker import TextChunker, chunk_text
from ragchat.ingest.documents import DocumentIngestor, DocumentInput, IngestValidationError
from ragchat.ingest.images import ImageInput, ImageStore

__all__ = [
    "DocumentIngestor",
    "DocumentInput",
    "ImageInput",
    "ImageStore",
    "IngestValidationError",
    "TextChunker",
    "chunk_text",
]
