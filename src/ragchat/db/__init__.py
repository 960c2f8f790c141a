"""ragchat vector-search layer (sqlite + sqlite-vec collections)."""

from ragchat.db.connection import Database
from ragchat.db.migrations import MIGRATIONS, run_migrations
from ragchat.db.schema import (
    IMAGE_COLLECTION,
    TEXT_COLLECTION,
    collection_status,
    create_collections,
    drop_collections,
    initialize,
)
from ragchat.db.vectors import certainty_from_distance, ensure_vec_table, vec_table_name

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "TEXT_COLLECTION",
    "IMAGE_COLLECTION",
    "collection_status",
    "create_collections",
    "drop_collections",
    "certainty_from_distance",
    "ensure_vec_table",
    "vec_table_name",
]
