"""SQLite-backed metadata store for completed files."""

from .local import SQLiteMetadataStore

__all__ = ["SQLiteMetadataStore"]
