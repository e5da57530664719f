import logging
import sqlite3
from typing import Optional

from uploads_api.schemas import CompletedFile

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "uploads.db"


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize database with the files table."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        # One row per completed upload; rows are never updated
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS files (
                file_id VARCHAR(36) PRIMARY KEY,
                file_name VARCHAR(1024) NOT NULL,
                file_size INTEGER NOT NULL,
                storage_key TEXT NOT NULL,
                download_url TEXT NULL,
                created_at TIMESTAMP NOT NULL
            )
        ''')

        conn.commit()
    finally:
        conn.close()


def add_file(record: CompletedFile, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert the record for a completed upload."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO files (file_id, file_name, file_size, storage_key, download_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (
            record.file_id,
            record.file_name,
            record.file_size,
            record.storage_key,
            record.download_url,
            record.created_at.isoformat(),
        ))
        conn.commit()
    finally:
        conn.close()


def get_file(file_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[CompletedFile]:
    """Retrieve a completed file record, or None if absent."""
    conn = sqlite3.connect(db_path)
    try:
        # Set row_factory to get dictionary-like results
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute('SELECT * FROM files WHERE file_id = ?', (file_id,))

        row = cursor.fetchone()
        if row:
            return CompletedFile(**dict(row))
        return None
    finally:
        conn.close()


class SQLiteMetadataStore:
    """Metadata store for completed files: ``put`` once, ``get`` many times."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        init_db(self.db_path)
        logger.info(f"Metadata store initialized at: {self.db_path}")

    def put(self, record: CompletedFile) -> None:
        add_file(record, self.db_path)
        logger.info(f"Stored record for file {record.file_id}")

    def get(self, file_id: str) -> Optional[CompletedFile]:
        return get_file(file_id, self.db_path)

    def ping(self) -> bool:
        """Check the database answers a trivial query."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("SELECT 1 FROM files LIMIT 1")
            return True
        finally:
            conn.close()
