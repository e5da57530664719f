"""Resolve completed files into a byte stream or a short-lived URL."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Optional, Tuple

from uploads_api.adapters.storage import BaseStorageBackend
from uploads_api.errors import BackendError, InvalidStateError, NotFoundError, UploadError, ValidationError
from uploads_api.schemas import CompletedFile

logger = logging.getLogger(__name__)

CONTENT_PATH_TEMPLATE = "/v1/downloads/{file_id}/content"


@dataclass(frozen=True)
class DownloadInfo:
    file_name: str
    file_size: int
    download_url: str
    created_at: datetime


class RetrievalGateway:
    """Looks up file records and asks the backend for a fresh way to fetch them.

    URLs are minted on every call and never cached, since earlier ones may
    have expired.
    """

    def __init__(
        self,
        backend: BaseStorageBackend,
        metadata_store,
        default_ttl: int = 3600,
        max_ttl: int = 7 * 24 * 3600,
    ):
        self.backend = backend
        self.metadata_store = metadata_store
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    def lookup(self, file_id: str) -> CompletedFile:
        record = self.metadata_store.get(file_id)
        if record is None:
            raise NotFoundError(f"File {file_id} not found")
        return record

    def _ttl(self, ttl: Optional[int]) -> int:
        if ttl is None:
            return self.default_ttl
        if ttl <= 0:
            raise ValidationError("ttl must be a positive number of seconds")
        return min(ttl, self.max_ttl)

    def _resolve(self, record: CompletedFile, ttl: int):
        try:
            return self.backend.resolve_download(record.storage_key, ttl, file_name=record.file_name)
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"Resolving file {record.file_id} failed: {str(e)}")
            raise BackendError(f"Storage backend resolve_download failed: {str(e)}") from e

    def resolve_download(self, file_id: str, ttl: Optional[int] = None) -> DownloadInfo:
        """Describe a completed file and how to fetch it right now."""
        record = self.lookup(file_id)
        target = self._resolve(record, self._ttl(ttl))

        if isinstance(target, str):
            download_url = target
        else:
            # Local bytes are served through the content route; the handle
            # only confirms the file is still on disk.
            target.close()
            download_url = CONTENT_PATH_TEMPLATE.format(file_id=file_id)

        return DownloadInfo(
            file_name=record.file_name,
            file_size=record.file_size,
            download_url=download_url,
            created_at=record.created_at,
        )

    def open_download(self, file_id: str) -> Tuple[CompletedFile, BinaryIO]:
        """Open the stored bytes of a file. Only for backends that stream locally."""
        if not self.backend.streams_downloads:
            raise InvalidStateError(
                f"Direct file downloads are not available for the {self.backend.kind} backend; "
                "request a download URL instead"
            )
        record = self.lookup(file_id)
        stream = self._resolve(record, self.default_ttl)
        return record, stream
