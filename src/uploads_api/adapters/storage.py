import hashlib
import logging
import os
import shutil
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, Iterator, List, Optional, Union

from botocore.exceptions import ClientError

from uploads_api.errors import IncompleteUploadError, InvalidStateError, NotFoundError
from uploads_api.s3 import multipart
from uploads_api.s3.client import create_s3_client
from uploads_api.settings import Settings
from uploads_api.utils.decorators import log_backend_call

logger = logging.getLogger(__name__)

# Largest slice handed to a single write() during local assembly
WRITE_BLOCK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class PartRef:
    """One confirmed part handed to ``finalize``.

    ``data`` is set for direct-byte backends; ``etag`` is the integrity token.
    """
    part_number: int
    etag: Optional[str] = None
    data: Optional[bytes] = None


@dataclass(frozen=True)
class FinalizeResult:
    location: str
    size: int
    direct_url: Optional[str] = None


@dataclass(frozen=True)
class S3UploadHandle:
    key: str
    upload_id: str


def safe_file_name(file_name: str) -> str:
    """Reduce a client-supplied name to a single safe path component."""
    name = PurePosixPath(file_name.replace("\\", "/")).name.strip()
    if name in ("", ".", ".."):
        return "file"
    return name


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class BaseStorageBackend:
    """Base class for storage backends (to be extended by specific implementations)

    Direct-byte backends (``accepts_bytes = True``) receive part bytes through
    this process via :meth:`sink_part`. Out-of-band backends hand the client a
    scoped URL via :meth:`authorize_part` and report what they received via
    :meth:`confirmed_parts`.
    """

    kind = "base"
    accepts_bytes = False
    streams_downloads = False
    max_part_number: Optional[int] = None

    def begin(self, file_id: str, file_name: str, file_size: int):
        """Allocate a destination and return the backend handle."""
        raise NotImplementedError

    def sink_part(self, handle, part_number: int, data: bytes) -> str:
        """Accept part bytes and return their integrity token."""
        raise NotImplementedError

    def authorize_part(self, handle, part_number: int, expires_in: int) -> str:
        """Return a short-lived URL valid for exactly one part of one upload."""
        raise NotImplementedError

    def confirmed_parts(self, handle) -> Dict[int, str]:
        """Return ``{part_number: etag}`` for parts the backend itself received."""
        raise NotImplementedError

    def finalize(self, handle, parts: List[PartRef]) -> FinalizeResult:
        raise NotImplementedError

    def recover_finalized(self, handle) -> Optional[FinalizeResult]:
        """Return the result of a finalize that went through unobserved, if any."""
        return None

    def abort(self, handle) -> None:
        """Discard partial state. Must tolerate state that is already gone."""
        raise NotImplementedError

    def resolve_download(self, location: str, expires_in: int, file_name: Optional[str] = None) -> Union[str, BinaryIO]:
        """Return a readable stream (local) or a signed URL (remote)."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class LocalBackend(BaseStorageBackend):
    """Stores assembled files under a local directory.

    The handle is the file's storage key relative to ``storage_dir``:
    ``<file_id>/<file_name>``.
    """

    kind = "local"
    accepts_bytes = True
    streams_downloads = True

    def __init__(self, storage_dir: Union[str, Path]):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalBackend initialized at: {self.storage_dir}")

    def _path(self, key: str) -> Path:
        path = (self.storage_dir / key).resolve()
        if self.storage_dir.resolve() not in path.parents:
            raise NotFoundError(f"Storage key {key} is outside the storage directory")
        return path

    @log_backend_call
    def begin(self, file_id: str, file_name: str, file_size: int) -> str:
        key = f"{file_id}/{safe_file_name(file_name)}"
        self._path(key).parent.mkdir(parents=True, exist_ok=True)
        return key

    def sink_part(self, handle: str, part_number: int, data: bytes) -> str:
        if not self._path(handle).parent.is_dir():
            raise InvalidStateError(f"Destination for {handle} no longer exists")
        return md5_hex(data)

    @contextmanager
    def _assembly_writer(self, destination: Path) -> Iterator[BinaryIO]:
        """Open a temporary file beside ``destination``.

        On success the temporary file replaces the destination; on failure it
        is removed, so a half-written file is never visible.
        """
        tmp_path = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.partial")
        out = open(tmp_path, "wb")
        try:
            yield out
            out.flush()
            os.fsync(out.fileno())
            out.close()
            os.replace(tmp_path, destination)
        except BaseException:
            out.close()
            tmp_path.unlink(missing_ok=True)
            raise

    @log_backend_call
    def finalize(self, handle: str, parts: List[PartRef]) -> FinalizeResult:
        if not parts:
            raise IncompleteUploadError("Cannot finalize an upload with zero parts")
        destination = self._path(handle)
        destination.parent.mkdir(parents=True, exist_ok=True)

        written = 0
        with self._assembly_writer(destination) as out:
            for part in sorted(parts, key=lambda p: p.part_number):
                if part.data is None:
                    raise IncompleteUploadError(
                        f"Part {part.part_number} has no buffered data", [part.part_number]
                    )
                view = memoryview(part.data)
                for offset in range(0, len(view), WRITE_BLOCK_SIZE):
                    written += out.write(view[offset:offset + WRITE_BLOCK_SIZE])

        logger.info(f"Assembled {len(parts)} parts into {destination} ({written} bytes)")
        return FinalizeResult(location=handle, size=written)

    def abort(self, handle: str) -> None:
        directory = self._path(handle).parent
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            logger.debug(f"Nothing to discard for {handle}")

    def resolve_download(self, location: str, expires_in: int, file_name: Optional[str] = None) -> BinaryIO:
        path = self._path(location)
        try:
            return open(path, "rb")
        except FileNotFoundError:
            raise NotFoundError(f"Stored file {location} not found on disk")


class S3Backend(BaseStorageBackend):
    """Multipart uploads against an S3-compatible object store.

    Clients PUT part bytes straight to the store using presigned URLs; this
    process only ever sees part numbers and ETags.
    """

    kind = "s3"
    accepts_bytes = False
    max_part_number = 10000

    def __init__(self, bucket_name: str, s3_client, key_prefix: str = "uploads"):
        if not bucket_name:
            raise ValueError("S3_BUCKET_NAME is required for the s3 storage backend")
        self.bucket_name = bucket_name
        self.s3_client = s3_client
        self.key_prefix = key_prefix.strip("/")
        logger.info(f"S3Backend initialized (bucket={self.bucket_name}, key prefix={self.key_prefix})")

    def _key(self, file_id: str, file_name: str) -> str:
        name = safe_file_name(file_name)
        return f"{self.key_prefix}/{file_id}/{name}" if self.key_prefix else f"{file_id}/{name}"

    @log_backend_call
    def begin(self, file_id: str, file_name: str, file_size: int) -> S3UploadHandle:
        key = self._key(file_id, file_name)
        upload_id = multipart.create_multipart_upload(self.bucket_name, key, s3_client=self.s3_client)
        return S3UploadHandle(key=key, upload_id=upload_id)

    def authorize_part(self, handle: S3UploadHandle, part_number: int, expires_in: int) -> str:
        return multipart.generate_upload_part_url(
            self.bucket_name,
            handle.key,
            handle.upload_id,
            part_number,
            expires_in=expires_in,
            s3_client=self.s3_client,
        )

    def confirmed_parts(self, handle: S3UploadHandle) -> Dict[int, str]:
        return multipart.list_uploaded_parts(
            self.bucket_name, handle.key, handle.upload_id, s3_client=self.s3_client
        )

    @log_backend_call
    def finalize(self, handle: S3UploadHandle, parts: List[PartRef]) -> FinalizeResult:
        if not parts:
            raise IncompleteUploadError("Cannot finalize an upload with zero parts")
        ordered = [(part.part_number, part.etag) for part in sorted(parts, key=lambda p: p.part_number)]
        try:
            location = multipart.complete_multipart_upload(
                self.bucket_name, handle.key, handle.upload_id, ordered, s3_client=self.s3_client
            )
        except ClientError as err:
            if not multipart.is_missing_error(err):
                raise
            # An earlier attempt may have completed this upload already
            recovered = self.recover_finalized(handle)
            if recovered is None:
                raise
            return recovered
        size = multipart.fetch_object_size(self.bucket_name, handle.key, s3_client=self.s3_client)
        if size is None:
            raise NotFoundError(f"Object {handle.key} missing right after completion")
        return FinalizeResult(location=handle.key, size=size, direct_url=location)

    def recover_finalized(self, handle: S3UploadHandle) -> Optional[FinalizeResult]:
        """Keys carry the file id, so an object at the key means the upload completed."""
        size = multipart.fetch_object_size(self.bucket_name, handle.key, s3_client=self.s3_client)
        if size is None:
            return None
        logger.info(f"Multipart upload {handle.upload_id} was already completed as {handle.key}")
        return FinalizeResult(location=handle.key, size=size)

    def abort(self, handle: S3UploadHandle) -> None:
        if not multipart.abort_multipart_upload(
            self.bucket_name, handle.key, handle.upload_id, s3_client=self.s3_client
        ):
            logger.debug(f"Multipart upload {handle.upload_id} was already gone")

    def resolve_download(self, location: str, expires_in: int, file_name: Optional[str] = None) -> str:
        if multipart.fetch_object_size(self.bucket_name, location, s3_client=self.s3_client) is None:
            raise NotFoundError(f"Object {location} not found in bucket {self.bucket_name}")
        return multipart.generate_download_url(
            self.bucket_name, location, expires_in, s3_client=self.s3_client, file_name=file_name
        )


class StorageBackendFactory:
    """Factory to initialize the correct storage backend from settings"""

    @staticmethod
    def create(settings: Settings) -> BaseStorageBackend:
        backend_builders = {
            "local": lambda: LocalBackend(settings.storage_dir),
            "s3": lambda: S3Backend(
                bucket_name=settings.s3_bucket_name,
                s3_client=create_s3_client(settings),
                key_prefix=settings.s3_key_prefix,
            ),
        }

        if settings.storage_backend not in backend_builders:
            raise ValueError(
                f"Invalid storage_backend: {settings.storage_backend}. "
                f"Choose from {list(backend_builders.keys())}"
            )

        logger.info(f"Creating storage backend: {settings.storage_backend}")
        return backend_builders[settings.storage_backend]()
