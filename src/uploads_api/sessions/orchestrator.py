"""
Upload orchestrator: drives sessions through
``CREATED -> RECEIVING -> COMPLETING -> DONE`` (or ``ABORTED``).

The orchestrator never branches on which backend it talks to. It only asks
whether the backend takes part bytes directly (``accepts_bytes``) and which
parts are confirmed.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from uploads_api.adapters.storage import BaseStorageBackend, FinalizeResult, PartRef
from uploads_api.errors import (
    BackendError,
    BackendTimeoutError,
    IncompleteUploadError,
    InvalidStateError,
    NotFoundError,
    UploadError,
    ValidationError,
)
from uploads_api.schemas import CompletedFile
from uploads_api.sessions.buffer import ChunkBuffer
from uploads_api.sessions.registry import SessionRegistry, SessionState, UploadSession
from uploads_api.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_WORKERS = 16


@dataclass(frozen=True)
class BeginResult:
    session_id: str
    file_id: str
    chunk_size_hint: int
    backend_kind: str


@dataclass(frozen=True)
class PartAck:
    """Acknowledgement of ``accept_part``.

    Direct-byte backends fill ``etag``; out-of-band backends fill
    ``upload_url`` and ``expires_in``.
    """
    part_number: int
    etag: Optional[str] = None
    upload_url: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class ManifestEntry:
    part_number: int
    etag: Optional[str] = None


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    file_id: str
    file_name: str
    declared_size: int
    state: SessionState
    received_parts: List[int] = field(default_factory=list)
    received_bytes: Optional[int] = None


def _normalize_etag(etag: str) -> str:
    return etag.strip().strip('"').lower()


class UploadOrchestrator:
    """Coordinates the session registry, the chunk buffer and one storage backend."""

    def __init__(
        self,
        backend: BaseStorageBackend,
        metadata_store,
        max_file_size: int,
        chunk_size_hint: int,
        part_url_ttl: int = 3600,
        backend_timeout: float = 30.0,
        buffer: Optional[ChunkBuffer] = None,
        registry: Optional[SessionRegistry] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.backend = backend
        self.metadata_store = metadata_store
        self.max_file_size = max_file_size
        self.chunk_size_hint = chunk_size_hint
        self.part_url_ttl = part_url_ttl
        self.backend_timeout = backend_timeout
        self.buffer = buffer if buffer is not None else ChunkBuffer()
        self.registry = registry if registry is not None else SessionRegistry()
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=DEFAULT_BACKEND_WORKERS, thread_name_prefix="storage-backend"
        )

    @classmethod
    def from_settings(cls, settings: Settings, backend: BaseStorageBackend, metadata_store) -> "UploadOrchestrator":
        return cls(
            backend=backend,
            metadata_store=metadata_store,
            max_file_size=settings.max_file_size_bytes,
            chunk_size_hint=settings.chunk_size_bytes,
            part_url_ttl=settings.part_url_ttl_seconds,
            backend_timeout=settings.backend_timeout_seconds,
            buffer=ChunkBuffer(max_bytes=settings.max_buffered_bytes),
        )

    @property
    def backend_kind(self) -> str:
        return self.backend.kind

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    def _call_backend(self, operation: str, func: Callable, *args):
        """Run a backend call with a time limit.

        Upload errors raised by the backend pass through unchanged; anything
        else surfaces as :class:`BackendError`. No retries happen here.
        """
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.backend_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.error(f"Backend {operation} timed out after {self.backend_timeout}s")
            raise BackendTimeoutError(
                f"Storage backend {operation} timed out after {self.backend_timeout}s"
            )
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"Backend {operation} failed: {str(e)}")
            raise BackendError(f"Storage backend {operation} failed: {str(e)}") from e

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _validate_part_number(self, part_number) -> int:
        if isinstance(part_number, bool) or not isinstance(part_number, int):
            raise ValidationError(f"Part number must be an integer, got {part_number!r}")
        if part_number < 1:
            raise ValidationError(f"Part number must be 1 or greater, got {part_number}")
        limit = self.backend.max_part_number
        if limit is not None and part_number > limit:
            raise ValidationError(f"Part number {part_number} exceeds the backend limit of {limit}")
        return part_number

    def _normalize_manifest(self, manifest: Iterable[Union[ManifestEntry, int]]) -> Dict[int, ManifestEntry]:
        """Index the manifest by part number; a repeated number keeps its last entry."""
        entries: Dict[int, ManifestEntry] = {}
        for item in manifest:
            entry = item if isinstance(item, ManifestEntry) else ManifestEntry(part_number=item)
            self._validate_part_number(entry.part_number)
            entries[entry.part_number] = entry
        return entries

    @contextmanager
    def _locked_session(self, session_id: str) -> Iterator[UploadSession]:
        """Hold a session's lock; a session that ended while we waited is gone."""
        session = self.registry.get(session_id)
        with session.lock:
            if session.is_terminal:
                raise NotFoundError(f"Upload session {session_id} not found")
            yield session

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def begin_session(self, file_name: str, declared_size: int) -> BeginResult:
        """Open a session and allocate its backend-side destination.

        Nothing is registered unless the backend allocation succeeds.
        """
        if not isinstance(file_name, str) or not file_name.strip():
            raise ValidationError("fileName is required")
        if isinstance(declared_size, bool) or not isinstance(declared_size, int):
            raise ValidationError(f"fileSize must be an integer, got {declared_size!r}")
        if declared_size <= 0:
            raise ValidationError("fileSize must be greater than zero")
        if declared_size > self.max_file_size:
            raise ValidationError(
                f"fileSize {declared_size} exceeds the {self.max_file_size} byte limit"
            )
        if self.registry.closed:
            raise InvalidStateError("Uploads are shutting down; no new sessions are accepted")

        file_id = str(uuid.uuid4())
        session_id = str(uuid.uuid4())
        handle = self._call_backend("begin", self.backend.begin, file_id, file_name, declared_size)

        session = UploadSession(
            session_id=session_id,
            file_id=file_id,
            file_name=file_name,
            declared_size=declared_size,
            backend_handle=handle,
        )
        try:
            self.registry.add(session)
        except UploadError:
            self._discard_backend_state(session)
            raise

        logger.info(
            f"Session {session_id} created for file {file_id} "
            f"({file_name}, {declared_size} bytes, backend={self.backend_kind})"
        )
        return BeginResult(
            session_id=session_id,
            file_id=file_id,
            chunk_size_hint=self.chunk_size_hint,
            backend_kind=self.backend_kind,
        )

    def accept_part(self, session_id: str, part_number: int, data: Optional[bytes] = None) -> PartAck:
        """Buffer a part's bytes, or authorize an out-of-band part upload.

        Re-sending a part number replaces the bytes sent earlier.
        """
        self._validate_part_number(part_number)

        with self._locked_session(session_id) as session:
            session.require_state(SessionState.CREATED, SessionState.RECEIVING)

            if not self.backend.accepts_bytes:
                if data is not None:
                    raise ValidationError(
                        f"Direct chunk uploads are not available for the {self.backend_kind} backend; "
                        "request an upload URL instead"
                    )
                url = self._call_backend(
                    "authorize_part",
                    self.backend.authorize_part,
                    session.backend_handle,
                    part_number,
                    self.part_url_ttl,
                )
                session.transition_to(SessionState.RECEIVING)
                logger.debug(f"Session {session_id}: authorized part {part_number}")
                return PartAck(part_number=part_number, upload_url=url, expires_in=self.part_url_ttl)

            if data is None:
                raise ValidationError("Part bytes are required for this backend")
            if len(data) == 0:
                raise ValidationError(f"Part {part_number} is empty")

            buffered = (
                self.buffer.session_bytes(session_id)
                - self.buffer.part_size(session_id, part_number)
                + len(data)
            )
            if buffered > self.max_file_size:
                raise ValidationError(
                    f"Session {session_id} would hold {buffered} bytes, over the "
                    f"{self.max_file_size} byte limit"
                )

            etag = self._call_backend(
                "sink_part", self.backend.sink_part, session.backend_handle, part_number, data
            )
            self.buffer.put(session_id, part_number, data)
            session.received_parts[part_number] = etag
            session.transition_to(SessionState.RECEIVING)

        logger.debug(f"Session {session_id}: accepted part {part_number} ({len(data)} bytes)")
        return PartAck(part_number=part_number, etag=etag)

    def _finalize(self, session: UploadSession, entries: Dict[int, ManifestEntry]) -> FinalizeResult:
        """Check the manifest against the confirmed parts and assemble the file."""
        if not entries:
            raise IncompleteUploadError("Manifest lists no parts")

        if self.backend.accepts_bytes:
            confirmed = dict(session.received_parts)
        else:
            confirmed = self._call_backend(
                "confirmed_parts", self.backend.confirmed_parts, session.backend_handle
            )

        part_numbers = sorted(entries)
        missing = [number for number in part_numbers if number not in confirmed]
        if missing:
            raise IncompleteUploadError(
                f"Part {missing[0]} was never received for session {session.session_id}", missing
            )

        mismatched = [
            number for number in part_numbers
            if entries[number].etag
            and _normalize_etag(entries[number].etag) != _normalize_etag(confirmed[number])
        ]
        if mismatched:
            raise IncompleteUploadError(
                f"Part {mismatched[0]} does not match the integrity token in the manifest",
                mismatched,
            )

        payloads = dict(self.buffer.ordered(session.session_id, part_numbers)) if self.backend.accepts_bytes else {}
        parts = [
            PartRef(
                part_number=number,
                etag=entries[number].etag or confirmed[number],
                data=payloads.get(number),
            )
            for number in part_numbers
        ]

        if not self.backend.accepts_bytes:
            # The part listing is gone once the backend completes the upload
            session.received_parts = {part.part_number: part.etag for part in parts}
        session.transition_to(SessionState.COMPLETING)
        return self._call_backend("finalize", self.backend.finalize, session.backend_handle, parts)

    def complete_session(self, session_id: str, manifest: Iterable[Union[ManifestEntry, int]]) -> CompletedFile:
        """Finalize a session and write its file record.

        Parts are assembled in ascending part-number order whatever order they
        arrived in or were listed in. If the backend or the record write fails
        the session stays in COMPLETING so the caller can retry or abort. A
        retry after the backend already assembled the file only writes the
        record.
        """
        entries = self._normalize_manifest(manifest)

        with self._locked_session(session_id) as session:
            session.require_state(SessionState.CREATED, SessionState.RECEIVING, SessionState.COMPLETING)

            if session.state == SessionState.COMPLETING and session.finalize_result is None:
                # An earlier finalize may have timed out here but still succeeded
                session.finalize_result = self._call_backend(
                    "recover_finalized", self.backend.recover_finalized, session.backend_handle
                )
                if session.finalize_result is not None:
                    logger.info(f"Session {session_id}: backend had already assembled the file")
            if session.finalize_result is None:
                session.finalize_result = self._finalize(session, entries)
            result = session.finalize_result

            record = CompletedFile(
                file_id=session.file_id,
                file_name=session.file_name,
                file_size=result.size,
                storage_key=result.location,
                download_url=result.direct_url,
                created_at=self._clock(),
            )
            try:
                self.metadata_store.put(record)
            except Exception as e:
                logger.error(f"Session {session_id}: writing file record failed: {str(e)}")
                raise BackendError(f"Saving the file record failed: {str(e)}") from e

            session.transition_to(SessionState.DONE)
            self.registry.evict(session_id)
            self.buffer.release(session_id)

        logger.info(f"Session {session_id} completed: file {record.file_id} ({record.file_size} bytes)")
        return record

    def abort_session(self, session_id: str) -> None:
        """Abort a session and discard its partial state.

        Waits for any call already working on the session. A second abort,
        or an abort that lost the race to completion, raises
        :class:`NotFoundError`. Backend cleanup is best effort.
        """
        with self._locked_session(session_id) as session:
            session.transition_to(SessionState.ABORTED)
            self.registry.evict(session_id)
            freed = self.buffer.release(session_id)

        self._discard_backend_state(session)
        logger.info(f"Session {session_id} aborted ({freed} buffered bytes released)")

    def _discard_backend_state(self, session: UploadSession) -> None:
        try:
            self._call_backend("abort", self.backend.abort, session.backend_handle)
        except UploadError as e:
            logger.warning(f"Session {session.session_id}: backend cleanup failed, ignoring: {e.message}")

    def describe_session(self, session_id: str) -> SessionStatus:
        """Report a session's state and the parts received so far."""
        with self._locked_session(session_id) as session:
            if self.backend.accepts_bytes:
                received = sorted(session.received_parts)
                received_bytes = self.buffer.session_bytes(session_id)
            elif session.state == SessionState.COMPLETING:
                received = sorted(session.received_parts)
                received_bytes = None
            else:
                received = sorted(
                    self._call_backend("confirmed_parts", self.backend.confirmed_parts, session.backend_handle)
                )
                received_bytes = None
            return SessionStatus(
                session_id=session.session_id,
                file_id=session.file_id,
                file_name=session.file_name,
                declared_size=session.declared_size,
                state=session.state,
                received_parts=received,
                received_bytes=received_bytes,
            )


    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reap_idle_sessions(self, max_idle_seconds: float) -> List[str]:
        """Abort sessions with no activity for ``max_idle_seconds``."""
        reaped = []
        for session in self.registry.idle_sessions(max_idle_seconds):
            try:
                self.abort_session(session.session_id)
            except UploadError as e:
                logger.debug(f"Session {session.session_id} not reaped: {e.message}")
                continue
            reaped.append(session.session_id)
        if reaped:
            logger.info(f"Reaped {len(reaped)} idle sessions")
        return reaped

    def shutdown(self) -> None:
        """Refuse new sessions, abort the open ones and stop backend workers."""
        open_sessions = self.registry.close()
        for session in open_sessions:
            try:
                self.abort_session(session.session_id)
            except UploadError as e:
                logger.warning(f"Session {session.session_id} not aborted during shutdown: {e.message}")
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.backend.close()
        logger.info(f"Upload orchestrator stopped ({len(open_sessions)} open sessions aborted)")

    @property
    def open_sessions(self) -> int:
        return len(self.registry)
