import logging

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Path,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool

from uploads_api.dependencies import get_app_settings, get_orchestrator
from uploads_api.errors import ChunkTooLargeError
from uploads_api.schemas import (
    DOWNLOAD_PAGE_TEMPLATE,
    AbortUploadRequest,
    ChunkAcceptedResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    MessageResponse,
    PartAuthorizationRequest,
    PartAuthorizationResponse,
    StartUploadRequest,
    StartUploadResponse,
    UploadStatusResponse,
)
from uploads_api.sessions.orchestrator import ManifestEntry, UploadOrchestrator
from uploads_api.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/uploads/start", response_model=StartUploadResponse)
async def start_upload(
    body: StartUploadRequest,
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> StartUploadResponse:
    """
    Open a multipart upload session.

    Returns the session handle, the eventual file id, the suggested chunk
    size and which backend is active, so the client knows whether to send
    chunks here or request presigned part URLs.
    """
    result = await run_in_threadpool(orchestrator.begin_session, body.file_name, body.file_size)
    return StartUploadResponse(
        session_id=result.session_id,
        file_id=result.file_id,
        chunk_size=result.chunk_size_hint,
        backend_kind=result.backend_kind,
    )


@router.post("/uploads/part", response_model=PartAuthorizationResponse)
async def authorize_part(
    body: PartAuthorizationRequest,
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> PartAuthorizationResponse:
    """Issue a presigned URL for uploading one part straight to the object store."""
    ack = await run_in_threadpool(orchestrator.accept_part, body.session_id, body.part_number)
    return PartAuthorizationResponse(
        part_number=ack.part_number,
        upload_url=ack.upload_url,
        expires_in=ack.expires_in,
    )


@router.post("/uploads/chunk", response_model=ChunkAcceptedResponse)
async def upload_chunk(
    session_id: str = Form(...),
    part_number: int = Form(...),
    chunk: UploadFile = File(...),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> ChunkAcceptedResponse:
    """
    Upload one chunk through this service (local backend).

    Sending the same part number again replaces the earlier chunk.
    """
    limit = settings.max_chunk_size_bytes
    data = await chunk.read(limit + 1)
    if len(data) > limit:
        raise ChunkTooLargeError(f"Chunk exceeds the {limit} byte limit")

    ack = await run_in_threadpool(orchestrator.accept_part, session_id, part_number, data)
    return ChunkAcceptedResponse(part_number=ack.part_number, etag=ack.etag)


@router.post("/uploads/complete", response_model=CompleteUploadResponse)
async def complete_upload(
    body: CompleteUploadRequest,
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> CompleteUploadResponse:
    """Assemble the uploaded parts in part-number order and record the file."""
    manifest = [ManifestEntry(part_number=part.part_number, etag=part.etag) for part in body.parts]
    record = await run_in_threadpool(orchestrator.complete_session, body.session_id, manifest)
    return CompleteUploadResponse(
        file_id=record.file_id,
        download_url=DOWNLOAD_PAGE_TEMPLATE.format(file_id=record.file_id),
        direct_url=record.download_url,
    )


@router.post("/uploads/abort", response_model=MessageResponse)
async def abort_upload(
    body: AbortUploadRequest,
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    """Abort a session and discard everything uploaded so far."""
    await run_in_threadpool(orchestrator.abort_session, body.session_id)
    return MessageResponse(message="Upload aborted successfully")


@router.get(
    "/uploads/{session_id}",
    response_model=UploadStatusResponse,
    status_code=status.HTTP_200_OK,
)
async def get_upload_status(
    session_id: str = Path(..., description="The upload session id"),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> UploadStatusResponse:
    """Report upload progress: state and the part numbers received so far."""
    report = await run_in_threadpool(orchestrator.describe_session, session_id)
    return UploadStatusResponse(
        session_id=report.session_id,
        file_id=report.file_id,
        file_name=report.file_name,
        file_size=report.declared_size,
        state=report.state.value,
        received_parts=report.received_parts,
        received_bytes=report.received_bytes,
    )
