from typing import Optional
from urllib.parse import quote

from fastapi import (
    APIRouter,
    Depends,
    Path,
    Query,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from uploads_api.dependencies import get_gateway
from uploads_api.retrieval import RetrievalGateway
from uploads_api.schemas import DownloadInfoResponse

router = APIRouter()

STREAM_BLOCK_SIZE = 1024 * 1024


def _iter_file(stream, block_size: int = STREAM_BLOCK_SIZE):
    with stream:
        while True:
            block = stream.read(block_size)
            if not block:
                break
            yield block


@router.get("/downloads/{file_id}", response_model=DownloadInfoResponse)
async def get_download_info(
    file_id: str = Path(..., description="The id of the completed file"),
    ttl: Optional[int] = Query(None, description="Lifetime of a signed URL in seconds"),
    gateway: RetrievalGateway = Depends(get_gateway),
) -> DownloadInfoResponse:
    """
    Describe a completed file and return a fresh way to fetch it.

    For the s3 backend the URL is a newly signed one on every call; for the
    local backend it is the content route of this API.
    """
    info = await run_in_threadpool(gateway.resolve_download, file_id, ttl)
    return DownloadInfoResponse(
        file_name=info.file_name,
        file_size=info.file_size,
        download_url=info.download_url,
        created_at=info.created_at,
    )


@router.get("/downloads/{file_id}/content")
async def download_file(
    file_id: str = Path(..., description="The id of the completed file"),
    gateway: RetrievalGateway = Depends(get_gateway),
):
    """
    Stream a stored file (local backend only).

    Returns:
        StreamingResponse: The file content as an attachment
    """
    record, stream = await run_in_threadpool(gateway.open_download, file_id)
    quoted_name = quote(record.file_name)
    return StreamingResponse(
        _iter_file(stream),
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename=\"{quoted_name}\"; filename*=UTF-8''{quoted_name}",
            "Content-Length": str(record.file_size),
        },
    )
