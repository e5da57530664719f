####################################
# --- Request/response schemas --- #
####################################

from datetime import datetime
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

DOWNLOAD_PAGE_TEMPLATE = "/download?id={file_id}"


class CompletedFile(BaseModel):
    """Durable record of a finalized upload. Written once, never updated."""
    file_id: str
    file_name: str
    file_size: int = Field(ge=0, description="Actual assembled size in bytes")
    storage_key: str = Field(description="Backend-specific locator of the stored bytes")
    download_url: Optional[str] = Field(
        None,
        description="Durable direct URL produced at completion time, if any",
    )
    created_at: datetime


class StartUploadRequest(BaseModel):
    """Request model for `POST /v1/uploads/start`."""
    file_name: str = Field(min_length=1, max_length=1024)
    file_size: int = Field(description="Declared size of the file in bytes")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "file_name": "dataset.tar.gz",
                "file_size": 5368709120,
            }
        }
    )


class StartUploadResponse(BaseModel):
    """Response model for `POST /v1/uploads/start`."""
    session_id: str
    file_id: str
    chunk_size: int = Field(description="Suggested chunk size in bytes")
    backend_kind: str = Field(description="Active storage backend: local or s3")


class PartAuthorizationRequest(BaseModel):
    """Request model for `POST /v1/uploads/part`."""
    session_id: str
    part_number: int


class PartAuthorizationResponse(BaseModel):
    """Response model for `POST /v1/uploads/part`."""
    part_number: int
    upload_url: str = Field(description="Presigned URL accepting exactly this part")
    expires_in: int = Field(description="Seconds until the URL expires")


class ChunkAcceptedResponse(BaseModel):
    """Response model for `POST /v1/uploads/chunk`."""
    success: bool = True
    part_number: int
    etag: str = Field(description="MD5 of the received chunk")


class ManifestPart(BaseModel):
    part_number: int
    etag: Optional[str] = Field(
        None,
        description="Integrity token returned when the part was uploaded",
    )


class CompleteUploadRequest(BaseModel):
    """Request model for `POST /v1/uploads/complete`."""
    session_id: str
    parts: List[ManifestPart]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "session_id": "6f1c2a1e-3f4b-4a34-9d0e-0f6b9f1f6a2d",
                "parts": [
                    {"part_number": 1, "etag": "\"5d41402abc4b2a76b9719d911017c592\""},
                    {"part_number": 2, "etag": "\"7d793037a0760186574b0282f2f435e7\""},
                ],
            }
        }
    )


class CompleteUploadResponse(BaseModel):
    """Response model for `POST /v1/uploads/complete`."""
    file_id: str
    download_url: str = Field(description="Link page for sharing the file")
    direct_url: Optional[str] = Field(None, description="Object store location, if any")


class AbortUploadRequest(BaseModel):
    """Request model for `POST /v1/uploads/abort`."""
    session_id: str


class MessageResponse(BaseModel):
    message: str


class UploadStatusResponse(BaseModel):
    """Response model for `GET /v1/uploads/{session_id}`."""
    session_id: str
    file_id: str
    file_name: str
    file_size: int
    state: str
    received_parts: List[int]
    received_bytes: Optional[int] = None


class DownloadInfoResponse(BaseModel):
    """Response model for `GET /v1/downloads/{file_id}`."""
    file_name: str
    file_size: int
    download_url: str = Field(description="Freshly minted URL or API path for the bytes")
    created_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "file_name": "dataset.tar.gz",
                "file_size": 5368709120,
                "download_url": "/v1/downloads/0b7c.../content",
                "created_at": "2024-01-01T00:00:00Z",
            }
        }
    )
