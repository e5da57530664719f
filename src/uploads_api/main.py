from contextlib import asynccontextmanager
from textwrap import dedent
import asyncio
import logging

import pydantic
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute

from uploads_api.adapters.storage import BaseStorageBackend, StorageBackendFactory
from uploads_api.database.local import SQLiteMetadataStore
from uploads_api.errors import (
    UploadError,
    handle_broad_exceptions,
    handle_pydantic_validation_errors,
    handle_upload_errors,
)
from uploads_api.retrieval import RetrievalGateway
from uploads_api.routers.downloads import router as downloads_router
from uploads_api.routers.health import router as health_router
from uploads_api.routers.uploads import router as uploads_router
from uploads_api.sessions.orchestrator import UploadOrchestrator
from uploads_api.settings import Settings

# Set up logging
logger = logging.getLogger(__name__)

# Longest pause between idle-session sweeps
MAX_REAPER_INTERVAL_SECONDS = 60


async def reap_idle_sessions_forever(orchestrator: UploadOrchestrator, max_idle_seconds: int) -> None:
    interval = min(max_idle_seconds, MAX_REAPER_INTERVAL_SECONDS)
    while True:
        await asyncio.sleep(interval)
        await run_in_threadpool(orchestrator.reap_idle_sessions, max_idle_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    reaper = None
    if settings.session_idle_timeout_seconds:
        logger.info(f"Reaping sessions idle for more than {settings.session_idle_timeout_seconds}s")
        reaper = asyncio.create_task(
            reap_idle_sessions_forever(app.state.orchestrator, settings.session_idle_timeout_seconds)
        )
    try:
        yield
    finally:
        if reaper is not None:
            reaper.cancel()
        await run_in_threadpool(app.state.orchestrator.shutdown)


def create_app(
    settings: Settings | None = None,
    backend: BaseStorageBackend | None = None,
    metadata_store: SQLiteMetadataStore | None = None,
) -> FastAPI:
    """Create a FastAPI application."""
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(
        title="Uploads API",
        summary="Chunked uploads of large files to local disk or S3",
        version="v1",
        description=dedent(
            """\
        Upload large files in numbered chunks, then share them with a link.

        | Step | Route |
        | --- | --- |
        | Open a session | `POST /v1/uploads/start` |
        | Send chunks (local) or fetch part URLs (s3) | `POST /v1/uploads/chunk`, `POST /v1/uploads/part` |
        | Finish | `POST /v1/uploads/complete` |
        | Download | `GET /v1/downloads/{file_id}` |
        """
        ),
        docs_url="/",  # its easier to find the docs when they live on the base url
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=lifespan,
    )

    # Browser uploaders send chunks and fetch part URLs cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    backend = backend or StorageBackendFactory.create(settings)
    metadata_store = metadata_store or SQLiteMetadataStore(settings.database_path)
    orchestrator = UploadOrchestrator.from_settings(settings, backend, metadata_store)

    app.state.settings = settings
    app.state.metadata_store = metadata_store
    app.state.orchestrator = orchestrator
    app.state.gateway = RetrievalGateway(
        backend,
        metadata_store,
        default_ttl=settings.download_url_ttl_seconds,
        max_ttl=settings.max_download_url_ttl_seconds,
    )
    logger.info(f"Uploads API using {backend.kind} storage")

    app.include_router(uploads_router, prefix="/v1", tags=["uploads"])
    app.include_router(downloads_router, prefix="/v1", tags=["downloads"])
    app.include_router(health_router, tags=["health"])

    app.add_exception_handler(UploadError, handle_upload_errors)
    app.add_exception_handler(
        exc_class_or_status_code=RequestValidationError,
        handler=handle_pydantic_validation_errors,
    )
    app.add_exception_handler(
        exc_class_or_status_code=pydantic.ValidationError,
        handler=handle_pydantic_validation_errors,
    )
    app.middleware("http")(handle_broad_exceptions)

    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"


if __name__ == "__main__":
    import uvicorn

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
