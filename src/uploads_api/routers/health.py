import logging

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring API status and component readiness.

    Returns status of the storage backend and metadata store along with the
    number of open upload sessions.
    """
    orchestrator = request.app.state.orchestrator
    metadata_store = request.app.state.metadata_store

    health_status = {
        "status": "ok",
        "backend_kind": orchestrator.backend_kind,
        "open_sessions": orchestrator.open_sessions,
        "components": {
            "api": "ready",
            "storage": "ready",
            "database": "initializing"
        },
        "ready": False
    }

    if orchestrator.registry.closed:
        health_status["components"]["storage"] = "shutting down"
        health_status["status"] = "degraded"

    # Check database status
    try:
        metadata_store.ping()
        health_status["components"]["database"] = "ready"
    except Exception as e:
        logger.warning(f"Metadata store health check failed: {str(e)}")
        health_status["components"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    # Overall ready status
    health_status["ready"] = all(
        health_status["components"][comp] == "ready"
        for comp in ["api", "storage", "database"]
    )

    return health_status
