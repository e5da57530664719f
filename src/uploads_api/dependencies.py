from fastapi import Request

from uploads_api.retrieval import RetrievalGateway
from uploads_api.sessions.orchestrator import UploadOrchestrator
from uploads_api.settings import Settings


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with."""
    return request.app.state.settings


def get_orchestrator(request: Request) -> UploadOrchestrator:
    """Upload orchestrator dependency."""
    return request.app.state.orchestrator


def get_gateway(request: Request) -> RetrievalGateway:
    """Retrieval gateway dependency."""
    return request.app.state.gateway
