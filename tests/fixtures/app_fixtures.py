"""FastAPI test clients for both storage backends."""
import pytest
from fastapi.testclient import TestClient

from uploads_api.main import create_app


@pytest.fixture
def client(local_settings) -> TestClient:
    """Client for an app using the local backend."""
    app = create_app(settings=local_settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def s3_app_client(mocked_aws, s3_settings) -> TestClient:
    """Client for an app using the s3 backend against moto."""
    app = create_app(settings=s3_settings)
    with TestClient(app) as client:
        yield client
