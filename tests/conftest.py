from tests.fixtures.app_fixtures import client, s3_app_client  # noqa: F401
from tests.fixtures.storage_fixtures import (  # noqa: F401
    aws_credentials,
    local_backend,
    local_orchestrator,
    local_settings,
    metadata_store,
    mocked_aws,
    s3_backend,
    s3_client,
    s3_orchestrator,
    s3_settings,
)
