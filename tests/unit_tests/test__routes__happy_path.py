import boto3
from fastapi import status
from fastapi.testclient import TestClient

from tests.consts import S3_MIN_PART_SIZE, TEST_BUCKET_NAME, TEST_REGION
from uploads_api.adapters.storage import md5_hex
from uploads_api.main import create_app

# Constants for testing
TEST_FILE_NAME = "a.txt"
TEST_FILE_CONTENT = b"hello"


def start_upload(client: TestClient, file_name: str = TEST_FILE_NAME, file_size: int = len(TEST_FILE_CONTENT)) -> dict:
    response = client.post("/v1/uploads/start", json={"file_name": file_name, "file_size": file_size})
    assert response.status_code == status.HTTP_200_OK
    return response.json()


def send_chunk(client: TestClient, session_id: str, part_number: int, data: bytes):
    return client.post(
        "/v1/uploads/chunk",
        data={"session_id": session_id, "part_number": str(part_number)},
        files={"chunk": ("blob", data, "application/octet-stream")},
    )


def test_health(client: TestClient):
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["status"] == "ok"
    assert body["backend_kind"] == "local"
    assert body["ready"] is True


def test_chunked_upload_and_download(client: TestClient):
    started = start_upload(client)
    assert started["backend_kind"] == "local"
    assert started["chunk_size"] == 4

    response = send_chunk(client, started["session_id"], 2, b"lo")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"success": True, "part_number": 2, "etag": md5_hex(b"lo")}
    hel = send_chunk(client, started["session_id"], 1, b"hel").json()

    progress = client.get(f"/v1/uploads/{started['session_id']}").json()
    assert progress["state"] == "receiving"
    assert progress["received_parts"] == [1, 2]
    assert progress["received_bytes"] == 5

    response = client.post(
        "/v1/uploads/complete",
        json={
            "session_id": started["session_id"],
            "parts": [{"part_number": 2}, {"part_number": 1, "etag": hel["etag"]}],
        },
    )
    assert response.status_code == status.HTTP_200_OK
    completed = response.json()
    assert completed["file_id"] == started["file_id"]
    assert completed["download_url"] == f"/download?id={started['file_id']}"
    assert completed["direct_url"] is None

    info = client.get(f"/v1/downloads/{started['file_id']}").json()
    assert info["file_name"] == TEST_FILE_NAME
    assert info["file_size"] == 5
    assert info["download_url"] == f"/v1/downloads/{started['file_id']}/content"

    # downloading twice returns the same bytes
    for _ in range(2):
        response = client.get(info["download_url"])
        assert response.status_code == status.HTTP_200_OK
        assert response.content == TEST_FILE_CONTENT
        assert response.headers["content-length"] == "5"
        assert 'filename="a.txt"' in response.headers["content-disposition"]


def test_abort_upload(client: TestClient):
    started = start_upload(client)
    send_chunk(client, started["session_id"], 1, b"hel")

    response = client.post("/v1/uploads/abort", json={"session_id": started["session_id"]})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"message": "Upload aborted successfully"}
    assert client.get("/health").json()["open_sessions"] == 0


def test_s3_upload_through_presigned_parts(s3_app_client: TestClient):
    first_part, last_part = b"a" * S3_MIN_PART_SIZE, b"tail"
    started = start_upload(s3_app_client, "data.bin", len(first_part) + len(last_part))
    assert started["backend_kind"] == "s3"

    manifest = []
    s3_client = boto3.client("s3", region_name=TEST_REGION)
    for part_number, data in [(1, first_part), (2, last_part)]:
        response = s3_app_client.post(
            "/v1/uploads/part", json={"session_id": started["session_id"], "part_number": part_number}
        )
        assert response.status_code == status.HTTP_200_OK
        assert f"partNumber={part_number}" in response.json()["upload_url"]

        # the client PUTs the bytes to S3 itself
        upload = s3_client.list_multipart_uploads(Bucket=TEST_BUCKET_NAME)["Uploads"][0]
        etag = s3_client.upload_part(
            Bucket=TEST_BUCKET_NAME,
            Key=upload["Key"],
            UploadId=upload["UploadId"],
            PartNumber=part_number,
            Body=data,
        )["ETag"]
        manifest.append({"part_number": part_number, "etag": etag})

    response = s3_app_client.post(
        "/v1/uploads/complete", json={"session_id": started["session_id"], "parts": manifest}
    )
    assert response.status_code == status.HTTP_200_OK

    info = s3_app_client.get(f"/v1/downloads/{started['file_id']}", params={"ttl": 600}).json()
    assert info["file_size"] == len(first_part) + len(last_part)
    assert TEST_BUCKET_NAME in info["download_url"]
    assert "X-Amz-Expires=600" in info["download_url"]


def test_cors_preflight_for_browser_uploaders(client: TestClient):
    response = client.options(
        "/v1/uploads/chunk",
        headers={
            "Origin": "http://uploader.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["access-control-allow-origin"] in ("*", "http://uploader.example.com")


def test_cors_origins_come_from_settings(local_settings):
    app = create_app(settings=local_settings.model_copy(update={"cors_allow_origins": ["http://allowed.example.com"]}))
    with TestClient(app) as client:
        allowed = client.get("/health", headers={"Origin": "http://allowed.example.com"})
        other = client.get("/health", headers={"Origin": "http://other.example.com"})

    assert allowed.headers["access-control-allow-origin"] == "http://allowed.example.com"
    assert "access-control-allow-origin" not in other.headers
