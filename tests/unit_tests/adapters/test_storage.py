import pytest

from tests.consts import TEST_BUCKET_NAME
from tests.fixtures.storage_fixtures import put_part_out_of_band
from uploads_api.adapters.storage import (
    LocalBackend,
    PartRef,
    S3Backend,
    StorageBackendFactory,
    md5_hex,
    safe_file_name,
)
from uploads_api.errors import IncompleteUploadError, InvalidStateError, NotFoundError


@pytest.mark.parametrize(
    "file_name, expected",
    [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\notes.txt", "notes.txt"),
        ("..", "file"),
        ("dir/", "dir"),
        ("", "file"),
    ],
)
def test_safe_file_name(file_name, expected):
    assert safe_file_name(file_name) == expected


def test_local_finalize_writes_parts_in_order(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    parts = [PartRef(2, md5_hex(b"lo"), b"lo"), PartRef(1, md5_hex(b"hel"), b"hel")]

    result = local_backend.finalize(handle, parts)

    assert result.location == "f1/a.txt"
    assert result.size == 5
    assert result.direct_url is None
    assert (local_backend.storage_dir / "f1" / "a.txt").read_bytes() == b"hello"


def test_local_finalize_failure_leaves_nothing_behind(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)

    with pytest.raises(IncompleteUploadError):
        local_backend.finalize(handle, [PartRef(1, data=b"hel"), PartRef(2, data=None)])

    assert list((local_backend.storage_dir / "f1").iterdir()) == []


def test_local_finalize_needs_parts(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    with pytest.raises(IncompleteUploadError):
        local_backend.finalize(handle, [])


def test_local_sink_part_returns_md5(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    assert local_backend.sink_part(handle, 1, b"hello") == "5d41402abc4b2a76b9719d911017c592"


def test_local_sink_part_after_abort(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    local_backend.abort(handle)

    with pytest.raises(InvalidStateError):
        local_backend.sink_part(handle, 1, b"hello")


def test_local_abort_is_idempotent(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    local_backend.abort(handle)
    local_backend.abort(handle)

    assert not (local_backend.storage_dir / "f1").exists()


def test_local_resolve_download(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    local_backend.finalize(handle, [PartRef(1, data=b"hello")])

    with local_backend.resolve_download(handle, 60) as stream:
        assert stream.read() == b"hello"

    with pytest.raises(NotFoundError):
        local_backend.resolve_download("f2/missing.txt", 60)
    with pytest.raises(NotFoundError):
        local_backend.resolve_download("../outside.txt", 60)


def test_s3_confirmed_parts(s3_backend, s3_client):
    handle = s3_backend.begin("f1", "a.txt", 5)
    etag = put_part_out_of_band(s3_client, handle, 4, b"four")

    assert s3_backend.confirmed_parts(handle) == {4: etag}


def test_s3_resolve_download(s3_backend, s3_client):
    s3_client.put_object(Bucket=TEST_BUCKET_NAME, Key="uploads/f1/a.txt", Body=b"hello")

    url = s3_backend.resolve_download("uploads/f1/a.txt", 60, file_name="a.txt")

    assert TEST_BUCKET_NAME in url
    assert "X-Amz-Expires=60" in url
    assert "response-content-disposition" in url
    with pytest.raises(NotFoundError):
        s3_backend.resolve_download("uploads/f2/missing.txt", 60)


def test_s3_backend_requires_a_bucket(s3_client):
    with pytest.raises(ValueError):
        S3Backend(bucket_name="", s3_client=s3_client)


def test_factory_builds_local_backend(local_settings):
    backend = StorageBackendFactory.create(local_settings)
    assert isinstance(backend, LocalBackend)


def test_factory_builds_s3_backend(mocked_aws, s3_settings):
    backend = StorageBackendFactory.create(s3_settings)

    assert isinstance(backend, S3Backend)
    assert backend.bucket_name == TEST_BUCKET_NAME


def test_factory_rejects_s3_without_bucket(mocked_aws, s3_settings):
    with pytest.raises(ValueError):
        StorageBackendFactory.create(s3_settings.model_copy(update={"s3_bucket_name": None}))


def test_s3_finalize_of_an_already_completed_upload(s3_backend, s3_client):
    handle = s3_backend.begin("f1", "a.txt", 5)
    etag = put_part_out_of_band(s3_client, handle, 1, b"hello")
    s3_client.complete_multipart_upload(
        Bucket=TEST_BUCKET_NAME,
        Key=handle.key,
        UploadId=handle.upload_id,
        MultipartUpload={"Parts": [{"PartNumber": 1, "ETag": etag}]},
    )

    result = s3_backend.finalize(handle, [PartRef(1, etag)])

    assert result.location == handle.key
    assert result.size == 5
    assert s3_backend.recover_finalized(handle) == result


def test_s3_recover_finalized_before_completion(s3_backend):
    handle = s3_backend.begin("f1", "a.txt", 5)
    assert s3_backend.recover_finalized(handle) is None


def test_local_backend_never_recovers(local_backend):
    handle = local_backend.begin("f1", "a.txt", 5)
    assert local_backend.recover_finalized(handle) is None
