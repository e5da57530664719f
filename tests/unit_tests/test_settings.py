import pydantic
import pytest

from uploads_api.settings import GIB, MIB, Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("STORAGE_BACKEND", "STORAGE_TYPE", "S3_ENDPOINT", "AWS_ENDPOINT_URL", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.storage_backend == "local"
    assert settings.max_file_size_bytes == 30 * GIB
    assert settings.chunk_size_bytes == 10 * MIB
    assert settings.max_buffered_bytes is None
    assert settings.session_idle_timeout_seconds is None


@pytest.mark.parametrize(
    "value, expected",
    [("cloud", "s3"), ("AWS", "s3"), ("s3", "s3"), (" Local ", "local"), ("filesystem", "local")],
)
def test_storage_backend_aliases(value, expected):
    assert Settings(_env_file=None, storage_backend=value).storage_backend == expected


def test_unknown_storage_backend_is_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, storage_backend="ftp")


def test_legacy_environment_names(monkeypatch):
    monkeypatch.setenv("STORAGE_TYPE", "cloud")
    monkeypatch.setenv("S3_ENDPOINT", "http://localhost:9000")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.storage_backend == "s3"
    assert settings.aws_endpoint_url == "http://localhost:9000"
    assert settings.log_level == "DEBUG"


def test_sizes_must_be_positive():
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, max_file_size_bytes=0)
