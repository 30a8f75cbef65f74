"""
Unit tests for the storage backends
The S3 backend runs against a mocked aioboto3 session
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from tunesmith.core.config import TunesmithSettings
from tunesmith.core.errors import StorageError
from tunesmith.services.storage import LocalObjectStorage, S3ObjectStorage, build_storage

PUBLIC_URL = "https://audio.example.com"


def s3_session(client):
    """aioboto3 session whose client() context yields `client`"""
    session = MagicMock()
    session.client.return_value.__aenter__.return_value = client
    return session


@pytest.fixture
def s3_client():
    client = AsyncMock()
    client.generate_presigned_url.return_value = f"{PUBLIC_URL}/u/suno/t-0.mp3?X-Amz-Signature=abc"
    return client


@pytest.fixture
def bucket(s3_client):
    return S3ObjectStorage(
        bucket="tunes",
        public_url=PUBLIC_URL,
        endpoint_url="https://account.r2.cloudflarestorage.com",
        access_key_id="key",
        secret_access_key="secret",
        url_expiry=600,
        session=s3_session(s3_client)
    )


@pytest.mark.unit
class TestLocalObjectStorage:
    """Filesystem backend"""

    async def test_put_overwrites(self, tmp_path):
        storage = LocalObjectStorage(str(tmp_path), PUBLIC_URL)

        await storage.put("u/suno/t-0.mp3", b"first")
        stored = await storage.put("u/suno/t-0.mp3", b"second take")

        assert stored.url == f"{PUBLIC_URL}/u/suno/t-0.mp3"
        assert stored.size == len(b"second take")
        assert (tmp_path / "u/suno/t-0.mp3").read_bytes() == b"second take"
        assert [path.name for path in (tmp_path / "u/suno").iterdir()] == ["t-0.mp3"]

    @pytest.mark.parametrize("key", ["../escape.mp3", "/abs.mp3", "u/../../escape.mp3", ""])
    async def test_rejects_keys_outside_root(self, tmp_path, key):
        storage = LocalObjectStorage(str(tmp_path / "audio"), PUBLIC_URL)

        with pytest.raises(StorageError):
            await storage.put(key, b"data")

    async def test_signed_url_is_the_public_url(self, tmp_path):
        storage = LocalObjectStorage(str(tmp_path), PUBLIC_URL)
        await storage.put("u/a.mp3", b"data")

        signed = await storage.signed_url("u/a.mp3")

        assert signed.url == f"{PUBLIC_URL}/u/a.mp3"
        assert signed.expires_at is None

    async def test_signed_url_for_missing_object(self, tmp_path):
        storage = LocalObjectStorage(str(tmp_path), PUBLIC_URL)

        with pytest.raises(StorageError):
            await storage.signed_url("u/missing.mp3")

    def test_stored_url_detection(self, tmp_path):
        storage = LocalObjectStorage(str(tmp_path), PUBLIC_URL + "/")

        assert storage.is_stored_url(f"{PUBLIC_URL}/u/a.mp3")
        assert not storage.is_stored_url("https://cdn.suno.ai/a.mp3")
        assert not storage.is_stored_url(None)


@pytest.mark.unit
class TestS3ObjectStorage:
    """S3-compatible backend"""

    async def test_put_uploads_object(self, bucket, s3_client):
        stored = await bucket.put("u/suno/t-0.mp3", b"audio")

        s3_client.put_object.assert_awaited_once_with(
            Bucket="tunes",
            Key="u/suno/t-0.mp3",
            Body=b"audio",
            ContentType="audio/mpeg"
        )
        assert stored.url == f"{PUBLIC_URL}/u/suno/t-0.mp3"
        assert stored.size == 5

    async def test_client_uses_configured_endpoint(self, bucket):
        await bucket.put("u/a.mp3", b"audio")

        kwargs = bucket._session.client.call_args.kwargs
        assert kwargs["endpoint_url"] == "https://account.r2.cloudflarestorage.com"
        assert kwargs["aws_access_key_id"] == "key"
        assert kwargs["region_name"] == "auto"

    async def test_upload_error_becomes_storage_error(self, bucket, s3_client):
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucket", "Message": "The bucket does not exist"}},
            "PutObject"
        )

        with pytest.raises(StorageError) as exc_info:
            await bucket.put("u/a.mp3", b"audio")

        assert "u/a.mp3" in exc_info.value.message

    async def test_signed_url(self, bucket, s3_client):
        signed = await bucket.signed_url("u/suno/t-0.mp3")

        s3_client.generate_presigned_url.assert_awaited_once_with(
            "get_object",
            Params={"Bucket": "tunes", "Key": "u/suno/t-0.mp3"},
            ExpiresIn=600
        )
        assert "X-Amz-Signature" in signed.url
        assert signed.expires_at is not None

    async def test_signed_url_custom_expiry(self, bucket, s3_client):
        await bucket.signed_url("u/a.mp3", expires_in=120)

        assert s3_client.generate_presigned_url.call_args.kwargs["ExpiresIn"] == 120

    async def test_rejects_traversal_keys(self, bucket, s3_client):
        with pytest.raises(StorageError):
            await bucket.put("../other-bucket.mp3", b"audio")

        s3_client.put_object.assert_not_awaited()


@pytest.mark.unit
class TestBuildStorage:
    """Backend selection from settings"""

    def test_local_is_the_default(self, tmp_path):
        settings = TunesmithSettings(STORAGE_PATH=str(tmp_path / "audio"))

        storage = build_storage(settings)

        assert isinstance(storage, LocalObjectStorage)
        assert storage.root_path == (tmp_path / "audio").resolve()

    def test_s3_backend(self, tmp_path):
        settings = TunesmithSettings(
            STORAGE_PATH=str(tmp_path / "audio"),
            STORAGE_BACKEND="s3",
            STORAGE_PUBLIC_URL=PUBLIC_URL,
            S3_BUCKET="tunes",
            S3_ENDPOINT_URL="https://account.r2.cloudflarestorage.com",
            STORAGE_URL_EXPIRY=900,
        )

        storage = build_storage(settings)

        assert isinstance(storage, S3ObjectStorage)
        assert storage.bucket == "tunes"
        assert storage.url_expiry == 900
        assert storage.url_for("k.mp3") == f"{PUBLIC_URL}/k.mp3"

    def test_s3_backend_needs_bucket(self, tmp_path):
        settings = TunesmithSettings(STORAGE_PATH=str(tmp_path / "audio"), STORAGE_BACKEND="s3")

        with pytest.raises(StorageError):
            build_storage(settings)
