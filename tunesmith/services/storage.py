"""
Object Storage
Audio storage backends: a local directory served under /audio, or an
S3-compatible bucket (AWS S3, Cloudflare R2) with presigned downloads
"""

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import aioboto3
import structlog
from aiobotocore.config import AioConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import TunesmithSettings
from ..core.errors import StorageError

logger = structlog.get_logger("tunesmith.storage")


@dataclass
class StoredObject:
    key: str
    url: str
    size: int


@dataclass
class SignedUrl:
    url: str
    expires_at: Optional[datetime] = None  # None when the URL does not expire


class ObjectStorage(ABC):
    """
    Keyed audio store. Writing an existing key replaces the object, so
    repeated writes of the same key are idempotent.
    """

    def __init__(self, public_url: str, url_expiry: int = 3600):
        self.public_url = public_url.rstrip("/")
        self.url_expiry = url_expiry

    @staticmethod
    def _check_key(key: str) -> str:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise StorageError(f"Invalid storage key: {key}")
        return key

    def url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}"

    def is_stored_url(self, url: Optional[str]) -> bool:
        return bool(url) and url.startswith(f"{self.public_url}/")

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> StoredObject:
        pass

    @abstractmethod
    async def signed_url(self, key: str, expires_in: Optional[int] = None) -> SignedUrl:
        pass

    async def close(self) -> None:
        pass


class LocalObjectStorage(ObjectStorage):
    """Files below `root_path`; the app serves them at the public URL"""

    def __init__(self, root_path: str, public_url: str, url_expiry: int = 3600):
        super().__init__(public_url, url_expiry)
        self.root_path = Path(root_path).resolve()
        self.root_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        path = (self.root_path / self._check_key(key)).resolve()
        if self.root_path not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)

    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> StoredObject:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}")
        return StoredObject(key=key, url=self.url_for(key), size=len(data))

    async def signed_url(self, key: str, expires_in: Optional[int] = None) -> SignedUrl:
        # Served as public static files
        if not self.path_for(key).is_file():
            raise StorageError(f"Object {key} not found")
        return SignedUrl(url=self.url_for(key))


class S3ObjectStorage(ObjectStorage):
    """
    S3-compatible bucket accessed through aioboto3.

    `public_url` is the bucket's public domain (or CDN) and is what stored
    tracks point at; `signed_url` hands out time-limited GET links for
    buckets that are not public.
    """

    def __init__(
        self,
        bucket: str,
        public_url: str,
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        url_expiry: int = 3600,
        max_pool_connections: int = 10,
        session: Optional[aioboto3.Session] = None
    ):
        super().__init__(public_url, url_expiry)
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._session = session or aioboto3.Session()
        self._config = AioConfig(
            max_pool_connections=max_pool_connections,
            retries={"max_attempts": 3, "mode": "adaptive"},
            signature_version="s3v4",
        )

    def _client(self):
        return self._session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region,
            config=self._config,
        )

    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> StoredObject:
        self._check_key(key)
        try:
            async with self._client() as client:
                await client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error("Object upload failed", bucket=self.bucket, key=key, error=str(e))
            raise StorageError(f"Failed to upload {key}: {e}")

        logger.info("Object uploaded", bucket=self.bucket, key=key, size=len(data))
        return StoredObject(key=key, url=self.url_for(key), size=len(data))

    async def signed_url(self, key: str, expires_in: Optional[int] = None) -> SignedUrl:
        self._check_key(key)
        expires_in = expires_in or self.url_expiry
        try:
            async with self._client() as client:
                url = await client.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=expires_in,
                )
        except (BotoCoreError, ClientError) as e:
            logger.error("Presigning failed", bucket=self.bucket, key=key, error=str(e))
            raise StorageError(f"Failed to sign {key}: {e}")

        return SignedUrl(url=url, expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in))


def build_storage(settings: TunesmithSettings) -> ObjectStorage:
    """Storage backend selected by STORAGE_BACKEND"""
    if settings.STORAGE_BACKEND == "s3":
        if not settings.S3_BUCKET:
            raise StorageError("S3_BUCKET is required for the s3 storage backend")
        return S3ObjectStorage(
            bucket=settings.S3_BUCKET,
            public_url=settings.STORAGE_PUBLIC_URL,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            url_expiry=settings.STORAGE_URL_EXPIRY,
        )
    return LocalObjectStorage(settings.STORAGE_PATH, settings.STORAGE_PUBLIC_URL, settings.STORAGE_URL_EXPIRY)
