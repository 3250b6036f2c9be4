"""
Storage backends - byte storage with time-boxed retrieval URLs.

Two interchangeable backends:
- LocalStorage: filesystem under a root directory; URLs are HMAC-SHA256 signed
  and served by the /v1/files route.
- S3Storage: any S3-compatible object store (AWS S3, Cloudflare R2) via boto3
  presigned GET URLs.
"""

import asyncio
import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, urlencode

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from structlog import get_logger

from studio_access.config import Settings, settings
from studio_access.exceptions import StorageError
from studio_access.observability import metrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """Where put() placed the bytes."""

    key: str
    bucket: str


class StorageBackend(Protocol):
    """Storage backend protocol."""

    async def put(self, data: bytes, content_type: str, key: str | None = None) -> StoredObject:
        """
        Store bytes.

        Raises:
            StorageError: If the write fails
        """
        ...

    async def signed_url(self, key: str, bucket: str, ttl_seconds: int) -> str:
        """
        Issue a retrieval URL valid for ttl_seconds.

        Raises:
            StorageError: If the object cannot be signed
        """
        ...

    async def delete(self, key: str, bucket: str) -> None:
        """
        Remove an object. Missing objects are not an error.

        Raises:
            StorageError: If the delete fails
        """
        ...


def _new_key() -> str:
    return uuid.uuid4().hex


class LocalStorage:
    """
    Filesystem storage with HMAC-signed URLs.

    Objects live at <root>/<bucket>/<key>. A URL carries its expiry and a
    signature over bucket, key and expiry; verify_signature() checks both.
    """

    def __init__(
        self,
        root: str | Path,
        bucket: str,
        signing_secret: str,
        public_base_url: str,
    ) -> None:
        self.root = Path(root).resolve()
        self.bucket = bucket
        self.signing_secret = signing_secret
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, key: str, bucket: str) -> Path:
        """
        Resolve an object path, refusing anything outside the storage root.

        Raises:
            StorageError: If key or bucket escapes the root
        """
        bucket_dir = (self.root / bucket).resolve()
        path = (bucket_dir / key).resolve()
        escapes = bucket_dir.parent != self.root or not path.is_relative_to(bucket_dir)
        if escapes or path == bucket_dir:
            raise StorageError("resolve", key, "path escapes storage root")
        return path

    def sign(self, key: str, bucket: str, expires: int) -> str:
        message = f"{bucket}/{key}:{expires}".encode()
        return hmac.new(self.signing_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(
        self,
        key: str,
        bucket: str,
        expires: int,
        signature: str,
        now: float | None = None,
    ) -> bool:
        """Whether a signed URL is authentic and not yet expired."""
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(self.sign(key, bucket, expires), signature)

    async def put(self, data: bytes, content_type: str, key: str | None = None) -> StoredObject:
        object_key = key or _new_key()
        path = self.path_for(object_key, self.bucket)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            metrics.record_storage_failure("put")
            logger.error("storage_put_failed", key=object_key, error=str(exc))
            raise StorageError("put", object_key, str(exc)) from exc

        logger.info(
            "storage_object_stored",
            key=object_key,
            bucket=self.bucket,
            content_type=content_type,
            size=len(data),
        )
        return StoredObject(key=object_key, bucket=self.bucket)

    async def signed_url(self, key: str, bucket: str, ttl_seconds: int) -> str:
        path = self.path_for(key, bucket)
        if not path.is_file():
            metrics.record_storage_failure("sign")
            raise StorageError("sign", key, "object not found")

        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self.sign(key, bucket, expires)})
        return f"{self.public_base_url}/v1/files/{quote(bucket)}/{quote(key)}?{query}"

    async def delete(self, key: str, bucket: str) -> None:
        path = self.path_for(key, bucket)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            metrics.record_storage_failure("delete")
            raise StorageError("delete", key, str(exc)) from exc

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class S3Storage:
    """S3-compatible storage using boto3 presigned URLs."""

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    async def put(self, data: bytes, content_type: str, key: str | None = None) -> StoredObject:
        object_key = key or _new_key()
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            metrics.record_storage_failure("put")
            logger.error("storage_put_failed", key=object_key, error=str(exc))
            raise StorageError("put", object_key, str(exc)) from exc

        logger.info("storage_object_stored", key=object_key, bucket=self.bucket, size=len(data))
        return StoredObject(key=object_key, bucket=self.bucket)

    async def signed_url(self, key: str, bucket: str, ttl_seconds: int) -> str:
        try:
            url: str = await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            metrics.record_storage_failure("sign")
            raise StorageError("sign", key, str(exc)) from exc
        return url

    async def delete(self, key: str, bucket: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            metrics.record_storage_failure("delete")
            raise StorageError("delete", key, str(exc)) from exc


def build_storage(config: Settings) -> LocalStorage | S3Storage:
    """Construct the configured storage backend."""
    if config.storage_backend == "s3":
        return S3Storage(
            bucket=config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            access_key_id=config.s3_access_key_id,
            secret_access_key=config.s3_secret_access_key,
        )
    return LocalStorage(
        root=config.local_storage_root,
        bucket=config.local_storage_bucket,
        signing_secret=config.url_signing_secret,
        public_base_url=config.public_base_url,
    )


@lru_cache(maxsize=1)
def get_storage() -> LocalStorage | S3Storage:
    """Process-wide storage backend."""
    return build_storage(settings)
