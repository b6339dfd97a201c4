"""
Object store gateway for document blobs.

This module provides functionality for:
- Uploading raw bytes under a key (last writer wins)
- Downloading an object with its size, etag, content type and upload time
- Generating presigned URLs for time-limited uploads and downloads

The store is any S3-compatible endpoint; in production it is a Cloudflare R2
bucket addressed as ``https://<account_id>.r2.cloudflarestorage.com``.
Presigned URLs are signed with SigV4 (region ``auto``, service ``s3``) using
the configured credentials, so only the holder of the secret key can mint or
extend them. Failures are returned as ``StorageError`` and never retried.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import StorageConfig
from .errors import NotFoundError, Result, StorageError, ValidationError
from .models import PresignedURL, PresignOperation, StoredObject
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# SigV4 presigned URLs cannot outlive seven days.
MAX_PRESIGN_EXPIRES_IN = 7 * 24 * 60 * 60

_PRESIGN_CLIENT_METHODS = {
    PresignOperation.UPLOAD: "put_object",
    PresignOperation.DOWNLOAD: "get_object",
}

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def create_s3_client(config: StorageConfig) -> Any:
    """
    Create a boto3 S3 client for the configured bucket endpoint.

    Retries are disabled; retry policy belongs to the caller. Checksums are
    only sent when an operation requires them, which R2 expects.
    """
    return boto3.client(
        "s3",
        endpoint_url=config.resolved_endpoint_url(),
        aws_access_key_id=config.access_key_id or None,
        aws_secret_access_key=config.secret_access_key or None,
        region_name=config.region,
        config=Config(
            signature_version="s3v4",
            retries={"max_attempts": 1, "mode": "standard"},
            s3={"addressing_style": "path"},
            request_checksum_calculation="when_required",
            response_checksum_validation="when_required",
        ),
    )


def _strip_etag(etag: Optional[str]) -> str:
    return (etag or "").strip('"')


class ObjectStoreGateway:
    """
    Put/get and presigned URL issuance against a single bucket.

    Attributes:
        bucket: Name of the bucket all keys live in
    """

    def __init__(self, client: Any, bucket: str, clock: Clock = utc_now) -> None:
        self._client = client
        self.bucket = bucket
        self._clock = clock

    @classmethod
    def from_config(cls, config: StorageConfig, clock: Clock = utc_now) -> "ObjectStoreGateway":
        if not config.bucket_name:
            logger.warning("BUCKET_NAME not configured")
        return cls(create_s3_client(config), config.bucket_name, clock=clock)

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> Result[StoredObject]:
        """
        Store ``data`` under ``key``, replacing any existing object.

        Args:
            key: Object key
            data: Raw bytes to store
            content_type: MIME type recorded with the object

        Returns:
            Result holding the StoredObject (without body), or a
            ValidationError / StorageError
        """
        if not key:
            return Result.failure(ValidationError("Missing key"))

        content_type = content_type or DEFAULT_CONTENT_TYPE
        try:
            logger.info(f"Uploading {len(data)} bytes to {self.bucket}/{key}")
            response = self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Upload of {key} failed: {exc}")
            return Result.failure(StorageError(f"Upload failed: {exc}"))

        return Result.success(StoredObject(
            key=key,
            size=len(data),
            etag=_strip_etag(response.get("ETag")),
            content_type=content_type,
            uploaded_at=self._clock(),
        ))

    def get(self, key: str) -> Result[StoredObject]:
        """
        Fetch an object and its metadata.

        Returns:
            Result holding the StoredObject with ``body`` set, or a
            ValidationError, NotFoundError or StorageError
        """
        if not key:
            return Result.failure(ValidationError("Missing key parameter"))

        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _MISSING_KEY_CODES:
                return Result.failure(NotFoundError(f"Object not found: {key}"))
            logger.error(f"Download of {key} failed: {exc}")
            return Result.failure(StorageError(f"Download failed: {exc}"))
        except BotoCoreError as exc:
            logger.error(f"Download of {key} failed: {exc}")
            return Result.failure(StorageError(f"Download failed: {exc}"))

        return Result.success(StoredObject(
            key=key,
            size=response.get("ContentLength", len(body)),
            etag=_strip_etag(response.get("ETag")),
            content_type=response.get("ContentType"),
            uploaded_at=response.get("LastModified") or self._clock(),
            body=body,
        ))

    def issue_presigned_url(
        self,
        key: str,
        operation: PresignOperation,
        expires_in: int,
    ) -> Result[PresignedURL]:
        """
        Generate a presigned URL for one operation on one key.

        The key's existence is not checked; for downloads the store reports a
        missing object when the URL is used.

        Args:
            key: Object key the URL grants access to
            operation: ``upload`` (HTTP PUT) or ``download`` (HTTP GET)
            expires_in: Validity in seconds, 1 to 604800

        Returns:
            Result holding a PresignedURL whose ``expires_at`` equals
            ``issued_at + expires_in``, or a ValidationError / StorageError
        """
        if not key:
            return Result.failure(ValidationError("Missing key"))
        try:
            operation = PresignOperation(operation)
        except ValueError:
            return Result.failure(ValidationError(f"Unsupported operation: {operation}"))
        if isinstance(expires_in, bool) or not isinstance(expires_in, int) or expires_in <= 0:
            return Result.failure(ValidationError("expiresIn must be a positive number of seconds"))
        if expires_in > MAX_PRESIGN_EXPIRES_IN:
            return Result.failure(ValidationError(f"expiresIn must not exceed {MAX_PRESIGN_EXPIRES_IN} seconds"))

        # X-Amz-Date has whole-second resolution.
        issued_at = self._clock().replace(microsecond=0)
        try:
            url = self._client.generate_presigned_url(
                _PRESIGN_CLIENT_METHODS[operation],
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Failed to generate presigned URL for {key}: {exc}")
            return Result.failure(StorageError(f"Presigned URL failed: {exc}"))

        logger.info(f"Generated presigned {operation.value} URL for {key} (expires in {expires_in}s)")
        return Result.success(PresignedURL(
            url=url,
            key=key,
            operation=operation,
            expires_in=expires_in,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
        ))
