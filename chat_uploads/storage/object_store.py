# chat_uploads/storage/object_store.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar, Union

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from chat_uploads.core.errors import ObjectNotFoundError
from chat_uploads.core.settings import Settings
from chat_uploads.infra.retry import retry_on
from chat_uploads.schemas.uploads import FileCategory
from chat_uploads.storage.keys import generate_object_key
from chat_uploads.storage.s3_errors import (
    error_code,
    is_retryable_s3,
    storage_hint,
    translate_s3_error,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SSE_ALGORITHM = "AES256"
_CHUNK = 1024 * 1024


@dataclass
class ObjectHead:
    content_type: str
    content_length: int
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    etag: Optional[str] = None


class S3ObjectStore:
    """
    Dunne laag rond boto3 voor de upload pipeline.

    Presigned URLs, blob put/get/download/delete/exists/head/copy and key
    derivation. Every botocore failure leaves this class as either
    ``ObjectNotFoundError`` or ``InternalStorageError``. The client is shared
    between pipelines; boto3 clients are thread-safe.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        cdn_url: str,
        *,
        retry_attempts: int = 3,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.bucket = bucket
        self.cdn_url = (cdn_url or "").rstrip("/")
        self.retry_attempts = retry_attempts
        self._sleep = sleep

    # ---------- helpers ----------
    def _log_retry(self, attempt: int, exc: Exception, sleep_s: float) -> None:
        logger.warning(
            "s3_retry",
            attempt=attempt,
            sleep_s=round(sleep_s, 2),
            code=error_code(exc),
            exc=type(exc).__name__,
        )

    def _call(self, action: str, key: Optional[str], fn: Callable[[], T], *, retry: bool = True) -> T:
        kwargs: Dict[str, Any] = {
            "attempts": self.retry_attempts if retry else 1,
            "is_retryable": is_retryable_s3,
            "on_retry": self._log_retry,
        }
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            return retry_on(fn, **kwargs)
        except (ClientError, BotoCoreError) as e:
            translated = translate_s3_error(e, action, key)
            if not isinstance(translated, ObjectNotFoundError):
                logger.error(
                    "s3_call_failed",
                    action=action,
                    object_key=key,
                    code=error_code(e),
                    hint=storage_hint(e),
                    error=str(e),
                )
            raise translated from e

    def generate_key(self, category: FileCategory, identifier: str, extension: str) -> str:
        return generate_object_key(category, identifier, extension)

    def public_url(self, key: str) -> str:
        return f"{self.cdn_url}/{self.bucket}/{key}"

    # ---------- presign ----------
    def presign_upload(self, key: str, mime_type: str, ttl: int = 3600) -> str:
        url = self._call(
            "presign_upload",
            None,
            lambda: self.client.generate_presigned_url(
                ClientMethod="put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ContentType": mime_type,
                    "ServerSideEncryption": SSE_ALGORITHM,
                },
                ExpiresIn=ttl,
                HttpMethod="PUT",
            ),
            retry=False,
        )
        logger.info("presigned_upload_url", object_key=key, expires_in=ttl)
        return url

    def presign_download(self, key: str, ttl: int = 3600) -> str:
        url = self._call(
            "presign_download",
            None,
            lambda: self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl,
            ),
            retry=False,
        )
        logger.info("presigned_download_url", object_key=key, expires_in=ttl)
        return url

    # ---------- writes ----------
    def put(
        self,
        key: str,
        data: Union[bytes, str, "os.PathLike[str]"],
        mime_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Upload bytes of een lokaal bestand; retourneert de publieke URL."""
        extra = {
            "ContentType": mime_type,
            "ServerSideEncryption": SSE_ALGORITHM,
            "Metadata": {k: str(v) for k, v in (metadata or {}).items()},
        }

        if isinstance(data, (bytes, bytearray)):
            def _put():
                return self.client.put_object(Bucket=self.bucket, Key=key, Body=bytes(data), **extra)
        else:
            path = Path(data)

            def _put():
                # per poging opnieuw openen, anders staat de stream na een retry aan het eind
                with path.open("rb") as fh:
                    return self.client.put_object(Bucket=self.bucket, Key=key, Body=fh, **extra)

        self._call("put", key, _put)
        logger.info("s3_put", object_key=key, content_type=mime_type)
        return self.public_url(key)

    def copy(self, source_key: str, destination_key: str) -> None:
        self._call(
            "copy",
            source_key,
            lambda: self.client.copy_object(
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": source_key},
                Key=destination_key,
                ServerSideEncryption=SSE_ALGORITHM,
            ),
        )
        logger.info("s3_copy", source_key=source_key, destination_key=destination_key)

    def delete(self, key: str) -> None:
        # S3 delete op een niet-bestaande key is geen fout
        try:
            self._call(
                "delete",
                key,
                lambda: self.client.delete_object(Bucket=self.bucket, Key=key),
            )
        except ObjectNotFoundError:
            pass
        logger.info("s3_delete", object_key=key)

    # ---------- reads ----------
    def head_metadata(self, key: str) -> ObjectHead:
        head = self._call(
            "head",
            key,
            lambda: self.client.head_object(Bucket=self.bucket, Key=key),
        )
        return ObjectHead(
            content_type=head.get("ContentType") or "application/octet-stream",
            content_length=int(head.get("ContentLength") or 0),
            last_modified=head.get("LastModified"),
            metadata=head.get("Metadata") or {},
            etag=(head.get("ETag") or "").strip('"') or None,
        )

    def exists(self, key: str) -> bool:
        try:
            self.head_metadata(key)
            return True
        except ObjectNotFoundError:
            return False

    def get(self, key: str) -> bytes:
        def _get() -> bytes:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()

        data = self._call("get", key, _get)
        logger.info("s3_get", object_key=key, size=len(data))
        return data

    def download(self, key: str, path: Union[str, "os.PathLike[str]"]) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        def _download() -> int:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            body = resp["Body"]
            written = 0
            # truncate bij elke poging; stage N+1 ziet alleen een volledig bestand
            with target.open("wb") as fh:
                for chunk in iter(lambda: body.read(_CHUNK), b""):
                    fh.write(chunk)
                    written += len(chunk)
            return written

        size = self._call("download", key, _download)
        logger.info("s3_download", object_key=key, path=str(target), size=size)

    # ---------- health ----------
    def health_check(self) -> bool:
        try:
            self.client.list_objects_v2(Bucket=self.bucket, MaxKeys=1)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error("s3_health_check_failed", code=error_code(e), error=str(e))
            return False


def build_s3_client(settings: Settings):
    cfg = Config(
        region_name=settings.AWS_REGION,
        signature_version="s3v4",
        retries={"max_attempts": settings.S3_MAX_ATTEMPTS, "mode": "standard"},
        connect_timeout=settings.S3_CONNECT_TIMEOUT,
        read_timeout=settings.S3_READ_TIMEOUT,
        # MinIO vereist path-style addressing
        s3={"addressing_style": "path" if settings.S3_ENDPOINT else "auto"},
    )
    kwargs: Dict[str, Any] = {"config": cfg}
    if settings.S3_ENDPOINT:
        kwargs["endpoint_url"] = settings.S3_ENDPOINT
    if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
        kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY
    return boto3.client("s3", **kwargs)


def build_object_store(settings: Settings, client: Any = None) -> S3ObjectStore:
    store = S3ObjectStore(
        client or build_s3_client(settings),
        bucket=settings.S3_BUCKET_NAME,
        cdn_url=settings.CDN_URL,
    )
    logger.info(
        "s3_store_initialized",
        bucket=settings.S3_BUCKET_NAME,
        region=settings.AWS_REGION,
        endpoint=settings.S3_ENDPOINT,
    )
    return store
