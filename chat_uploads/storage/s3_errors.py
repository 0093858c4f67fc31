# chat_uploads/storage/s3_errors.py
from typing import Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from chat_uploads.core.errors import InternalStorageError, ObjectNotFoundError

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_RETRY_CODES = {
    "SlowDown", "Throttling", "RequestTimeout",
    "InternalError", "ServiceUnavailable", "InternalServerError",
}

# korte hints voor in de logs, niet voor de client
_HINTS = {
    "AccessDenied": "Controleer IAM/bucket policy (s3:GetObject/HeadObject/PutObject).",
    "SignatureDoesNotMatch": "Controleer AWS_REGION vs bucket-regio en tijdsync (NTP).",
    "NoSuchBucket": "Bucket bestaat niet; controleer S3_BUCKET_NAME.",
    "SlowDown": "S3 throttling; probeer zo opnieuw.",
}


def error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return (exc.response.get("Error", {}) or {}).get("Code")
    return None


def http_status(exc: BaseException) -> Optional[int]:
    if isinstance(exc, ClientError):
        status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
        return int(status) if status is not None else None
    return None


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ClientError) and (
        error_code(exc) in NOT_FOUND_CODES or http_status(exc) == 404
    )


def is_retryable_s3(exc: Exception) -> bool:
    # Netwerk/endpoint timeouts
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        if is_not_found(exc):
            return False
        if error_code(exc) in _RETRY_CODES:
            return True
        status = http_status(exc)
        if status is not None and 500 <= status < 600:
            return True
    return False


def storage_hint(exc: BaseException) -> Optional[str]:
    return _HINTS.get(error_code(exc) or "")


def translate_s3_error(exc: BaseException, action: str, key: Optional[str] = None) -> Exception:
    """Map botocore failures on one object onto the upload error taxonomy."""
    if key is not None and is_not_found(exc):
        return ObjectNotFoundError(key, cause=exc)
    if isinstance(exc, (ClientError, BotoCoreError)):
        target = f" for {key}" if key else ""
        return InternalStorageError(
            f"S3 {action} failed{target}: {exc}",
            cause=exc,
            code=error_code(exc),
        )
    return exc
