# chat_uploads/core/errors.py
"""
Foutentaxonomie voor de upload pipeline.

Every failure carries an ``ErrorKind`` so callers (routes, worker tasks) branch
on the kind instead of on exception classes from boto3/Pillow/clamd. Pipeline
failures also carry the FAILED ``ProcessingOutcome`` they produced.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from chat_uploads.schemas.uploads import ProcessingOutcome


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONTENT_INVALID = "content_invalid"
    INFECTED = "infected"
    SCANNER_DEGRADED = "scanner_degraded"
    DERIVATIVE_GENERATION_FAILED = "derivative_generation_failed"
    INTERNAL_STORAGE = "internal_storage"
    INTERNAL_PROCESSING = "internal_processing"
    SCANNER_UNAVAILABLE = "scanner_unavailable"


class UploadError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL_PROCESSING
    status_code: int = 500
    # internal errors tonen nooit details aan de client
    public_message: Optional[str] = None

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.outcome: Optional["ProcessingOutcome"] = None

    def client_message(self) -> str:
        return self.public_message or self.message

    def to_body(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.client_message(),
        }
        if self.outcome is not None:
            error["outcome"] = self.outcome.model_dump(mode="json", by_alias=True)
        return {"ok": False, "error": error}


class ValidationError(UploadError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(UploadError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ObjectNotFoundError(NotFoundError):
    def __init__(self, key: str, *, cause: Optional[BaseException] = None):
        super().__init__(f"Object not found in storage: {key}", cause=cause)
        self.key = key


class ContentInvalidError(UploadError):
    kind = ErrorKind.CONTENT_INVALID
    status_code = 422


class InfectedError(UploadError):
    kind = ErrorKind.INFECTED
    status_code = 422

    def __init__(self, threats: List[str]):
        super().__init__(
            "File contains malware and has been deleted: " + ", ".join(threats)
        )
        self.threats = list(threats)


class InternalStorageError(UploadError):
    kind = ErrorKind.INTERNAL_STORAGE
    status_code = 502
    public_message = "Storage operation failed"

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, cause=cause)
        self.code = code


class InternalProcessingError(UploadError):
    kind = ErrorKind.INTERNAL_PROCESSING
    status_code = 500
    public_message = "File processing failed"


class ScannerUnavailableError(UploadError):
    kind = ErrorKind.SCANNER_UNAVAILABLE
    status_code = 503
    public_message = "Antivirus service unavailable"
