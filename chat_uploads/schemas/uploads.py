# chat_uploads/schemas/uploads.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    # wire format is camelCase (browser client), python-kant blijft snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileCategory(str, Enum):
    AVATAR = "avatar"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ScanStatus(str, Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    CLEAN = "clean"
    INFECTED = "infected"
    ERROR = "error"


# ---------- Pipeline models ----------
class FileMetadata(CamelModel):
    file_name: str = ""
    mime_type: str = ""
    size_bytes: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    duration_ms: Optional[int] = None
    bitrate: Optional[int] = None
    format: Optional[str] = None
    codec: Optional[str] = None


class ScanVerdict(CamelModel):
    status: ScanStatus = ScanStatus.PENDING
    scanned_at: datetime = Field(default_factory=utcnow)
    engine: str = "ClamAV"
    engine_version: Optional[str] = None
    threats: Optional[List[str]] = None

    @property
    def is_disabled(self) -> bool:
        return self.status == ScanStatus.CLEAN and self.engine == "Disabled"


class ProcessingOutcome(CamelModel):
    object_key: str
    status: ProcessingStatus = ProcessingStatus.PROCESSING
    public_url: str
    thumbnail_url: Optional[str] = None
    preview_url: Optional[str] = None
    metadata: FileMetadata = Field(default_factory=FileMetadata)
    scan: ScanVerdict = Field(default_factory=ScanVerdict)
    processed_at: datetime = Field(default_factory=utcnow)
    warnings: List[str] = Field(default_factory=list)


ImageFormat = Literal["jpeg", "png", "webp"]


class ThumbnailOptions(CamelModel):
    width: int = Field(200, ge=50)
    height: int = Field(200, ge=50)
    format: ImageFormat = "webp"
    quality: int = Field(80, ge=1, le=100)


class VideoPreviewOptions(CamelModel):
    timestamp_seconds: float = Field(5, ge=0)
    width: int = Field(320, ge=50)
    height: int = Field(240, ge=50)
    format: ImageFormat = "jpeg"


class OptimizationOptions(CamelModel):
    convert_to_webp: bool = True
    image_quality: int = Field(85, ge=1, le=100)


# ---------- Request / response bodies ----------
class UploadAvatarRequest(CamelModel):
    file_name: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(min_length=3, max_length=100)
    file_size: int = Field(gt=0)


class PresignedUrlRequest(CamelModel):
    file_type: FileCategory
    file_name: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(min_length=3, max_length=100)
    file_size: int = Field(gt=0)


class ProcessFileRequest(CamelModel):
    object_key: str = Field(min_length=1)
    file_type: FileCategory


class ProcessAvatarRequest(CamelModel):
    object_key: str = Field(min_length=1)


class PresignedUpload(CamelModel):
    upload_url: str
    object_key: str
    public_url: str
    expires_in: int


class AvatarUploadTicket(CamelModel):
    upload_url: str
    object_key: str
    avatar_url: str
    expires_in: int


class AvatarUrlResponse(CamelModel):
    avatar_url: str


class ThumbnailUrlResponse(CamelModel):
    thumbnail_url: str


class PreviewUrlResponse(CamelModel):
    preview_url: str


class HealthReport(CamelModel):
    store: bool
    scanner: bool
    media_processing: bool = True
