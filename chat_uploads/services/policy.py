# chat_uploads/services/policy.py
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping

from chat_uploads.core.errors import ValidationError
from chat_uploads.schemas.uploads import FileCategory

MIB = 1024 * 1024
MIN_IMAGE_BYTES = 100


@dataclass(frozen=True)
class UploadPolicy:
    max_bytes: int
    allowed_mime_types: FrozenSet[str]

    @property
    def max_mb(self) -> float:
        return self.max_bytes / MIB


UPLOAD_POLICIES: Mapping[FileCategory, UploadPolicy] = MappingProxyType({
    FileCategory.AVATAR: UploadPolicy(
        5 * MIB,
        frozenset({"image/jpeg", "image/png", "image/webp"}),
    ),
    FileCategory.IMAGE: UploadPolicy(
        10 * MIB,
        frozenset({"image/jpeg", "image/png", "image/webp", "image/gif", "image/bmp"}),
    ),
    FileCategory.VIDEO: UploadPolicy(
        50 * MIB,
        frozenset({"video/mp4", "video/webm", "video/ogg", "video/avi", "video/mov"}),
    ),
    FileCategory.AUDIO: UploadPolicy(
        20 * MIB,
        frozenset({"audio/mp3", "audio/wav", "audio/ogg", "audio/aac", "audio/m4a"}),
    ),
    FileCategory.DOCUMENT: UploadPolicy(
        25 * MIB,
        frozenset({
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "text/plain",
            "text/csv",
        }),
    ),
})


def policy_for(category: FileCategory) -> UploadPolicy:
    try:
        return UPLOAD_POLICIES[FileCategory(category)]
    except (KeyError, ValueError):
        raise ValidationError(f"Unsupported file type: {category}")


def validate_mime(category: FileCategory, mime_type: str) -> None:
    policy = policy_for(category)
    if mime_type not in policy.allowed_mime_types:
        allowed = ", ".join(sorted(policy.allowed_mime_types))
        raise ValidationError(
            f"Invalid MIME type for {FileCategory(category).value} files: {mime_type} (allowed: {allowed})"
        )


def validate_size(category: FileCategory, size_bytes: int) -> None:
    policy = policy_for(category)
    if size_bytes <= 0:
        raise ValidationError("File size must be positive")
    if size_bytes > policy.max_bytes:
        raise ValidationError(f"File size too large. Maximum size is {policy.max_mb:g}MB")
    if FileCategory(category) == FileCategory.IMAGE and size_bytes < MIN_IMAGE_BYTES:
        raise ValidationError("Image file too small")


def validate_upload(category: FileCategory, mime_type: str, size_bytes: int) -> UploadPolicy:
    """Policy check vóór enige I/O; gooit ValidationError bij een overtreding."""
    validate_mime(category, mime_type)
    validate_size(category, size_bytes)
    return policy_for(category)
