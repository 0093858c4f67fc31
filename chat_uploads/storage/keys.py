# chat_uploads/storage/keys.py
import secrets
import time
from pathlib import PurePosixPath
from typing import Optional

from chat_uploads.schemas.uploads import FileCategory

DEFAULT_EXTENSION = ".bin"
# één vaste key per derivative-soort, ongeacht de gevraagde encoding
THUMBNAIL_SUFFIX = "_thumb.webp"
PREVIEW_SUFFIX = "_preview.jpeg"

_FOLDERS = {
    FileCategory.AVATAR: "avatars",
    FileCategory.IMAGE: "images",
    FileCategory.VIDEO: "videos",
    FileCategory.AUDIO: "audio",
    FileCategory.DOCUMENT: "documents",
}


def s3_key_join(*parts: str) -> str:
    cleaned = [str(p).strip("/ ") for p in parts if p is not None and str(p).strip("/ ")]
    return "/".join(cleaned)


def folder_for(category: FileCategory) -> str:
    return _FOLDERS.get(category, "files")


def _safe_segment(value: str) -> str:
    value = value.replace("..", "")
    return value.replace("/", "_")


def owner_prefix(category: FileCategory, identifier: str) -> str:
    """Map van één eigenaar binnen een categorie, bv. ``avatars/u1/``."""
    return s3_key_join(folder_for(category), _safe_segment(identifier)) + "/"


def file_extension(file_name: str) -> str:
    """Extensie inclusief punt, ``.bin`` als de naam er geen heeft."""
    suffix = PurePosixPath(file_name or "").suffix
    return suffix.lower() if suffix else DEFAULT_EXTENSION


def generate_object_key(
    category: FileCategory,
    identifier: str,
    extension: str,
    *,
    now_ms: Optional[int] = None,
) -> str:
    # {folder}/{identifier}/{epochMillis}_{8 hex}{ext}
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    random_suffix = secrets.token_hex(4)
    return owner_prefix(category, identifier) + f"{timestamp}_{random_suffix}{extension or ''}"


def _derivative_key(object_key: str, suffix: str) -> str:
    path = PurePosixPath(object_key)
    if path.suffix:
        stem = object_key[: -len(path.suffix)]
    else:
        stem = object_key
    return f"{stem}{suffix}"


def thumbnail_key(object_key: str) -> str:
    # avatars/u1/1700000000000_ab12cd34.jpg -> avatars/u1/1700000000000_ab12cd34_thumb.webp
    return _derivative_key(object_key, THUMBNAIL_SUFFIX)


def preview_key(object_key: str) -> str:
    return _derivative_key(object_key, PREVIEW_SUFFIX)
