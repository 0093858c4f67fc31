# chat_uploads/services/media.py
from __future__ import annotations

import json
import os
import subprocess
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from chat_uploads.core.errors import InternalProcessingError
from chat_uploads.core.settings import Settings
from chat_uploads.schemas.uploads import (
    FileMetadata,
    OptimizationOptions,
    ThumbnailOptions,
    VideoPreviewOptions,
)

logger = structlog.get_logger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

# Pillow kent "webp"/"png" direct, jpeg heet daar "JPEG"
_PIL_FORMATS = {"jpeg": "JPEG", "jpg": "JPEG", "png": "PNG", "webp": "WEBP"}

# magic bytes voor documenten die we structureel kunnen herkennen
_DOCUMENT_SIGNATURES = {
    "application/pdf": (b"%PDF-",),
    "application/msword": (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (b"PK\x03\x04",),
}


class MediaCommandError(RuntimeError):
    pass


class TempFileScope:
    """
    Registry of scratch files owned by one pipeline invocation.

    Every path handed out by ``new`` is removed when the scope exits, on
    success, early return and exception alike.
    """

    def __init__(self, processor: "MediaProcessor"):
        self.processor = processor
        self.paths: List[Path] = []

    def new(self, extension: str) -> Path:
        path = self.processor.create_temp_path(extension)
        self.paths.append(path)
        return path

    def __enter__(self) -> "TempFileScope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.processor.cleanup(self.paths)
        self.paths = []


class MediaProcessor:
    def __init__(
        self,
        temp_dir: PathLike = "/tmp/uploads",
        *,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        command_timeout: float = 120.0,
    ):
        self.temp_dir = Path(temp_dir)
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.command_timeout = command_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaProcessor":
        return cls(
            settings.TEMP_DIR,
            ffmpeg_binary=settings.FFMPEG_BINARY,
            ffprobe_binary=settings.FFPROBE_BINARY,
            command_timeout=settings.MEDIA_COMMAND_TIMEOUT_SECONDS,
        )

    def ensure_temp_dir(self) -> None:
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("temp_dir_create_failed", temp_dir=str(self.temp_dir), error=str(e))

    # ---------- temp files ----------
    def create_temp_path(self, extension: str) -> Path:
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        return self.temp_dir / f"{uuid.uuid4().hex}{extension or ''}"

    def temp_scope(self) -> TempFileScope:
        return TempFileScope(self)

    def cleanup(self, paths: Iterable[PathLike]) -> None:
        for p in paths:
            path = Path(p)
            try:
                path.unlink(missing_ok=True)
                logger.debug("temp_file_removed", path=str(path))
            except OSError as e:
                # best-effort: één mislukte delete stopt de rest niet
                logger.warning("temp_file_cleanup_failed", path=str(path), error=str(e))

    # ---------- metadata ----------
    def extract_metadata(
        self,
        path: PathLike,
        mime_type: str,
        file_name: Optional[str] = None,
    ) -> FileMetadata:
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise InternalProcessingError(f"Failed to stat {path}: {e}", cause=e) from e

        base = FileMetadata(
            file_name=file_name or path.name,
            mime_type=mime_type,
            size_bytes=size,
        )

        if mime_type.startswith("image/"):
            return self._image_metadata(path, base)
        if mime_type.startswith("video/"):
            return self._video_metadata(path, base)
        if mime_type.startswith("audio/"):
            return self._audio_metadata(path, base)
        return base

    def _image_metadata(self, path: Path, base: FileMetadata) -> FileMetadata:
        try:
            with Image.open(path) as img:
                width, height = img.size
                fmt = (img.format or "").lower() or None
            return base.model_copy(update={"width": width, "height": height, "format": fmt})
        except Exception as e:
            logger.warning("image_metadata_failed", path=str(path), error=str(e))
            return base

    def _video_metadata(self, path: Path, base: FileMetadata) -> FileMetadata:
        try:
            probe = self.probe(path)
        except Exception as e:
            logger.warning("video_metadata_failed", path=str(path), error=str(e))
            return base

        video = _first_stream(probe, "video")
        audio = _first_stream(probe, "audio")
        update = _format_fields(probe)
        if video:
            update["width"] = _as_int(video.get("width"))
            update["height"] = _as_int(video.get("height"))
        update["codec"] = (video or {}).get("codec_name") or (audio or {}).get("codec_name")
        return base.model_copy(update=update)

    def _audio_metadata(self, path: Path, base: FileMetadata) -> FileMetadata:
        try:
            probe = self.probe(path)
        except Exception as e:
            logger.warning("audio_metadata_failed", path=str(path), error=str(e))
            return base

        audio = _first_stream(probe, "audio")
        update = _format_fields(probe)
        update["codec"] = (audio or {}).get("codec_name")
        return base.model_copy(update=update)

    # ---------- derivatives ----------
    def generate_thumbnail(
        self,
        src: PathLike,
        dst: PathLike,
        options: Optional[ThumbnailOptions] = None,
    ) -> None:
        opts = options or ThumbnailOptions()
        try:
            with Image.open(src) as img:
                img = ImageOps.exif_transpose(img)
                # cover fit, gecentreerd
                thumb = ImageOps.fit(
                    img,
                    (opts.width, opts.height),
                    method=Image.Resampling.LANCZOS,
                    centering=(0.5, 0.5),
                )
                _save_image(thumb, dst, opts.format, opts.quality)
            logger.info("thumbnail_generated", path=str(dst), width=opts.width, height=opts.height)
        except Exception as e:
            logger.error("thumbnail_generation_failed", src=str(src), error=str(e))
            raise InternalProcessingError(f"Failed to generate image thumbnail: {e}", cause=e) from e

    def generate_video_preview(
        self,
        src: PathLike,
        dst: PathLike,
        options: Optional[VideoPreviewOptions] = None,
    ) -> None:
        opts = options or VideoPreviewOptions()
        dst = Path(dst)
        cmd = [
            self.ffmpeg_binary,
            "-y",
            "-loglevel", "error",
            "-ss", str(opts.timestamp_seconds),
            "-i", str(src),
            "-frames:v", "1",
            "-vf", f"scale={opts.width}:{opts.height}",
            "-f", "image2",
            "-c:v", _FFMPEG_CODECS[opts.format],
            str(dst),
        ]
        try:
            self._run(cmd)
            if not dst.exists() or dst.stat().st_size == 0:
                # timestamp voorbij het einde van de video: ffmpeg schrijft niets
                raise MediaCommandError(f"no frame at {opts.timestamp_seconds}s")
            logger.info("video_preview_generated", path=str(dst))
        except Exception as e:
            logger.error("video_preview_generation_failed", src=str(src), error=str(e))
            raise InternalProcessingError(f"Failed to generate video preview: {e}", cause=e) from e

    def optimize_image(
        self,
        src: PathLike,
        dst: PathLike,
        options: Optional[OptimizationOptions] = None,
    ) -> None:
        opts = options or OptimizationOptions()
        fmt = "webp" if opts.convert_to_webp else "jpeg"
        try:
            with Image.open(src) as img:
                img = ImageOps.exif_transpose(img)
                _save_image(img, dst, fmt, opts.image_quality)
            logger.info("image_optimized", path=str(dst), format=fmt)
        except Exception as e:
            logger.error("image_optimization_failed", src=str(src), error=str(e))
            raise InternalProcessingError(f"Failed to optimize image: {e}", cause=e) from e

    # ---------- validation ----------
    def validate_content(self, path: PathLike, mime_type: str) -> bool:
        path = Path(path)
        try:
            if mime_type.startswith("image/"):
                return self._valid_image(path)
            if mime_type.startswith("video/"):
                return self._has_stream(path, "video")
            if mime_type.startswith("audio/"):
                return self._has_stream(path, "audio")
            return self._valid_document(path, mime_type)
        except Exception as e:
            logger.warning("content_validation_failed", path=str(path), mime_type=mime_type, error=str(e))
            return False

    @staticmethod
    def _valid_image(path: Path) -> bool:
        try:
            with Image.open(path) as img:
                img.verify()
            return True
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
            return False

    def _has_stream(self, path: Path, codec_type: str) -> bool:
        try:
            probe = self.probe(path)
        except MediaCommandError as e:
            logger.warning("probe_failed", path=str(path), error=str(e))
            return False
        return _first_stream(probe, codec_type) is not None

    @staticmethod
    def _valid_document(path: Path, mime_type: str) -> bool:
        if not os.access(path, os.R_OK):
            return False
        signatures = _DOCUMENT_SIGNATURES.get(mime_type)
        if not signatures:
            return path.stat().st_size > 0
        with path.open("rb") as fh:
            head = fh.read(16)
        return any(head.startswith(sig) for sig in signatures)

    # ---------- ffprobe / ffmpeg ----------
    def probe(self, path: PathLike) -> Dict[str, Any]:
        cmd = [
            self.ffprobe_binary,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        out = self._run(cmd)
        try:
            return json.loads(out or "{}")
        except json.JSONDecodeError as e:
            raise MediaCommandError(f"ffprobe returned invalid JSON: {e}") from e

    def _run(self, cmd: List[str]) -> str:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.command_timeout,
            )
        except FileNotFoundError as e:
            raise MediaCommandError(f"{cmd[0]} not installed") from e
        except subprocess.TimeoutExpired as e:
            raise MediaCommandError(f"{cmd[0]} timed out after {self.command_timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise MediaCommandError(f"{cmd[0]} exited with {e.returncode}: {stderr}") from e
        return result.stdout


_FFMPEG_CODECS = {"jpeg": "mjpeg", "png": "png", "webp": "libwebp"}


def _save_image(img: Image.Image, dst: PathLike, fmt: str, quality: int) -> None:
    pil_format = _PIL_FORMATS[fmt]
    if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    elif pil_format == "WEBP" and img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
    params: Dict[str, Any] = {}
    if pil_format in ("JPEG", "WEBP"):
        params["quality"] = quality
    if pil_format == "PNG":
        params["optimize"] = True
    img.save(dst, format=pil_format, **params)


def _first_stream(probe: Dict[str, Any], codec_type: str) -> Optional[Dict[str, Any]]:
    for stream in probe.get("streams") or []:
        if stream.get("codec_type") == codec_type:
            return stream
    return None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _format_fields(probe: Dict[str, Any]) -> Dict[str, Any]:
    fmt = probe.get("format") or {}
    duration = fmt.get("duration")
    fields: Dict[str, Any] = {
        "bitrate": _as_int(fmt.get("bit_rate")),
        "format": fmt.get("format_name"),
        "duration_ms": None,
    }
    try:
        if duration is not None:
            fields["duration_ms"] = round(float(duration) * 1000)
    except (TypeError, ValueError):
        pass
    return fields
