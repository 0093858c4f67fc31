# chat_uploads/routers/uploads.py
"""
REST surface voor uploads.

Handlers are plain ``def`` so FastAPI runs them in its thread pool; the
pipeline blocks on S3, clamd and ffmpeg. ``UploadError`` propagates to the
app-level exception handler in ``chat_uploads.main``.
"""
from typing import Optional
from fastapi import APIRouter, Body, Depends, Response

from chat_uploads.auth.deps import CurrentUser, get_current_user
from chat_uploads.core.errors import ValidationError
from chat_uploads.dependencies import get_orchestrator
from chat_uploads.schemas.uploads import (
    AvatarUploadTicket,
    AvatarUrlResponse,
    HealthReport,
    PresignedUpload,
    PresignedUrlRequest,
    PreviewUrlResponse,
    ProcessAvatarRequest,
    ProcessFileRequest,
    ProcessingOutcome,
    ThumbnailOptions,
    ThumbnailUrlResponse,
    UploadAvatarRequest,
    VideoPreviewOptions,
)
from chat_uploads.services.orchestrator import UploadOrchestrator

router = APIRouter(prefix="/upload", tags=["uploads"])


def _object_key(raw: str) -> str:
    # Starlette heeft de path parameter al percent-decoded (%2F -> /); niet nog eens
    key = raw.strip("/")
    if not key:
        raise ValidationError("Object key is required")
    return key


# -----------------------------------------------------------------------------
# Presign
# -----------------------------------------------------------------------------
@router.post("/avatar", response_model=AvatarUploadTicket)
def upload_avatar(
    req: UploadAvatarRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> AvatarUploadTicket:
    return orchestrator.generate_avatar_upload_url(
        user.id, req.file_name, req.mime_type, req.file_size
    )


@router.post("/presigned-url", response_model=PresignedUpload)
def presigned_url(
    req: PresignedUrlRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> PresignedUpload:
    return orchestrator.generate_upload_url(
        req.file_type, req.file_name, req.mime_type, req.file_size
    )


# -----------------------------------------------------------------------------
# Processing
# -----------------------------------------------------------------------------
@router.post("/process", response_model=ProcessingOutcome)
def process_file(
    req: ProcessFileRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> ProcessingOutcome:
    return orchestrator.process_file(req.object_key, req.file_type)


@router.post("/avatar/process", response_model=AvatarUrlResponse)
def process_avatar(
    req: ProcessAvatarRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> AvatarUrlResponse:
    avatar_url = orchestrator.process_avatar_upload(req.object_key, user.id)
    return AvatarUrlResponse(avatar_url=avatar_url)


@router.post("/thumbnail/{object_key:path}", response_model=ThumbnailUrlResponse)
def generate_thumbnail(
    object_key: str,
    options: Optional[ThumbnailOptions] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> ThumbnailUrlResponse:
    url = orchestrator.generate_thumbnail(_object_key(object_key), options)
    return ThumbnailUrlResponse(thumbnail_url=url)


@router.post("/video-preview/{object_key:path}", response_model=PreviewUrlResponse)
def generate_video_preview(
    object_key: str,
    options: Optional[VideoPreviewOptions] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> PreviewUrlResponse:
    url = orchestrator.generate_video_preview(_object_key(object_key), options)
    return PreviewUrlResponse(preview_url=url)


# -----------------------------------------------------------------------------
# Health + delete (catch-all path als laatste)
# -----------------------------------------------------------------------------
@router.get("/health", response_model=HealthReport)
def upload_health(
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> HealthReport:
    return orchestrator.health_check()


@router.delete("/{object_key:path}", status_code=204)
def delete_asset(
    object_key: str,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> Response:
    orchestrator.delete_asset(_object_key(object_key))
    return Response(status_code=204)
