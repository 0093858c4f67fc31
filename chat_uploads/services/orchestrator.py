# chat_uploads/services/orchestrator.py
"""
Upload pipeline controller.

Flow: client vraagt een presigned URL -> uploadt rechtstreeks naar S3 ->
vraagt ons de key te "processen". Processing runs strictly in order:

    exists -> fetch -> metadata -> structural validation -> scan
           -> policy decision -> derivatives -> derivative upload -> cleanup

Each invocation is stateless and owns its own scratch files, so many
pipelines can run in parallel on worker threads or Celery workers. The
store, scanner and media processor are shared and thread-safe.
"""
from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Iterator, Optional, TypeVar

import structlog

from chat_uploads.core.errors import (
    ContentInvalidError,
    ErrorKind,
    InfectedError,
    InternalProcessingError,
    NotFoundError,
    UploadError,
    ValidationError,
)
from chat_uploads.observability.metrics import (
    derivative_failures,
    presign_counter,
    process_counter,
    scan_counter,
    stage_latency,
    upload_size_hist,
)
from chat_uploads.schemas.uploads import (
    AvatarUploadTicket,
    FileCategory,
    HealthReport,
    PresignedUpload,
    ProcessingOutcome,
    ProcessingStatus,
    ScanStatus,
    ScanVerdict,
    ThumbnailOptions,
    VideoPreviewOptions,
    utcnow,
)
from chat_uploads.services.media import MediaProcessor, TempFileScope
from chat_uploads.services.policy import validate_upload
from chat_uploads.services.scanner import ENGINE_NAME, ContentScanner
from chat_uploads.services.users import AvatarLinker
from chat_uploads.storage.keys import file_extension, owner_prefix, preview_key, thumbnail_key
from chat_uploads.storage.object_store import S3ObjectStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PRESIGN_TTL_SECONDS = 3600
_THUMBNAIL_CATEGORIES = (FileCategory.IMAGE, FileCategory.AVATAR)


def _category(value: Any) -> FileCategory:
    try:
        return FileCategory(value)
    except ValueError:
        raise ValidationError(f"Unsupported file type: {value}")


@contextmanager
def _stage(name: str, log) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        stage_latency.labels(stage=name).observe(elapsed)
        log.debug("stage_finished", stage=name, seconds=round(elapsed, 4))


class UploadOrchestrator:
    def __init__(
        self,
        store: S3ObjectStore,
        scanner: ContentScanner,
        media: MediaProcessor,
        avatar_linker: Optional[AvatarLinker] = None,
    ):
        self.store = store
        self.scanner = scanner
        self.media = media
        self.avatar_linker = avatar_linker

    def startup(self) -> None:
        """Scanner verbinden en scratch dir aanmaken (bij app/worker start)."""
        self.scanner.initialize()
        self.media.ensure_temp_dir()

    # ------------------------------------------------------------------
    # Presigned uploads
    # ------------------------------------------------------------------
    def generate_upload_url(
        self,
        category: FileCategory,
        file_name: str,
        mime_type: str,
        size_bytes: int,
        owner_identifier: Optional[str] = None,
    ) -> PresignedUpload:
        category = _category(category)
        # validatie altijd vóór enige netwerk-call
        try:
            validate_upload(category, mime_type, size_bytes)
        except ValidationError as e:
            presign_counter.labels(category=category.value, result="validation").inc()
            logger.info("presign_rejected", category=category.value, reason=e.message)
            raise

        identifier = owner_identifier or str(uuid.uuid4())
        object_key = self.store.generate_key(category, identifier, file_extension(file_name))
        try:
            upload_url = self.store.presign_upload(object_key, mime_type, PRESIGN_TTL_SECONDS)
        except UploadError:
            presign_counter.labels(category=category.value, result="error").inc()
            raise

        presign_counter.labels(category=category.value, result="success").inc()
        upload_size_hist.labels(category=category.value).observe(size_bytes)
        return PresignedUpload(
            upload_url=upload_url,
            object_key=object_key,
            public_url=self.store.public_url(object_key),
            expires_in=PRESIGN_TTL_SECONDS,
        )

    def generate_avatar_upload_url(
        self,
        user_id: str,
        file_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> AvatarUploadTicket:
        presigned = self.generate_upload_url(
            FileCategory.AVATAR, file_name, mime_type, size_bytes, owner_identifier=user_id
        )
        return AvatarUploadTicket(
            upload_url=presigned.upload_url,
            object_key=presigned.object_key,
            avatar_url=presigned.public_url,
            expires_in=presigned.expires_in,
        )

    # ------------------------------------------------------------------
    # Processing pipeline
    # ------------------------------------------------------------------
    def process_file(
        self,
        object_key: str,
        category: FileCategory,
        *,
        thumbnail_options: Optional[ThumbnailOptions] = None,
        preview_options: Optional[VideoPreviewOptions] = None,
    ) -> ProcessingOutcome:
        category = _category(category)
        log = logger.bind(object_key=object_key, category=category.value)
        log.info("processing_started")

        outcome = ProcessingOutcome(
            object_key=object_key,
            status=ProcessingStatus.PROCESSING,
            public_url=self.store.public_url(object_key),
            scan=ScanVerdict(status=ScanStatus.PENDING, engine=ENGINE_NAME),
        )

        try:
            # temp files worden bij het verlaten van de scope altijd opgeruimd
            with self.media.temp_scope() as scope:
                self._run_pipeline(
                    object_key, category, outcome, scope, log,
                    thumbnail_options=thumbnail_options,
                    preview_options=preview_options,
                )
        except UploadError as e:
            self._fail(outcome, e, category, log)
            raise
        except Exception as e:
            err = InternalProcessingError(f"File processing failed for {object_key}: {e}", cause=e)
            self._fail(outcome, err, category, log)
            raise err from e

        outcome.status = ProcessingStatus.COMPLETED
        outcome.processed_at = utcnow()
        process_counter.labels(category=category.value, result="completed").inc()
        log.info(
            "processing_completed",
            thumbnail=outcome.thumbnail_url is not None,
            preview=outcome.preview_url is not None,
            warnings=outcome.warnings,
        )
        return outcome

    def _run_pipeline(
        self,
        object_key: str,
        category: FileCategory,
        outcome: ProcessingOutcome,
        scope: TempFileScope,
        log,
        *,
        thumbnail_options: Optional[ThumbnailOptions],
        preview_options: Optional[VideoPreviewOptions],
    ) -> None:
        # 1) exists
        with _stage("exists", log):
            if not self.store.exists(object_key):
                raise NotFoundError("File not found in storage")

        # 2) fetch
        with _stage("fetch", log):
            head = self.store.head_metadata(object_key)
            local_path = scope.new(file_extension(object_key))
            self.store.download(object_key, local_path)

        # 3) metadata (degradeert stil per veld)
        with _stage("metadata", log):
            outcome.metadata = self.media.extract_metadata(
                local_path,
                head.content_type,
                file_name=PurePosixPath(object_key).name,
            )

        # 4) structural validation
        with _stage("validate", log):
            if not self.media.validate_content(local_path, head.content_type):
                raise ContentInvalidError("Invalid file content or corrupted file")

        # 5) scan + policy decision
        with _stage("scan", log):
            verdict = self.scanner.scan(local_path)
        outcome.scan = verdict
        scan_counter.labels(status=verdict.status.value, engine=verdict.engine).inc()

        if verdict.status == ScanStatus.INFECTED:
            self._delete_infected(object_key, log)
            raise InfectedError(verdict.threats or ["Unknown threat"])

        if verdict.status == ScanStatus.ERROR:
            # bewuste keuze: beschikbaarheid boven strikt weigeren
            log.warning("scanner_degraded", detail="antivirus scan failed, proceeding with caution")
            outcome.warnings.append(ErrorKind.SCANNER_DEGRADED.value)

        # 6) derivatives (best-effort)
        with _stage("derivatives", log):
            self._generate_derivatives(
                local_path, object_key, category, outcome, scope, log,
                thumbnail_options=thumbnail_options,
                preview_options=preview_options,
            )

    def _generate_derivatives(
        self,
        src: Path,
        object_key: str,
        category: FileCategory,
        outcome: ProcessingOutcome,
        scope: TempFileScope,
        log,
        *,
        thumbnail_options: Optional[ThumbnailOptions],
        preview_options: Optional[VideoPreviewOptions],
    ) -> None:
        if category in _THUMBNAIL_CATEGORIES:
            try:
                outcome.thumbnail_url = self._render_thumbnail(
                    src, object_key, thumbnail_options or ThumbnailOptions(), scope
                )
            except Exception as e:
                self._derivative_failed("thumbnail", e, outcome, log)

        elif category == FileCategory.VIDEO:
            try:
                outcome.preview_url = self._render_preview(
                    src, object_key, preview_options or VideoPreviewOptions(), scope
                )
            except Exception as e:
                self._derivative_failed("preview", e, outcome, log)

    def _render_thumbnail(
        self,
        src: Path,
        object_key: str,
        options: ThumbnailOptions,
        scope: TempFileScope,
    ) -> str:
        dst = scope.new(f".{options.format}")
        self.media.generate_thumbnail(src, dst, options)
        return self.store.put(
            thumbnail_key(object_key),
            dst,
            f"image/{options.format}",
            {"original-key": object_key},
        )

    def _render_preview(
        self,
        src: Path,
        object_key: str,
        options: VideoPreviewOptions,
        scope: TempFileScope,
    ) -> str:
        dst = scope.new(f".{options.format}")
        self.media.generate_video_preview(src, dst, options)
        return self.store.put(
            preview_key(object_key),
            dst,
            f"image/{options.format}",
            {"original-key": object_key},
        )

    @staticmethod
    def _derivative_failed(name: str, exc: Exception, outcome: ProcessingOutcome, log) -> None:
        derivative_failures.labels(derivative=name).inc()
        log.warning("derivative_generation_failed", derivative=name, error=str(exc))
        outcome.warnings.append(ErrorKind.DERIVATIVE_GENERATION_FAILED.value)

    def _delete_infected(self, object_key: str, log) -> None:
        try:
            self.store.delete(object_key)
            log.warning("infected_object_deleted")
        except Exception as e:
            # niet opnieuw gooien: de infectie-uitkomst mag niet gemaskeerd worden
            log.error("infected_object_delete_failed", error=str(e))

    @staticmethod
    def _fail(outcome: ProcessingOutcome, err: UploadError, category: FileCategory, log) -> None:
        outcome.status = ProcessingStatus.FAILED
        outcome.processed_at = utcnow()
        err.outcome = outcome
        process_counter.labels(category=category.value, result=err.kind.value).inc()
        if err.status_code >= 500:
            log.error(
                "processing_failed",
                kind=err.kind.value,
                error=err.message,
                cause=repr(err.cause) if err.cause else None,
                exc_info=err.cause or err,
            )
        else:
            log.warning("processing_failed", kind=err.kind.value, error=err.message)

    # ------------------------------------------------------------------
    # Avatar
    # ------------------------------------------------------------------
    def process_avatar_upload(self, object_key: str, user_id: str) -> str:
        if self.avatar_linker is None:
            raise InternalProcessingError("No avatar linker configured")
        # alleen keys uit de eigen avatar-map (presign heeft daar de AVATAR policy afgedwongen)
        if not object_key.startswith(owner_prefix(FileCategory.AVATAR, user_id)):
            raise ValidationError("Object key does not belong to this user's avatars")

        outcome = self.process_file(object_key, FileCategory.AVATAR)
        if outcome.status != ProcessingStatus.COMPLETED:
            raise InternalProcessingError("Avatar processing failed")

        self.avatar_linker.link_avatar(user_id, outcome.public_url)
        logger.info("avatar_processed", user_id=user_id, object_key=object_key)
        return outcome.public_url

    # ------------------------------------------------------------------
    # On-demand derivatives
    # ------------------------------------------------------------------
    def generate_thumbnail(self, object_key: str, options: Optional[ThumbnailOptions] = None) -> str:
        opts = options or ThumbnailOptions()
        return self._on_demand(
            "thumbnail",
            object_key,
            lambda src, scope: self._render_thumbnail(src, object_key, opts, scope),
        )

    def generate_video_preview(self, object_key: str, options: Optional[VideoPreviewOptions] = None) -> str:
        opts = options or VideoPreviewOptions()
        return self._on_demand(
            "preview",
            object_key,
            lambda src, scope: self._render_preview(src, object_key, opts, scope),
        )

    def _on_demand(
        self,
        name: str,
        object_key: str,
        render: Callable[[Path, TempFileScope], T],
    ) -> T:
        log = logger.bind(object_key=object_key, derivative=name)
        try:
            with self.media.temp_scope() as scope:
                if not self.store.exists(object_key):
                    raise NotFoundError("File not found in storage")
                src = scope.new(file_extension(object_key))
                self.store.download(object_key, src)
                url = render(src, scope)
        except UploadError as e:
            log.error("derivative_request_failed", kind=e.kind.value, error=e.message)
            raise
        except Exception as e:
            log.error("derivative_request_failed", error=str(e), exc_info=True)
            raise InternalProcessingError(f"Failed to generate {name}: {e}", cause=e) from e
        log.info("derivative_generated", url=url)
        return url

    # ------------------------------------------------------------------
    # Delete / health
    # ------------------------------------------------------------------
    def delete_asset(self, object_key: str) -> None:
        """Verwijder origineel + beide afgeleide keys, ook als die nooit bestonden."""
        log = logger.bind(object_key=object_key)
        original_error: Optional[UploadError] = None
        try:
            self.store.delete(object_key)
        except UploadError as e:
            original_error = e
            log.error("asset_delete_failed", error=e.message)

        for derived in (thumbnail_key(object_key), preview_key(object_key)):
            try:
                self.store.delete(derived)
            except UploadError as e:
                log.warning("derivative_delete_failed", derived_key=derived, error=e.message)

        if original_error is not None:
            raise original_error
        log.info("asset_deleted")

    def health_check(self) -> HealthReport:
        return HealthReport(
            store=self._probe("store", self.store.health_check),
            scanner=self._probe("scanner", self.scanner.health_check),
            # geen externe afhankelijkheid om te pingen
            media_processing=True,
        )

    @staticmethod
    def _probe(name: str, check: Callable[[], bool]) -> bool:
        try:
            return bool(check())
        except Exception as e:
            logger.error("health_probe_failed", component=name, error=str(e))
            return False
