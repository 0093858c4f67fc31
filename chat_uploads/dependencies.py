# chat_uploads/dependencies.py
"""
Process-wide singletons voor FastAPI DI en de Celery worker.

Store, scanner and media processor are shared by every pipeline; tests
swap them out with ``app.dependency_overrides[get_orchestrator]``.
"""
from functools import lru_cache

from chat_uploads.core.settings import settings
from chat_uploads.db import SessionLocal
from chat_uploads.services.media import MediaProcessor
from chat_uploads.services.orchestrator import UploadOrchestrator
from chat_uploads.services.scanner import ContentScanner
from chat_uploads.services.users import SqlAvatarLinker
from chat_uploads.storage.object_store import S3ObjectStore, build_object_store


@lru_cache(maxsize=1)
def get_object_store() -> S3ObjectStore:
    """Singleton S3 client (boto3 clients zijn thread-safe)."""
    return build_object_store(settings)


@lru_cache(maxsize=1)
def get_scanner() -> ContentScanner:
    return ContentScanner.from_settings(settings)


@lru_cache(maxsize=1)
def get_media_processor() -> MediaProcessor:
    return MediaProcessor.from_settings(settings)


@lru_cache(maxsize=1)
def get_orchestrator() -> UploadOrchestrator:
    return UploadOrchestrator(
        get_object_store(),
        get_scanner(),
        get_media_processor(),
        SqlAvatarLinker(SessionLocal),
    )
