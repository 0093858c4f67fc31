# chat_uploads/tasks/process_upload.py
"""
Deferred processing: dezelfde pipeline als POST /upload/process, maar op een
Celery worker. The result is the JSON outcome (camelCase), or the error body
for terminal failures. Storage errors are retried with backoff.
"""
from typing import Any, Dict

import structlog

from chat_uploads.celery_app import celery_app
from chat_uploads.core.errors import InternalStorageError, UploadError
from chat_uploads.dependencies import get_orchestrator
from chat_uploads.infra.retry import backoff_delay

logger = structlog.get_logger(__name__)

MAX_STORAGE_RETRIES = 3


@celery_app.task(bind=True, name="process_upload", max_retries=MAX_STORAGE_RETRIES)
def process_upload_task(self, object_key: str, file_type: str) -> Dict[str, Any]:
    log = logger.bind(task_id=self.request.id, object_key=object_key, file_type=file_type)
    log.info("process_upload_started", attempt=self.request.retries)
    try:
        outcome = get_orchestrator().process_file(object_key, file_type)
    except InternalStorageError as e:
        if self.request.retries < self.max_retries:
            countdown = backoff_delay(2.0, 2.0, self.request.retries + 1, 60.0)
            log.warning("process_upload_retry", error=e.message, countdown=round(countdown, 2))
            raise self.retry(exc=e, countdown=countdown)
        log.error("process_upload_failed", kind=e.kind.value, error=e.message)
        return e.to_body()
    except UploadError as e:
        log.warning("process_upload_failed", kind=e.kind.value, error=e.message)
        return e.to_body()

    log.info("process_upload_completed", status=outcome.status.value)
    return {"ok": True, "outcome": outcome.model_dump(mode="json", by_alias=True)}
