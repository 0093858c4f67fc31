# chat_uploads/celery_app.py
from celery import Celery
from celery.signals import worker_process_init

from chat_uploads.core.logging_config import setup_logging
from chat_uploads.core.settings import settings
from chat_uploads.dependencies import get_orchestrator

celery_app = Celery(
    "chat_uploads",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["chat_uploads.tasks.process_upload"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=15 * 60,  # 15 minuten
    task_soft_time_limit=12 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_acks_late=True,
)


@worker_process_init.connect
def _init_worker(**_):
    # per worker proces: logging + scanner verbinding + scratch dir
    setup_logging()
    get_orchestrator().startup()
