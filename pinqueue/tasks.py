# pinqueue/tasks.py
"""
Периодический запуск воркера через Celery beat:

    celery -A pinqueue.tasks worker --beat
"""
import logging
from typing import Optional

from celery import Celery

from pinqueue.config import get_settings
from pinqueue.logging_config import setup_logging
from pinqueue.services import Services, build_services

logger = logging.getLogger(__name__)

settings = get_settings()

celery = Celery("pinqueue", broker=settings.redis_url)

celery.conf.update(
    enable_utc=True,
    timezone="UTC",
    task_acks_late=False,
    beat_schedule={
        "publish-pinterest-batch": {
            "task": "pinqueue.publish_batch",
            "schedule": float(settings.worker_interval_seconds),
        }
    },
)

_services: Optional[Services] = None


def get_worker_services() -> Services:
    global _services
    if _services is None:
        setup_logging(settings.log_level, settings.log_structured)
        _services = build_services(settings)
    return _services


@celery.task(name="pinqueue.publish_batch")
def publish_batch(limit: Optional[int] = None) -> dict:
    services = get_worker_services()
    summary = services.dispatcher.run_batch(limit or services.settings.worker_batch_size)
    logger.info(f"📊 Batch done: processed={summary.processed} aborted={summary.aborted}")
    return summary.model_dump(mode="json")
