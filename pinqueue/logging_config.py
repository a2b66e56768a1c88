# pinqueue/logging_config.py
"""
Настройка логирования с контекстом задачи публикации
"""
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

current_job_id: ContextVar[Optional[str]] = ContextVar("current_job_id", default=None)


class StructuredFormatter(logging.Formatter):
    """
    JSON-форматтер, добавляет id текущей задачи очереди
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        job_id = current_job_id.get()
        if job_id:
            log_data["job_id"] = job_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(level: str = "INFO", structured: bool = False) -> None:
    """
    Настроить корневой логгер

    Args:
        level: Уровень логирования (DEBUG, INFO, WARNING, ERROR)
        structured: JSON (True) или читаемый формат (False)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root_logger.addHandler(handler)


class JobContext:
    """
    Контекстный менеджер: все логи внутри блока получают job_id

        with JobContext(job.id):
            logger.info("Publishing...")
    """

    def __init__(self, job_id: Optional[str]):
        self.job_id = job_id
        self._token = None

    def __enter__(self):
        self._token = current_job_id.set(self.job_id)
        return self

    def __exit__(self, *args):
        current_job_id.reset(self._token)
