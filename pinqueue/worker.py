# pinqueue/worker.py
import logging
from typing import List

from pinqueue.database import QueueStore
from pinqueue.logging_config import JobContext
from pinqueue.models import BatchItemResult, BatchSummary, QueueItem
from pinqueue.publisher import Publisher

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Забирает пачку задач и публикует их по очереди.
    Ошибка одной задачи не мешает остальным, кроме NOT_CONFIGURED:
    тогда пачка прерывается, а незатронутые задачи возвращаются в очередь.
    """

    def __init__(self, store: QueueStore, publisher: Publisher, release_on_abort: bool = True):
        self.store = store
        self.publisher = publisher
        self.release_on_abort = release_on_abort

    def run_batch(self, limit: int) -> BatchSummary:
        jobs = self.store.claim_batch(limit)
        summary = BatchSummary()

        if not jobs:
            logger.info("💤 No jobs to process")
            return summary

        logger.info(f"⚙️ Claimed {len(jobs)} job(s)")

        for index, job in enumerate(jobs):
            with JobContext(job.id):
                aborted = self._process(job, summary)
            if aborted:
                summary.aborted = True
                logger.error("❌ Pinterest not configured. Aborting batch.")
                self._release_remaining(jobs[index + 1:], summary)
                break

        summary.processed = len(summary.details)
        return summary

    def publish_one(self, job_id: str) -> BatchItemResult:
        """
        Принудительная публикация одной задачи (кнопка "Force Publish")

        Raises:
            NotFound, ConcurrencyConflict: задачу нельзя забрать
        """
        job = self.store.claim(job_id)
        summary = BatchSummary()
        with JobContext(job.id):
            self._process(job, summary)
        return summary.details[0]

    def _process(self, job: QueueItem, summary: BatchSummary) -> bool:
        """
        Обработать одну задачу. Возвращает True, если пачку надо прервать.
        """
        logger.info(f"🚀 Processing job {job.id}...")

        try:
            result = self.publisher.publish(job)
        except Exception as e:
            logger.exception(f"❌ Worker execution failed for {job.id}")
            self._fail(job, str(e) or e.__class__.__name__, {"error": str(e)}, summary)
            return False

        if result.ok:
            try:
                self.store.mark_succeeded(
                    job.id, result.external_id, result.external_url, locked_at=job.locked_at
                )
            except Exception as e:
                logger.warning(f"⚠️ Could not persist success for {job.id}: {e}")
                summary.details.append(BatchItemResult(
                    id=job.id, status="failed", result={"error": str(e), "external_id": result.external_id}
                ))
                return False
            logger.info(f"✅ Job {job.id} posted as {result.external_id}")
            summary.details.append(BatchItemResult(
                id=job.id, status="ok",
                result={"external_id": result.external_id, "external_url": result.external_url}
            ))
            return False

        error = result.error
        logger.warning(f"❌ Job {job.id} failed ({error.kind.value}): {error.message}")
        self._fail(job, error.message, error.to_dict(), summary)
        return error.is_systemic

    def _fail(self, job: QueueItem, reason: str, details: dict, summary: BatchSummary) -> None:
        try:
            self.store.mark_failed(job.id, reason)
        except Exception as e:
            logger.warning(f"⚠️ Could not persist failure for {job.id}: {e}")
        summary.details.append(BatchItemResult(id=job.id, status="failed", result=details))

    def _release_remaining(self, remaining: List[QueueItem], summary: BatchSummary) -> None:
        if not remaining or not self.release_on_abort:
            return
        for job in remaining:
            try:
                self.store.release(job.id)
                summary.released.append(job.id)
            except Exception as e:
                logger.warning(f"⚠️ Could not release {job.id}: {e}")
        logger.info(f"🔓 Released {len(summary.released)} untouched job(s)")
