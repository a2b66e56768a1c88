# pinqueue/retry.py
import logging
import time
from typing import Callable, Dict, List, Optional

from pinqueue.database import QueueStore
from pinqueue.errors import ConcurrencyConflict, NotFound, PublishErrorKind, PublishResult
from pinqueue.logging_config import JobContext
from pinqueue.models import JobStatus, QueueItem, RetryOutcome
from pinqueue.publisher import Publisher

logger = logging.getLogger(__name__)


class LocalQueue:
    """
    Локальный снимок очереди для интерфейса.

    Изменения применяются в два шага: сначала предварительно (apply_tentative),
    затем сверяются с ответом хранилища (reconcile). При сбое - полная перезагрузка (refresh).
    """

    def __init__(self, store: QueueStore):
        self.store = store
        self.items: Dict[str, QueueItem] = {}

    def refresh(self) -> List[QueueItem]:
        jobs = self.store.list_jobs()
        self.items = {job.id: job for job in jobs}
        return jobs

    def get(self, job_id: str) -> Optional[QueueItem]:
        return self.items.get(job_id)

    def apply_tentative(self, job_id: str, **changes) -> Optional[QueueItem]:
        job = self.items.get(job_id)
        if job is None:
            return None
        job = job.model_copy(update=changes)
        self.items[job_id] = job
        return job

    def reconcile(self, job: QueueItem) -> QueueItem:
        self.items[job.id] = job
        return job

    def forget(self, job_id: str) -> None:
        self.items.pop(job_id, None)


class RetryFacade:
    """
    Ручной повтор публикации по кнопке оператора.

    Сбрасывает задачу, забирает её и публикует синхронно с ограниченным
    числом попыток и экспоненциальной задержкой (base * 2**n секунд).
    Повторяются только ошибки провайдера.
    """

    def __init__(
        self,
        store: QueueStore,
        publisher: Publisher,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        view: Optional[LocalQueue] = None
    ):
        self.store = store
        self.publisher = publisher
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.sleep = sleep
        self.view = view or LocalQueue(store)

    def backoff_delay(self, failures: int) -> float:
        return self.backoff_base * (2 ** (failures - 1))

    def retry(self, job_id: str) -> RetryOutcome:
        """
        Raises:
            NotFound: задачи нет
            ConcurrencyConflict: задача уже опубликована или обрабатывается воркером
        """
        self.view.apply_tentative(job_id, status=JobStatus.RENDERED, publish_error=None)

        with JobContext(job_id):
            try:
                self.store.reset_for_retry(job_id)
                job = self.store.claim(job_id)
            except NotFound:
                self.view.forget(job_id)
                raise
            except ConcurrencyConflict:
                self.view.refresh()
                raise

            self.view.reconcile(job)
            return self._publish_with_backoff(job)

    def _attempt(self, job: QueueItem) -> PublishResult:
        try:
            return self.publisher.publish(job)
        except Exception as e:
            logger.exception(f"❌ Unexpected publish failure for {job.id}")
            return PublishResult.failure(PublishErrorKind.PROVIDER_ERROR, str(e) or e.__class__.__name__)

    def _publish_with_backoff(self, job: QueueItem) -> RetryOutcome:
        attempt = 0
        while True:
            attempt += 1
            logger.info(f"🔄 Publish attempt {attempt}/{self.max_attempts} for {job.id}")
            result = self._attempt(job)

            if result.ok:
                return self._persist(
                    job.id, attempt, None,
                    lambda: self.store.mark_succeeded(
                        job.id, result.external_id, result.external_url, locked_at=job.locked_at
                    ),
                )

            error = result.error
            if not error.is_transient or attempt >= self.max_attempts:
                logger.warning(f"❌ Giving up on {job.id} after {attempt} attempt(s): {error.message}")
                return self._persist(
                    job.id, attempt, error.to_dict(),
                    lambda: self.store.mark_failed(job.id, error.message),
                )

            outcome = self._persist(
                job.id, attempt, error.to_dict(),
                lambda: self.store.record_attempt_failure(job.id, error.message),
            )
            if outcome.refetched:
                return outcome
            # record_attempt_failure продлевает блокировку
            job = outcome.job

            delay = self.backoff_delay(attempt)
            logger.info(f"⏳ Attempt {attempt} failed ({error.message}), retrying in {delay:g}s")
            self.sleep(delay)

    def _persist(self, job_id: str, attempts: int, error: Optional[Dict], write: Callable[[], QueueItem]) -> RetryOutcome:
        try:
            job = self.view.reconcile(write())
        except Exception as e:
            logger.exception(f"⚠️ Persisting retry outcome for {job_id} failed, reloading queue")
            self.view.refresh()
            return RetryOutcome(
                job=self.view.get(job_id),
                success=False,
                attempts=attempts,
                error={"kind": "PERSISTENCE_ERROR", "error": str(e), "code": None},
                refetched=True,
            )
        return RetryOutcome(
            job=job,
            success=job.status == JobStatus.POSTED,
            attempts=attempts,
            error=None if job.status == JobStatus.POSTED else error,
        )
