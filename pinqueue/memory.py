# pinqueue/memory.py
"""
Хранилища в памяти процесса (STORAGE_BACKEND=memory, тесты).
Каждая операция выполняется под одной блокировкой - аналог условного UPDATE в Postgres.
"""
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pinqueue.database import (
    CONTENT_FIELDS,
    EDITABLE_STATUSES,
    RESETTABLE_STATUSES,
    BoardStore,
    Clock,
    CredentialStore,
    QueueStore,
    utcnow,
)
from pinqueue.errors import ConcurrencyConflict, NotFound
from pinqueue.models import BoardMapping, Credential, JobStatus, QueueItem


class InMemoryQueueStore(QueueStore):

    def __init__(self, lease_seconds: int = 600, clock: Clock = utcnow):
        super().__init__(lease_seconds, clock)
        self._items: Dict[str, QueueItem] = {}
        self._lock = threading.Lock()

    def enqueue(self, payload: Dict) -> QueueItem:
        row = self._new_row(payload)
        row["id"] = row.get("id") or str(uuid.uuid4())
        row.setdefault("created_at", self.clock())
        job = QueueItem.model_validate(row)
        with self._lock:
            self._items[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[QueueItem]:
        with self._lock:
            return self._items.get(job_id)

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[QueueItem]:
        with self._lock:
            jobs = list(self._items.values())
        if status:
            jobs = [j for j in jobs if j.status == JobStatus(status)]
        # scheduled_at по возрастанию (пустые в конце), затем новые первыми
        jobs.sort(key=lambda j: j.created_at.timestamp() if j.created_at else 0.0, reverse=True)
        jobs.sort(key=lambda j: (j.scheduled_at is None, j.scheduled_at.timestamp() if j.scheduled_at else 0.0))
        return jobs

    def _transition(self, job_id: str, allowed, expected: str, **updates) -> QueueItem:
        with self._lock:
            job = self._items.get(job_id)
            if job is None:
                raise NotFound(job_id)
            if not allowed(job):
                raise ConcurrencyConflict(job_id, expected, job.status.value)
            # через валидацию: даты из запроса приводятся к UTC
            job = QueueItem.model_validate({**job.model_dump(), **updates})
            self._items[job_id] = job
            return job

    def claim_batch(self, limit: int) -> List[QueueItem]:
        claimed = []
        with self._lock:
            now = self.clock()
            for job_id, job in list(self._items.items()):
                if len(claimed) >= limit:
                    break
                if not job.is_claimable(now, self.lease_seconds):
                    continue
                job = job.model_copy(update={"status": JobStatus.PROCESSING, "locked_at": now})
                self._items[job_id] = job
                claimed.append(job)
        return claimed

    def claim(self, job_id: str) -> QueueItem:
        now = self.clock()
        return self._transition(
            job_id,
            lambda j: j.is_claimable(now, self.lease_seconds),
            "claimable",
            status=JobStatus.PROCESSING,
            locked_at=now,
        )

    def mark_succeeded(
        self,
        job_id: str,
        external_id: str,
        external_url: Optional[str] = None,
        locked_at: Optional[datetime] = None
    ) -> QueueItem:
        with self._lock:
            job = self._items.get(job_id)
            if job is None:
                raise NotFound(job_id)
            if job.status == JobStatus.POSTED:
                return job
            if job.status != JobStatus.PROCESSING:
                raise ConcurrencyConflict(job_id, JobStatus.PROCESSING.value, job.status.value)
            if locked_at is not None and job.locked_at != locked_at:
                raise ConcurrencyConflict(job_id, "processing (lease held)", "processing (lease lost)")
            job = job.model_copy(update={
                "status": JobStatus.POSTED,
                "external_post_id": external_id,
                "external_post_url": external_url or job.external_post_url,
                "published_at": self.clock(),
                "locked_at": None,
                "publish_error": None,
            })
            self._items[job_id] = job
            return job

    def _increment_failure(self, job_id: str, reason: str, terminal: bool) -> QueueItem:
        with self._lock:
            job = self._items.get(job_id)
            if job is None:
                raise NotFound(job_id)
            if job.status != JobStatus.PROCESSING:
                raise ConcurrencyConflict(job_id, JobStatus.PROCESSING.value, job.status.value)
            updates = {"attempts": job.attempts + 1, "publish_error": reason}
            if terminal:
                updates.update({"status": JobStatus.FAILED, "locked_at": None})
            else:
                updates["locked_at"] = self.clock()
            job = job.model_copy(update=updates)
            self._items[job_id] = job
            return job

    def mark_failed(self, job_id: str, reason: str) -> QueueItem:
        return self._increment_failure(job_id, reason, terminal=True)

    def record_attempt_failure(self, job_id: str, reason: str) -> QueueItem:
        return self._increment_failure(job_id, reason, terminal=False)

    def release(self, job_id: str) -> QueueItem:
        return self._transition(
            job_id,
            lambda j: j.status == JobStatus.PROCESSING,
            JobStatus.PROCESSING.value,
            status=JobStatus.RENDERED,
            locked_at=None,
        )

    def reset_for_retry(self, job_id: str, reschedule: bool = True) -> QueueItem:
        now = self.clock()

        def resettable(job: QueueItem) -> bool:
            if job.status in RESETTABLE_STATUSES:
                return True
            return job.status == JobStatus.PROCESSING and not job.lock_is_active(now, self.lease_seconds)

        updates = {
            "status": JobStatus.RENDERED,
            "attempts": 0,
            "publish_error": None,
            "locked_at": None,
        }
        if reschedule:
            updates["scheduled_at"] = now
        return self._transition(job_id, resettable, "resettable", **updates)

    def update_content(self, job_id: str, fields: Dict) -> QueueItem:
        updates = {k: v for k, v in fields.items() if k in CONTENT_FIELDS}
        return self._transition(
            job_id,
            lambda j: j.status in EDITABLE_STATUSES,
            "editable",
            **updates,
        )

    def delete(self, job_id: str) -> None:
        with self._lock:
            job = self._items.get(job_id)
            if job is None:
                raise NotFound(job_id)
            if job.status == JobStatus.PROCESSING:
                raise ConcurrencyConflict(job_id, "not processing", job.status.value)
            del self._items[job_id]


class InMemoryBoardStore(BoardStore):

    def __init__(self, boards: Optional[List[BoardMapping]] = None):
        self._boards: Dict[str, BoardMapping] = {b.id: b for b in (boards or [])}

    def list_boards(self) -> List[BoardMapping]:
        return sorted(self._boards.values(), key=lambda b: b.board_name)

    def get_by_slug(self, board_slug: str) -> Optional[BoardMapping]:
        for board in self._boards.values():
            if board.board_slug == board_slug:
                return board
        return None

    def create_board(self, data: Dict) -> BoardMapping:
        if self.get_by_slug(data["board_slug"]):
            raise ValueError(f"Board slug '{data['board_slug']}' already exists")
        board = BoardMapping.model_validate({"id": str(uuid.uuid4()), **data})
        self._boards[board.id] = board
        return board

    def update_board(self, board_id: str, updates: Dict) -> BoardMapping:
        board = self._boards.get(board_id)
        if board is None:
            raise NotFound(board_id)
        board = board.model_copy(update=updates)
        self._boards[board_id] = board
        return board


class InMemoryCredentialStore(CredentialStore):

    def __init__(self, credentials: Optional[List[Credential]] = None):
        self._credentials: Dict[str, Credential] = {c.account_label: c for c in (credentials or [])}

    def get_credential(self, account_label: str) -> Optional[Credential]:
        return self._credentials.get(account_label)

    def save_credential(self, credential: Credential) -> Credential:
        self._credentials[credential.account_label] = credential
        return credential
