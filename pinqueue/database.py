# pinqueue/database.py
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from supabase import Client, create_client

from pinqueue.config import Settings
from pinqueue.errors import ConcurrencyConflict, NotConfigured, NotFound
from pinqueue.models import (
    CLAIMABLE_STATUSES,
    BoardMapping,
    Credential,
    DashboardStats,
    JobStatus,
    QueueItem,
    ensure_utc,
)

logger = logging.getLogger(__name__)

QUEUE_TABLE = "social_queue"
BOARD_TABLE = "pinterest_board_map"
OAUTH_TABLE = "pinterest_oauth"
PLATFORM = "pinterest"

# Поля, которые оператор может менять без смены статуса
CONTENT_FIELDS = ("pin_title", "pin_description", "destination_url", "board_slug", "scheduled_at")
EDITABLE_STATUSES = CLAIMABLE_STATUSES + (JobStatus.FAILED,)
RESETTABLE_STATUSES = CLAIMABLE_STATUSES + (JobStatus.FAILED,)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_supabase_client(settings: Settings) -> Client:
    """
    Создать клиент Supabase с service role ключом
    """
    if not settings.supabase_url or not settings.supabase_key:
        raise NotConfigured("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_key)


# ==================== Interfaces ====================

class QueueStore(ABC):
    """
    Хранилище очереди публикаций. Все изменения статуса проходят только через него.
    Переходы статуса - условные обновления (compare-and-set), не read-modify-write.
    """

    def __init__(self, lease_seconds: int = 600, clock: Clock = utcnow):
        self.lease_seconds = lease_seconds
        self.clock = clock

    @abstractmethod
    def enqueue(self, payload: Dict) -> QueueItem: ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[QueueItem]: ...

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None) -> List[QueueItem]: ...

    @abstractmethod
    def claim_batch(self, limit: int) -> List[QueueItem]:
        """
        Атомарно забрать до limit доступных задач (status -> processing, locked_at -> now)
        """

    @abstractmethod
    def claim(self, job_id: str) -> QueueItem:
        """
        Забрать одну конкретную задачу по тем же правилам, что и claim_batch
        """

    @abstractmethod
    def mark_succeeded(
        self,
        job_id: str,
        external_id: str,
        external_url: Optional[str] = None,
        locked_at: Optional[datetime] = None
    ) -> QueueItem:
        """
        processing -> posted. С locked_at запись проходит, только если блокировка
        всё ещё та, что получена при захвате
        """

    @abstractmethod
    def mark_failed(self, job_id: str, reason: str) -> QueueItem: ...

    @abstractmethod
    def record_attempt_failure(self, job_id: str, reason: str) -> QueueItem: ...

    @abstractmethod
    def release(self, job_id: str) -> QueueItem: ...

    @abstractmethod
    def reset_for_retry(self, job_id: str, reschedule: bool = True) -> QueueItem: ...

    @abstractmethod
    def update_content(self, job_id: str, fields: Dict) -> QueueItem: ...

    @abstractmethod
    def delete(self, job_id: str) -> None: ...

    def require(self, job_id: str) -> QueueItem:
        job = self.get(job_id)
        if job is None:
            raise NotFound(job_id)
        return job

    def stats(self) -> DashboardStats:
        """
        Сводка для дашборда
        """
        now = self.clock()
        jobs = self.list_jobs()
        stats = DashboardStats(total_pins=len(jobs))
        for job in jobs:
            if job.status == JobStatus.POSTED:
                stats.published += 1
            elif job.status == JobStatus.FAILED:
                stats.errors += 1
            elif job.status == JobStatus.SCHEDULED or (job.scheduled_at and job.scheduled_at > now):
                stats.scheduled += 1
            stats.total_clicks += job.utm_stats.clicks
            stats.total_impressions += job.utm_stats.impressions
        return stats

    def _conflict(self, job_id: str, expected: str) -> ConcurrencyConflict:
        current = self.get(job_id)
        if current is None:
            raise NotFound(job_id)
        return ConcurrencyConflict(job_id, expected, current.status.value)

    def _new_row(self, payload: Dict) -> Dict:
        row = {k: v for k, v in payload.items() if v is not None}
        status = JobStatus(row.get("status", JobStatus.RENDERED))
        if status not in CLAIMABLE_STATUSES:
            raise ValueError(f"Cannot enqueue item with status {status.value}")
        row.update({
            "status": status.value,
            "platform": PLATFORM,
            "attempts": 0,
            "locked_at": None,
            "published_at": None,
            "publish_error": None,
        })
        row.setdefault("utm_stats", {"clicks": 0, "impressions": 0, "saves": 0})
        return row


class BoardStore(ABC):

    @abstractmethod
    def list_boards(self) -> List[BoardMapping]: ...

    @abstractmethod
    def get_by_slug(self, board_slug: str) -> Optional[BoardMapping]: ...

    @abstractmethod
    def create_board(self, data: Dict) -> BoardMapping: ...

    @abstractmethod
    def update_board(self, board_id: str, updates: Dict) -> BoardMapping: ...

    def find_for_cuisine(self, cuisine_key: Optional[str]) -> Optional[BoardMapping]:
        if not cuisine_key:
            return None
        for board in self.list_boards():
            if board.cuisine_key == cuisine_key and board.is_active:
                return board
        return None


class CredentialStore(ABC):

    @abstractmethod
    def get_credential(self, account_label: str) -> Optional[Credential]: ...

    @abstractmethod
    def save_credential(self, credential: Credential) -> Credential: ...


# ==================== Supabase ====================

def _ts(value: datetime) -> str:
    return value.isoformat()


class SupabaseQueueStore(QueueStore):
    """
    Очередь в таблице social_queue. Захват задач - SQL функции
    dequeue_pinterest_jobs / claim_pinterest_job (один UPDATE ... RETURNING).
    """

    def __init__(self, client: Client, lease_seconds: int = 600, clock: Clock = utcnow):
        super().__init__(lease_seconds, clock)
        self.client = client

    def _table(self):
        return self.client.table(QUEUE_TABLE)

    def enqueue(self, payload: Dict) -> QueueItem:
        row = self._new_row(payload)
        row.pop("id", None)
        row = {k: _ts(v) if isinstance(v, datetime) else v for k, v in row.items()}
        response = self._table().insert(row).execute()
        if not response.data:
            raise RuntimeError("Insert into social_queue returned no rows")
        job = QueueItem.model_validate(response.data[0])
        logger.info(f"📥 Queued item {job.id} ({job.status.value})")
        return job

    def get(self, job_id: str) -> Optional[QueueItem]:
        response = self._table().select("*").eq("id", job_id).execute()
        return QueueItem.model_validate(response.data[0]) if response.data else None

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[QueueItem]:
        query = self._table()\
            .select("*")\
            .eq("platform", PLATFORM)

        if status:
            query = query.eq("status", JobStatus(status).value)

        response = query\
            .order("scheduled_at", desc=False, nullsfirst=False)\
            .order("created_at", desc=True)\
            .execute()
        return [QueueItem.model_validate(row) for row in response.data]

    def claim_batch(self, limit: int) -> List[QueueItem]:
        response = self.client.rpc(
            "dequeue_pinterest_jobs",
            {"p_limit": limit, "p_lease_seconds": self.lease_seconds},
        ).execute()
        return [QueueItem.model_validate(row) for row in (response.data or [])]

    def claim(self, job_id: str) -> QueueItem:
        response = self.client.rpc(
            "claim_pinterest_job",
            {"p_id": job_id, "p_lease_seconds": self.lease_seconds},
        ).execute()
        if not response.data:
            raise self._conflict(job_id, "claimable")
        return QueueItem.model_validate(response.data[0])

    def _update_where(self, job_id: str, updates: Dict, status: JobStatus, **conditions) -> Optional[Dict]:
        query = self._table()\
            .update(updates)\
            .eq("id", job_id)\
            .eq("status", status.value)
        for column, value in conditions.items():
            query = query.eq(column, value)
        response = query.execute()
        return response.data[0] if response.data else None

    def mark_succeeded(
        self,
        job_id: str,
        external_id: str,
        external_url: Optional[str] = None,
        locked_at: Optional[datetime] = None
    ) -> QueueItem:
        updates = {
            "status": JobStatus.POSTED.value,
            "external_post_id": external_id,
            "published_at": _ts(self.clock()),
            "locked_at": None,
            "publish_error": None,
        }
        if external_url:
            updates["external_post_url"] = external_url

        # locked_at захвата: после перехвата задачи другим воркером запись не пройдёт
        conditions = {"locked_at": _ts(locked_at)} if locked_at else {}
        row = self._update_where(job_id, updates, JobStatus.PROCESSING, **conditions)
        if row:
            return QueueItem.model_validate(row)

        current = self.require(job_id)
        if current.status == JobStatus.POSTED:
            # Повторный вызов ничего не меняет, published_at остаётся первым
            return current
        if current.status == JobStatus.PROCESSING:
            raise ConcurrencyConflict(job_id, "processing (lease held)", "processing (lease lost)")
        raise ConcurrencyConflict(job_id, JobStatus.PROCESSING.value, current.status.value)

    def _increment_failure(self, job_id: str, reason: str, terminal: bool) -> QueueItem:
        current = self.require(job_id)
        if current.status != JobStatus.PROCESSING:
            raise ConcurrencyConflict(job_id, JobStatus.PROCESSING.value, current.status.value)

        updates = {"attempts": current.attempts + 1, "publish_error": reason}
        if terminal:
            updates.update({"status": JobStatus.FAILED.value, "locked_at": None})
        else:
            updates["locked_at"] = _ts(self.clock())

        row = self._update_where(job_id, updates, JobStatus.PROCESSING, attempts=current.attempts)
        if not row:
            raise self._conflict(job_id, JobStatus.PROCESSING.value)
        return QueueItem.model_validate(row)

    def mark_failed(self, job_id: str, reason: str) -> QueueItem:
        return self._increment_failure(job_id, reason, terminal=True)

    def record_attempt_failure(self, job_id: str, reason: str) -> QueueItem:
        return self._increment_failure(job_id, reason, terminal=False)

    def release(self, job_id: str) -> QueueItem:
        row = self._update_where(
            job_id,
            {"status": JobStatus.RENDERED.value, "locked_at": None},
            JobStatus.PROCESSING,
        )
        if not row:
            raise self._conflict(job_id, JobStatus.PROCESSING.value)
        return QueueItem.model_validate(row)

    def reset_for_retry(self, job_id: str, reschedule: bool = True) -> QueueItem:
        """
        Сброс через reset_pinterest_job: scheduled_at = now() по часам базы,
        те же часы, что проверяет claim_pinterest_job
        """
        response = self.client.rpc(
            "reset_pinterest_job",
            {"p_id": job_id, "p_lease_seconds": self.lease_seconds, "p_reschedule": reschedule},
        ).execute()
        if not response.data:
            raise self._conflict(job_id, "resettable")
        return QueueItem.model_validate(response.data[0])

    def update_content(self, job_id: str, fields: Dict) -> QueueItem:
        updates = {k: v for k, v in fields.items() if k in CONTENT_FIELDS}
        if "scheduled_at" in updates and isinstance(updates["scheduled_at"], datetime):
            updates["scheduled_at"] = _ts(ensure_utc(updates["scheduled_at"]))
        if not updates:
            return self.require(job_id)

        response = self._table()\
            .update(updates)\
            .eq("id", job_id)\
            .in_("status", [s.value for s in EDITABLE_STATUSES])\
            .execute()
        if not response.data:
            raise self._conflict(job_id, "editable")
        return QueueItem.model_validate(response.data[0])

    def delete(self, job_id: str) -> None:
        response = self._table()\
            .delete()\
            .eq("id", job_id)\
            .neq("status", JobStatus.PROCESSING.value)\
            .execute()
        if not response.data:
            raise self._conflict(job_id, "not processing")
        logger.info(f"🗑️ Removed queue item {job_id}")


class SupabaseBoardStore(BoardStore):

    def __init__(self, client: Client):
        self.client = client

    def list_boards(self) -> List[BoardMapping]:
        response = self.client.table(BOARD_TABLE)\
            .select("*")\
            .order("board_name")\
            .execute()
        return [BoardMapping.model_validate(row) for row in response.data]

    def get_by_slug(self, board_slug: str) -> Optional[BoardMapping]:
        response = self.client.table(BOARD_TABLE)\
            .select("*")\
            .eq("board_slug", board_slug)\
            .execute()
        return BoardMapping.model_validate(response.data[0]) if response.data else None

    def create_board(self, data: Dict) -> BoardMapping:
        response = self.client.table(BOARD_TABLE)\
            .insert(data)\
            .execute()
        return BoardMapping.model_validate(response.data[0])

    def update_board(self, board_id: str, updates: Dict) -> BoardMapping:
        response = self.client.table(BOARD_TABLE)\
            .update(updates)\
            .eq("id", board_id)\
            .execute()
        if not response.data:
            raise NotFound(board_id)
        return BoardMapping.model_validate(response.data[0])


class SupabaseCredentialStore(CredentialStore):

    def __init__(self, client: Client):
        self.client = client

    def get_credential(self, account_label: str) -> Optional[Credential]:
        response = self.client.table(OAUTH_TABLE)\
            .select("*")\
            .eq("account_label", account_label)\
            .execute()
        return Credential.model_validate(response.data[0]) if response.data else None

    def save_credential(self, credential: Credential) -> Credential:
        response = self.client.table(OAUTH_TABLE)\
            .upsert(credential.model_dump(mode="json"), on_conflict="account_label")\
            .execute()
        return Credential.model_validate(response.data[0]) if response.data else credential
