# pinqueue/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator


class JobStatus(str, Enum):
    """
    Статусы задачи в очереди публикации
    """
    SCHEDULED = "scheduled"
    PENDING = "pending"
    RENDERED = "rendered"
    PROCESSING = "processing"
    POSTED = "posted"
    FAILED = "failed"

    @classmethod
    def _missing_(cls, value):
        # Старые записи используют "error" для того же терминального сбоя
        if value == "error":
            return cls.FAILED
        return None


# Статусы, из которых задачу можно забрать воркером
CLAIMABLE_STATUSES = (JobStatus.SCHEDULED, JobStatus.PENDING, JobStatus.RENDERED)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UtmStats(BaseModel):
    clicks: int = 0
    impressions: int = 0
    saves: int = 0


class QueueItem(BaseModel):
    """
    Строка таблицы social_queue
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    recipe_id: Optional[str] = None
    recipe_title: Optional[str] = None
    platform: str = "pinterest"
    status: JobStatus = JobStatus.RENDERED
    board_slug: Optional[str] = None
    pin_title: str = ""
    pin_description: str = ""
    destination_url: Optional[str] = None
    image_path: Optional[str] = None
    asset_9x16_path: Optional[str] = None
    asset_4x5_path: Optional[str] = None
    external_post_id: Optional[str] = None
    external_post_url: Optional[str] = None
    publish_error: Optional[str] = None
    attempts: int = 0
    locked_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    utm_stats: UtmStats = Field(default_factory=UtmStats)

    @model_validator(mode="before")
    @classmethod
    def _legacy_error_message(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("error_message") and not data.get("publish_error"):
            data = dict(data)
            data["publish_error"] = data["error_message"]
        return data

    @field_validator("utm_stats", mode="before")
    @classmethod
    def _default_utm_stats(cls, value: Any) -> Any:
        return value or {}

    @field_validator("locked_at", "published_at", "scheduled_at", "created_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def lock_is_active(self, now: datetime, lease_seconds: int) -> bool:
        if self.locked_at is None:
            return False
        return (now - self.locked_at).total_seconds() < lease_seconds

    def is_claimable(self, now: datetime, lease_seconds: int) -> bool:
        """
        Можно ли забрать задачу: статус до публикации, время наступило и нет активной блокировки.
        Задача в processing с истёкшей блокировкой тоже доступна.
        """
        if self.lock_is_active(now, lease_seconds):
            return False
        if self.status == JobStatus.PROCESSING:
            return self.locked_at is not None
        if self.status not in CLAIMABLE_STATUSES:
            return False
        return self.scheduled_at is None or self.scheduled_at <= now


class BoardMapping(BaseModel):
    """
    Связь кухни рецепта с доской Pinterest
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    cuisine_key: str
    board_slug: str
    board_name: str = ""
    pinterest_board_id: str
    is_active: bool = True


class Credential(BaseModel):
    """
    OAuth токен Pinterest для аккаунта
    """
    model_config = ConfigDict(extra="ignore")

    account_label: str = "default"
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))


# ==================== Requests ====================

class EnqueueRecipeRequest(BaseModel):
    """
    Модель для постановки рецепта в очередь
    """
    recipe_id: str
    recipe_title: str
    cuisine_type: Optional[str] = None
    image_url: Optional[str] = None
    asset_9x16_path: Optional[str] = None
    asset_4x5_path: Optional[str] = None
    pin_title: Optional[str] = None
    pin_description: Optional[str] = None
    board_slug: Optional[str] = None
    destination_url: Optional[HttpUrl] = None
    scheduled_at: Optional[datetime] = None


class QueueItemUpdate(BaseModel):
    """
    Редактирование содержимого пина (статус так не меняется)
    """
    pin_title: Optional[str] = None
    pin_description: Optional[str] = None
    destination_url: Optional[HttpUrl] = None
    board_slug: Optional[str] = None
    scheduled_at: Optional[datetime] = None

    @field_validator("scheduled_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class BoardCreateRequest(BaseModel):
    cuisine_key: str
    board_slug: str
    board_name: str = ""
    pinterest_board_id: str
    is_active: bool = True


class BoardUpdateRequest(BaseModel):
    cuisine_key: Optional[str] = None
    board_name: Optional[str] = None
    pinterest_board_id: Optional[str] = None
    is_active: Optional[bool] = None


class OAuthCallbackRequest(BaseModel):
    code: str


class PublishNowRequest(BaseModel):
    queue_id: str


# ==================== Responses ====================

class BatchItemResult(BaseModel):
    id: str
    status: Literal["ok", "failed"]
    result: Dict[str, Any] = Field(default_factory=dict)


class BatchSummary(BaseModel):
    """
    Итог одного прогона воркера
    """
    processed: int = 0
    details: List[BatchItemResult] = Field(default_factory=list)
    aborted: bool = False
    released: List[str] = Field(default_factory=list)


class RetryOutcome(BaseModel):
    """
    Результат ручного повтора публикации
    """
    job: Optional[QueueItem] = None
    success: bool = False
    attempts: int = 0
    error: Optional[Dict[str, Any]] = None
    refetched: bool = False


class DashboardStats(BaseModel):
    total_pins: int = 0
    published: int = 0
    scheduled: int = 0
    errors: int = 0
    total_clicks: int = 0
    total_impressions: int = 0
