# pinqueue/errors.py
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

NOT_CONFIGURED_CODE = "PINTEREST_NOT_CONFIGURED"
UNMAPPED_BOARD_CODE = "UNMAPPED_BOARD"


# ==================== Queue Store ====================

class QueueStoreError(Exception):
    """Базовая ошибка хранилища очереди"""


class NotFound(QueueStoreError):
    """Задача с таким id не существует"""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Queue item {job_id} not found")


class ConcurrencyConflict(QueueStoreError):
    """Условное обновление проиграло гонку: задача недоступна"""

    def __init__(self, job_id: str, expected: str, actual: Optional[str] = None):
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Queue item {job_id} is not in expected state {expected} (actual: {actual})"
        )


# ==================== Resolver ====================

class PublishPipelineError(Exception):
    code = "PUBLISH_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotConfigured(PublishPipelineError):
    """Нет секретов приложения или пригодного токена - системная ошибка"""
    code = NOT_CONFIGURED_CODE


class UnmappedBoard(PublishPipelineError):
    """Для slug нет активной доски"""
    code = UNMAPPED_BOARD_CODE

    def __init__(self, slug: Optional[str]):
        self.slug = slug
        super().__init__(f"No active board mapped for '{slug}'")


# ==================== Publisher ====================

class PublishErrorKind(str, Enum):
    NOT_CONFIGURED = "NOT_CONFIGURED"
    UNMAPPED_BOARD = "UNMAPPED_BOARD"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"


@dataclass(frozen=True)
class PublishError:
    kind: PublishErrorKind
    message: str
    code: Optional[str] = None

    @property
    def is_systemic(self) -> bool:
        return self.kind == PublishErrorKind.NOT_CONFIGURED

    @property
    def is_transient(self) -> bool:
        return self.kind == PublishErrorKind.PROVIDER_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "error": self.message, "code": self.code}


@dataclass(frozen=True)
class PublishResult:
    """
    Результат одной попытки публикации: external_id либо error
    """
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    error: Optional[PublishError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, external_id: str, external_url: Optional[str] = None) -> "PublishResult":
        return cls(external_id=external_id, external_url=external_url)

    @classmethod
    def failure(cls, kind: PublishErrorKind, message: str, code: Optional[str] = None) -> "PublishResult":
        return cls(error=PublishError(kind=kind, message=message, code=code))
