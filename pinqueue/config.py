# pinqueue/config.py
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки сервиса публикации пинов
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    app_env: str = Field(default="dev", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_structured: bool = Field(default=False, alias="LOG_STRUCTURED")
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # supabase | memory
    storage_backend: str = Field(default="supabase", alias="STORAGE_BACKEND")
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_key: Optional[str] = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")

    pinterest_client_id: Optional[str] = Field(default=None, alias="PINTEREST_CLIENT_ID")
    pinterest_client_secret: Optional[str] = Field(default=None, alias="PINTEREST_CLIENT_SECRET")
    pinterest_redirect_uri: Optional[str] = Field(default=None, alias="PINTEREST_REDIRECT_URI")
    pinterest_scopes: str = Field(default="boards:read,pins:read,pins:write", alias="PINTEREST_SCOPES")
    pinterest_api_base: str = Field(default="https://api.pinterest.com/v5", alias="PINTEREST_API_BASE")
    pinterest_account_label: str = Field(default="default", alias="PINTEREST_ACCOUNT_LABEL")

    internal_service_key: Optional[str] = Field(default=None, alias="INTERNAL_SERVICE_KEY")

    worker_batch_size: int = Field(default=5, alias="WORKER_BATCH_SIZE")
    worker_interval_seconds: int = Field(default=300, alias="WORKER_INTERVAL_SECONDS")
    lock_lease_seconds: int = Field(default=600, alias="LOCK_LEASE_SECONDS")
    http_timeout_seconds: float = Field(default=20.0, alias="HTTP_TIMEOUT_SECONDS")
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_backoff_base_seconds: float = Field(default=1.0, alias="RETRY_BACKOFF_BASE_SECONDS")
    release_on_abort: bool = Field(default=True, alias="RELEASE_ON_ABORT")

    public_site_url: str = Field(default="https://nutrizen.app", alias="PUBLIC_SITE_URL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
