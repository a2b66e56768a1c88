# pinqueue/services.py
"""
Сборка зависимостей при старте: реализация хранилища выбирается
явно по STORAGE_BACKEND и передаётся всем компонентам.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from supabase import Client

from pinqueue.config import Settings
from pinqueue.database import (
    BoardStore,
    Clock,
    CredentialStore,
    QueueStore,
    SupabaseBoardStore,
    SupabaseCredentialStore,
    SupabaseQueueStore,
    create_supabase_client,
    utcnow,
)
from pinqueue.memory import InMemoryBoardStore, InMemoryCredentialStore, InMemoryQueueStore
from pinqueue.pinterest import get_pinterest_client
from pinqueue.publisher import ClientFactory, Publisher
from pinqueue.resolver import Resolver
from pinqueue.retry import RetryFacade
from pinqueue.worker import Dispatcher

logger = logging.getLogger(__name__)

AdminVerifier = Callable[[str], bool]


def deny_all(token: str) -> bool:
    return False


def supabase_admin_verifier(client: Client) -> AdminVerifier:
    """
    Проверка bearer токена: пользователь Supabase с app_metadata.role == "admin"
    """
    def verify(token: str) -> bool:
        try:
            response = client.auth.get_user(token)
        except Exception as e:
            logger.warning(f"⚠️ Admin token rejected: {e}")
            return False
        user = getattr(response, "user", None)
        if user is None:
            return False
        return (user.app_metadata or {}).get("role") == "admin"

    return verify


@dataclass
class Services:
    settings: Settings
    store: QueueStore
    boards: BoardStore
    credentials: CredentialStore
    resolver: Resolver
    publisher: Publisher
    dispatcher: Dispatcher
    retry: RetryFacade
    verify_admin: AdminVerifier = deny_all


def build_services(
    settings: Settings,
    supabase_client: Optional[Client] = None,
    store: Optional[QueueStore] = None,
    boards: Optional[BoardStore] = None,
    credentials: Optional[CredentialStore] = None,
    client_factory: ClientFactory = get_pinterest_client,
    clock: Clock = utcnow,
    sleep: Callable[[float], None] = time.sleep,
) -> Services:
    verify_admin: AdminVerifier = deny_all
    backend = settings.storage_backend.lower()

    if backend == "supabase":
        client = supabase_client or create_supabase_client(settings)
        store = store or SupabaseQueueStore(client, settings.lock_lease_seconds, clock)
        boards = boards or SupabaseBoardStore(client)
        credentials = credentials or SupabaseCredentialStore(client)
        verify_admin = supabase_admin_verifier(client)
    elif backend == "memory":
        store = store or InMemoryQueueStore(settings.lock_lease_seconds, clock)
        boards = boards or InMemoryBoardStore()
        credentials = credentials or InMemoryCredentialStore()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {settings.storage_backend}")

    logger.info(f"🧩 Storage backend: {backend}")

    resolver = Resolver(credentials, boards, settings, clock=clock)
    publisher = Publisher(resolver, settings, client_factory=client_factory)

    return Services(
        settings=settings,
        store=store,
        boards=boards,
        credentials=credentials,
        resolver=resolver,
        publisher=publisher,
        dispatcher=Dispatcher(store, publisher, release_on_abort=settings.release_on_abort),
        retry=RetryFacade(
            store,
            publisher,
            max_attempts=settings.retry_max_attempts,
            backoff_base=settings.retry_backoff_base_seconds,
            sleep=sleep,
        ),
        verify_admin=verify_admin,
    )
