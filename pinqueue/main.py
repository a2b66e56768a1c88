# pinqueue/main.py
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import requests
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pinqueue.config import Settings, get_settings
from pinqueue.errors import ConcurrencyConflict, NotConfigured, NotFound, PublishErrorKind
from pinqueue.logging_config import setup_logging
from pinqueue.models import (
    BoardCreateRequest,
    BoardUpdateRequest,
    EnqueueRecipeRequest,
    JobStatus,
    OAuthCallbackRequest,
    PublishNowRequest,
    QueueItemUpdate,
)
from pinqueue.oauth import build_authorization_url, credential_from_token, exchange_code_for_token
from pinqueue.pinterest import PinterestAPIError, get_pinterest_client
from pinqueue.recipes import enqueue_recipe
from pinqueue.services import Services, build_services

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_internal(
    request: Request,
    x_internal_secret: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """
    Доступ к внутренним эндпоинтам: общий секрет воркера или админ Supabase
    """
    services = get_services(request)
    key = services.settings.internal_service_key

    if key and x_internal_secret and secrets.compare_digest(x_internal_secret, key):
        return

    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token and services.verify_admin(token):
            return

    raise HTTPException(status_code=401, detail="Unauthorized")


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Фабрика приложения: uvicorn pinqueue.main:create_app --factory
    """
    settings = services.settings if services else (settings or get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_structured)
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        yield

    app = FastAPI(title="Pinterest Publishing Queue API", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==================== Error Handlers ====================

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"status": "error", "message": str(exc)})

    @app.exception_handler(ConcurrencyConflict)
    async def conflict_handler(request: Request, exc: ConcurrencyConflict):
        return JSONResponse(status_code=409, content={
            "status": "error",
            "message": str(exc),
            "expected": exc.expected,
            "actual": exc.actual,
        })

    @app.exception_handler(NotConfigured)
    async def not_configured_handler(request: Request, exc: NotConfigured):
        return JSONResponse(status_code=400, content={"code": exc.code, "message": exc.message})

    # ==================== Health Check Endpoints ====================

    @app.get("/")
    def read_root():
        return {
            "status": "ok",
            "message": "Pinterest Publishing Queue API",
            "version": "1.0.0",
            "endpoints": {
                "health": "/health",
                "queue": "/api/queue",
                "boards": "/api/boards",
                "stats": "/api/stats",
                "auth": "/auth/pinterest/start",
                "worker": "/internal/worker/run",
            }
        }

    @app.get("/health")
    def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    # ==================== Queue Endpoints ====================

    @app.get("/api/queue")
    def list_queue(status: Optional[JobStatus] = Query(default=None), services: Services = Depends(get_services)):
        """Список пинов в очереди"""
        return {"items": [job.model_dump(mode="json") for job in services.store.list_jobs(status)]}

    @app.post("/api/queue", status_code=201)
    def add_to_queue(request: EnqueueRecipeRequest, services: Services = Depends(get_services)):
        """Поставить рецепт в очередь"""
        job = enqueue_recipe(
            services.store,
            services.boards,
            request,
            services.settings.public_site_url,
            now=services.store.clock(),
        )
        return job.model_dump(mode="json")

    @app.patch("/api/queue/{job_id}")
    def update_queue_item(job_id: str, request: QueueItemUpdate, services: Services = Depends(get_services)):
        """Изменить текст, ссылку, доску или время публикации"""
        fields = request.model_dump(exclude_unset=True)
        if "destination_url" in fields and fields["destination_url"] is not None:
            fields["destination_url"] = str(fields["destination_url"])
        return services.store.update_content(job_id, fields).model_dump(mode="json")

    @app.delete("/api/queue/{job_id}")
    def remove_from_queue(job_id: str, services: Services = Depends(get_services)):
        services.store.delete(job_id)
        return {"status": "success", "message": "Removed from queue"}

    @app.post("/api/queue/{job_id}/retry", dependencies=[Depends(require_internal)])
    def retry_queue_item(job_id: str, services: Services = Depends(get_services)):
        """Повторная публикация с ожиданием результата"""
        outcome = services.retry.retry(job_id)
        return outcome.model_dump(mode="json")

    @app.get("/api/stats")
    def dashboard_stats(services: Services = Depends(get_services)):
        return services.store.stats().model_dump()

    # ==================== Board Mapping Endpoints ====================

    @app.get("/api/boards")
    def get_boards(services: Services = Depends(get_services)):
        """Маппинг кухонь на доски"""
        return {"boards": [b.model_dump() for b in services.boards.list_boards()]}

    @app.post("/api/boards", status_code=201)
    def create_board(request: BoardCreateRequest, services: Services = Depends(get_services)):
        if services.boards.get_by_slug(request.board_slug):
            raise HTTPException(status_code=409, detail=f"Board slug '{request.board_slug}' already exists")
        board = services.boards.create_board(request.model_dump())
        logger.info(f"✅ Board mapping created: {board.board_slug} -> {board.pinterest_board_id}")
        return board.model_dump()

    @app.patch("/api/boards/{board_id}")
    def update_board(board_id: str, request: BoardUpdateRequest, services: Services = Depends(get_services)):
        updates = request.model_dump(exclude_unset=True)
        board = services.boards.update_board(board_id, updates)
        logger.info(f"✅ Board mapping updated: {board.board_slug}")
        return board.model_dump()

    @app.get("/api/pinterest/boards")
    def get_remote_boards(services: Services = Depends(get_services)):
        """Доски аккаунта Pinterest, чтобы выбрать pinterest_board_id"""
        access_token = services.resolver.get_access_token()
        client = get_pinterest_client(
            access_token,
            base_url=services.settings.pinterest_api_base,
            timeout=services.settings.http_timeout_seconds,
        )
        try:
            boards = client.get_boards()
        except PinterestAPIError as e:
            raise HTTPException(status_code=502, detail={"error": e.message, "code": e.code})
        except requests.RequestException as e:
            raise HTTPException(status_code=502, detail={"error": str(e), "code": "NETWORK_ERROR"})
        return {"boards": boards}

    # ==================== OAuth Endpoints ====================

    @app.get("/auth/pinterest/start")
    def pinterest_auth_start(services: Services = Depends(get_services)):
        """Начало OAuth flow - URL авторизации Pinterest"""
        auth_url, state = build_authorization_url(services.settings)
        return {"auth_url": auth_url, "state": state}

    @app.post("/auth/pinterest/callback")
    def pinterest_callback(request: OAuthCallbackRequest, services: Services = Depends(get_services)):
        """Обмен code на токен и сохранение"""
        label = services.settings.pinterest_account_label
        try:
            token_data = exchange_code_for_token(services.settings, request.code)
        except PinterestAPIError as e:
            raise HTTPException(status_code=400, detail={"error": e.message, "code": e.code})
        except requests.RequestException as e:
            raise HTTPException(status_code=502, detail={"error": str(e), "code": "NETWORK_ERROR"})

        previous = services.credentials.get_credential(label)
        credential = credential_from_token(token_data, label, previous=previous, now=services.store.clock())
        services.credentials.save_credential(credential)
        logger.info(f"✅ Pinterest connected for account '{label}'")
        return {"success": True, "expires_at": credential.expires_at.isoformat() if credential.expires_at else None}

    @app.get("/auth/pinterest/status")
    def pinterest_status(services: Services = Depends(get_services)):
        """Проверить статус подключения Pinterest"""
        credential = services.credentials.get_credential(services.settings.pinterest_account_label)
        if not credential or not credential.access_token:
            return {"connected": False}
        return {
            "connected": True,
            "expired": credential.is_expired(services.store.clock()),
            "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
            "scope": credential.scope,
        }

    # ==================== Internal Endpoints ====================

    @app.post("/internal/worker/run", dependencies=[Depends(require_internal)])
    def run_worker(
        limit: Optional[int] = Query(default=None, ge=1, le=50),
        services: Services = Depends(get_services)
    ):
        """Один прогон воркера"""
        summary = services.dispatcher.run_batch(limit or services.settings.worker_batch_size)
        return summary.model_dump(mode="json")

    @app.post("/internal/publish", dependencies=[Depends(require_internal)])
    def publish_now(request: PublishNowRequest, services: Services = Depends(get_services)):
        """Немедленная публикация одного пина"""
        result = services.dispatcher.publish_one(request.queue_id)
        if result.status == "ok":
            return {"success": True, **result.result}

        status_code = 400 if result.result.get("kind") == PublishErrorKind.NOT_CONFIGURED.value else 502
        return JSONResponse(status_code=status_code, content={
            "success": False,
            "error": result.result.get("error"),
            "code": result.result.get("code"),
        })

    return app
