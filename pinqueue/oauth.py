# pinqueue/oauth.py
import base64
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

import requests

from pinqueue.config import Settings
from pinqueue.errors import NotConfigured
from pinqueue.models import Credential
from pinqueue.pinterest import PinterestAPIError

logger = logging.getLogger(__name__)

PINTEREST_OAUTH_URL = "https://www.pinterest.com/oauth/"


def _token_url(settings: Settings) -> str:
    return f"{settings.pinterest_api_base.rstrip('/')}/oauth/token"


def build_authorization_url(settings: Settings, state: Optional[str] = None) -> Tuple[str, str]:
    """
    Генерирует URL для авторизации в Pinterest

    Returns:
        Tuple[str, str]: (auth_url, state)
    """
    if not settings.pinterest_client_id or not settings.pinterest_redirect_uri:
        raise NotConfigured("PINTEREST_CLIENT_ID and PINTEREST_REDIRECT_URI must be set")

    state = state or secrets.token_urlsafe(32)
    params = {
        "client_id": settings.pinterest_client_id,
        "redirect_uri": settings.pinterest_redirect_uri,
        "response_type": "code",
        "scope": settings.pinterest_scopes,
        "state": state
    }

    auth_url = f"{PINTEREST_OAUTH_URL}?{urlencode(params)}"
    logger.info(f"🔗 Generated OAuth URL with scopes: {settings.pinterest_scopes}")
    return auth_url, state


def _basic_auth_headers(settings: Settings) -> Dict[str, str]:
    if not settings.pinterest_client_id or not settings.pinterest_client_secret:
        raise NotConfigured("PINTEREST_CLIENT_ID and PINTEREST_CLIENT_SECRET must be set")

    # Basic Auth обязателен для /v5/oauth/token
    credentials = f"{settings.pinterest_client_id}:{settings.pinterest_client_secret}"
    encoded_credentials = base64.b64encode(credentials.encode()).decode()
    return {
        "Authorization": f"Basic {encoded_credentials}",
        "Content-Type": "application/x-www-form-urlencoded"
    }


def _request_token(settings: Settings, data: Dict) -> Dict:
    headers = _basic_auth_headers(settings)
    response = requests.post(
        _token_url(settings),
        data=data,
        headers=headers,
        timeout=settings.http_timeout_seconds
    )
    if not 200 <= response.status_code < 300:
        error = PinterestAPIError.from_response(response)
        logger.error(f"❌ Token request ({data['grant_type']}) failed: {error.status_code} {error.message}")
        raise error

    token_data = response.json()
    logger.info(f"✅ Token request ({data['grant_type']}) successful. Expires in: {token_data.get('expires_in', 'unknown')} seconds")
    return token_data


def exchange_code_for_token(settings: Settings, code: str) -> Dict:
    """
    Обменивает authorization code на access token

    Returns:
        Dict с access_token, refresh_token, expires_in, scope
    """
    logger.info("🔄 Exchanging code for token...")
    return _request_token(settings, {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.pinterest_redirect_uri
    })


def refresh_access_token(settings: Settings, refresh_token: str) -> Dict:
    """
    Обновляет access token используя refresh token
    """
    logger.info("🔄 Refreshing access token...")
    return _request_token(settings, {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token
    })


def credential_from_token(
    token_data: Dict,
    account_label: str,
    previous: Optional[Credential] = None,
    now: Optional[datetime] = None
) -> Credential:
    """
    Собрать Credential из ответа /oauth/token. Pinterest не всегда
    возвращает refresh_token при обновлении - тогда сохраняем прежний.
    """
    now = now or datetime.now(timezone.utc)
    expires_in = token_data.get("expires_in")
    refresh_token = token_data.get("refresh_token") or (previous.refresh_token if previous else None)
    return Credential(
        account_label=account_label,
        access_token=token_data.get("access_token"),
        refresh_token=refresh_token,
        expires_at=now + timedelta(seconds=int(expires_in)) if expires_in else None,
        scope=token_data.get("scope") or (previous.scope if previous else None),
    )
