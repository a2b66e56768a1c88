import base64
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from pinqueue import oauth
from pinqueue.errors import NotConfigured
from pinqueue.models import Credential
from pinqueue.pinterest import PinterestAPIError


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = ""
        self.reason = "Error"
        self.content = b"{}"

    def json(self):
        return self._body


def test_authorization_url_contains_client_and_scopes(settings):
    url, state = oauth.build_authorization_url(settings, state="abc")

    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://www.pinterest.com/oauth/")
    assert state == "abc"
    assert query["client_id"] == ["client-id"]
    assert query["scope"] == ["boards:read,pins:read,pins:write"]
    assert query["response_type"] == ["code"]


def test_authorization_url_requires_client_id(settings):
    with pytest.raises(NotConfigured):
        oauth.build_authorization_url(settings.model_copy(update={"pinterest_client_id": None}))


def test_exchange_uses_basic_auth(settings, monkeypatch):
    captured = {}

    def fake_post(url, data=None, headers=None, timeout=None):
        captured.update(url=url, data=data, headers=headers)
        return FakeResponse(200, {"access_token": "tok", "refresh_token": "ref", "expires_in": 3600})

    monkeypatch.setattr(oauth.requests, "post", fake_post)

    token = oauth.exchange_code_for_token(settings, "the-code")

    expected = base64.b64encode(b"client-id:client-secret").decode()
    assert captured["url"] == "https://api.pinterest.com/v5/oauth/token"
    assert captured["headers"]["Authorization"] == f"Basic {expected}"
    assert captured["data"]["grant_type"] == "authorization_code"
    assert captured["data"]["code"] == "the-code"
    assert token["access_token"] == "tok"


def test_refresh_failure_raises_api_error(settings, monkeypatch):
    monkeypatch.setattr(
        oauth.requests, "post",
        lambda *a, **kw: FakeResponse(400, {"code": 1, "message": "invalid_grant"}),
    )
    with pytest.raises(PinterestAPIError) as exc:
        oauth.refresh_access_token(settings, "stale")
    assert exc.value.message == "invalid_grant"


def test_refresh_without_secret_is_not_configured(settings):
    with pytest.raises(NotConfigured):
        oauth.refresh_access_token(settings.model_copy(update={"pinterest_client_secret": None}), "r")


def test_credential_keeps_previous_refresh_token(clock):
    previous = Credential(account_label="default", access_token="old", refresh_token="ref-1", scope="pins:write")

    credential = oauth.credential_from_token(
        {"access_token": "new", "expires_in": 60}, "default", previous=previous, now=clock.now,
    )

    assert credential.access_token == "new"
    assert credential.refresh_token == "ref-1"
    assert credential.scope == "pins:write"
    assert credential.expires_at == clock.now + timedelta(seconds=60)
