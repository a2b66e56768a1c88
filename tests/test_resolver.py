from datetime import timedelta

import pytest
import requests

from pinqueue.errors import NotConfigured, UnmappedBoard
from pinqueue.memory import InMemoryCredentialStore
from pinqueue.models import Credential
from pinqueue.resolver import Resolver


def make_resolver(settings, boards, clock, credentials=None, refresher=None):
    kwargs = {"clock": clock}
    if refresher is not None:
        kwargs["refresher"] = refresher
    return Resolver(credentials or InMemoryCredentialStore(), boards, settings, **kwargs)


def test_missing_token_is_not_configured(settings, boards, clock):
    resolver = make_resolver(settings, boards, clock)
    with pytest.raises(NotConfigured) as exc:
        resolver.get_access_token()
    assert exc.value.code == "PINTEREST_NOT_CONFIGURED"


def test_empty_token_is_not_configured(settings, boards, clock):
    credentials = InMemoryCredentialStore([Credential(account_label="default", access_token="")])
    with pytest.raises(NotConfigured):
        make_resolver(settings, boards, clock, credentials).get_access_token()


def test_valid_token_is_returned(settings, boards, clock):
    credentials = InMemoryCredentialStore([Credential(
        account_label="default", access_token="tok", expires_at=clock.now + timedelta(days=1),
    )])
    assert make_resolver(settings, boards, clock, credentials).get_access_token() == "tok"


def test_expired_token_without_refresh_is_not_configured(settings, boards, clock):
    credentials = InMemoryCredentialStore([Credential(
        account_label="default", access_token="old", expires_at=clock.now - timedelta(seconds=1),
    )])
    with pytest.raises(NotConfigured):
        make_resolver(settings, boards, clock, credentials).get_access_token()


def test_expired_token_is_refreshed_and_saved(settings, boards, clock):
    credentials = InMemoryCredentialStore([Credential(
        account_label="default", access_token="old", refresh_token="refresh-1",
        expires_at=clock.now - timedelta(minutes=5), scope="pins:write",
    )])
    calls = []

    def refresher(cfg, refresh_token):
        calls.append(refresh_token)
        return {"access_token": "new", "expires_in": 3600}

    token = make_resolver(settings, boards, clock, credentials, refresher).get_access_token()

    assert token == "new"
    assert calls == ["refresh-1"]
    saved = credentials.get_credential("default")
    assert saved.access_token == "new"
    assert saved.refresh_token == "refresh-1"
    assert saved.scope == "pins:write"
    assert saved.expires_at == clock.now + timedelta(seconds=3600)


def test_failed_refresh_is_not_configured(settings, boards, clock):
    credentials = InMemoryCredentialStore([Credential(
        account_label="default", access_token="old", refresh_token="refresh-1",
        expires_at=clock.now - timedelta(minutes=5),
    )])

    def refresher(cfg, refresh_token):
        raise requests.ConnectionError("down")

    with pytest.raises(NotConfigured):
        make_resolver(settings, boards, clock, credentials, refresher).get_access_token()


def test_resolve_active_board(settings, boards, clock):
    assert make_resolver(settings, boards, clock).resolve_board("diner-italien") == "11223"


@pytest.mark.parametrize("slug", ["idees-dej", "unmapped", None, ""])
def test_inactive_or_missing_board_is_unmapped(settings, boards, clock, slug):
    with pytest.raises(UnmappedBoard):
        make_resolver(settings, boards, clock).resolve_board(slug)


def test_board_mapping_is_read_at_resolve_time(settings, boards, clock):
    resolver = make_resolver(settings, boards, clock)
    assert resolver.resolve_board("recettes-thai") == "12345"
    boards.update_board("b-1", {"is_active": False})
    with pytest.raises(UnmappedBoard):
        resolver.resolve_board("recettes-thai")
