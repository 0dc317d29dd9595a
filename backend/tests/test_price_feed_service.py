from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.config import Settings
from app.db import init_db
from app.errors import AuthError
from conftest import FakeKiteClient
from pricefeed.credentials import MemoryCredentialStore, StoredCredentials
from pricefeed.scheduler import FetchOutcome
from pricefeed.service import build_price_feed
from pricefeed.state import TokenStatus


@pytest.fixture(autouse=True)
def apscheduler(monkeypatch) -> MagicMock:
    backend = MagicMock(running=False)
    monkeypatch.setattr("pricefeed.scheduler.AsyncIOScheduler", lambda: backend)
    init_db()
    return backend


def _settings(**overrides) -> Settings:
    fields = {
        "kite_api_key": "test-key",
        "kite_api_secret": "test-secret",
        "kite_access_token": None,
        "kite_request_token": None,
        "credentials_env_file": "",
    }
    fields.update(overrides)
    return Settings(**fields)


def test_start_fetches_immediately_with_configured_token(apscheduler):
    client = FakeKiteClient()
    feed = build_price_feed(
        _settings(kite_access_token="boot-token"),
        client=client,
        credentials=MemoryCredentialStore(),
    )
    assert feed.state.snapshot().token_status is TokenStatus.UNCONFIGURED

    outcome = asyncio.run(feed.start())

    snapshot = feed.state.snapshot()
    assert outcome is FetchOutcome.FETCHED
    assert client.quote_calls == ["boot-token"]
    assert snapshot.token_status is TokenStatus.VALID
    assert snapshot.current_price == 22150.5
    assert snapshot.last_close_price == 22000.0
    apscheduler.add_job.assert_called_once()
    apscheduler.start.assert_called_once_with()


def test_start_without_token_waits_for_operator(apscheduler):
    client = FakeKiteClient()
    feed = build_price_feed(_settings(), client=client, credentials=MemoryCredentialStore())

    assert asyncio.run(feed.start()) is None
    assert client.quote_calls == []
    assert feed.state.snapshot().token_status is TokenStatus.UNCONFIGURED
    apscheduler.start.assert_called_once_with()


def test_start_prefers_persisted_tokens():
    client = FakeKiteClient()
    credentials = MemoryCredentialStore(
        StoredCredentials(access_token="persisted-token", request_token="persisted-request")
    )
    feed = build_price_feed(
        _settings(kite_access_token="configured-token"),
        client=client,
        credentials=credentials,
    )

    asyncio.run(feed.start())

    snapshot = feed.state.snapshot()
    assert client.quote_calls == ["persisted-token"]
    assert snapshot.access_token == "persisted-token"
    assert snapshot.request_token == "persisted-request"
    assert snapshot.is_token_valid is True


def test_restored_token_rejected_on_first_fetch(apscheduler):
    client = FakeKiteClient()
    client.quote_error = AuthError("HTTP 403", status_code=403)
    feed = build_price_feed(
        _settings(),
        client=client,
        credentials=MemoryCredentialStore(StoredCredentials(access_token="stale-token")),
    )

    assert asyncio.run(feed.start()) is FetchOutcome.AUTH_FAILED
    assert feed.state.snapshot().token_status is TokenStatus.INVALID


def test_stop_shuts_down_scheduler_and_client(apscheduler):
    client = FakeKiteClient()
    client.aclose = AsyncMock()
    feed = build_price_feed(_settings(), client=client, credentials=MemoryCredentialStore())
    apscheduler.running = True

    asyncio.run(feed.stop())

    apscheduler.shutdown.assert_called_once_with(wait=False)
    client.aclose.assert_awaited_once_with()
