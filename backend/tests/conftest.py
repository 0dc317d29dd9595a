from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CREDENTIALS_ENV_FILE", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.db import Base
from app.domain import Quote
from pricefeed.credentials import MemoryCredentialStore
from pricefeed.state import MarketState
from pricefeed.tokens import TokenLifecycleManager


def make_quote(last_price: float = 22150.5, close_price: float | None = 22000.0) -> Quote:
    return Quote(
        instrument="NSE:NIFTY 50",
        last_price=last_price,
        close_price=close_price,
        fetched_at=datetime.now(timezone.utc),
    )


class FakeKiteClient:
    """Records broker calls and replays canned responses."""

    instrument = "NSE:NIFTY 50"

    def __init__(self) -> None:
        self.exchange_calls: list[dict[str, str]] = []
        self.quote_calls: list[str] = []
        self.issued_access_token = "fresh-access-token"
        self.exchange_error: Exception | None = None
        self.quote: Quote = make_quote()
        self.quote_error: Exception | None = None

    async def exchange_request_token(self, *, api_key: str, request_token: str, api_secret: str) -> str:
        self.exchange_calls.append(
            {"api_key": api_key, "request_token": request_token, "api_secret": api_secret}
        )
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.issued_access_token

    async def fetch_quote(self, *, api_key: str, access_token: str) -> Quote:
        self.quote_calls.append(access_token)
        if self.quote_error is not None:
            raise self.quote_error
        return self.quote

    async def aclose(self) -> None:
        return None


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'niftyguess.db'}",
        kite_api_key="test-key",
        kite_api_secret="test-secret",
        admin_pin="2468",
        credentials_env_file="",
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def db_session():
    from app import models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def market_state() -> MarketState:
    return MarketState()


@pytest.fixture
def fake_client() -> FakeKiteClient:
    return FakeKiteClient()


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def token_manager(market_state, fake_client, credential_store) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        state=market_state,
        client=fake_client,
        credentials=credential_store,
        api_key="test-key",
        api_secret="test-secret",
    )
