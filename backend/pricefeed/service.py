from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from app.core.config import Settings, get_settings
from app.errors import ConfigError

from .client import KiteClient
from .credentials import CredentialStore, EnvFileCredentialStore, MemoryCredentialStore
from .retry import RetryPolicy
from .scheduler import FetchOutcome, PriceFeedScheduler
from .state import MarketState
from .tokens import TokenLifecycleManager


@dataclass(slots=True)
class PriceFeed:
    """Everything the API needs to read prices and manage broker tokens."""

    state: MarketState
    client: KiteClient
    credentials: CredentialStore
    tokens: TokenLifecycleManager
    scheduler: PriceFeedScheduler

    async def start(self) -> FetchOutcome | None:
        try:
            await self.tokens.restore_persisted()
        except OSError:
            logger.exception("Error reading persisted Kite credentials")
        self.scheduler.start()
        if not self.tokens.access_token:
            logger.info("No access token configured; waiting for operator")
            return None
        try:
            return await self.scheduler.trigger_immediate_fetch()
        except ConfigError as exc:
            logger.warning("Initial price fetch skipped: {}", exc)
            return None

    async def stop(self) -> None:
        self.scheduler.shutdown()
        await self.client.aclose()


def build_credential_store(settings: Settings) -> CredentialStore:
    if settings.credentials_env_file:
        return EnvFileCredentialStore(settings.credentials_env_file)
    return MemoryCredentialStore()


def build_price_feed(
    settings: Settings | None = None,
    *,
    client: KiteClient | None = None,
    credentials: CredentialStore | None = None,
) -> PriceFeed:
    settings = settings or get_settings()
    client = client or KiteClient(
        base_url=str(settings.kite_base_url),
        api_version=settings.kite_api_version,
        instrument=settings.quote_instrument,
        timeout=settings.kite_timeout_seconds,
    )
    credentials = credentials or build_credential_store(settings)
    state = MarketState(
        access_token=settings.kite_access_token,
        request_token=settings.kite_request_token,
    )
    tokens = TokenLifecycleManager(
        state=state,
        client=client,
        credentials=credentials,
        api_key=settings.kite_api_key,
        api_secret=settings.kite_api_secret,
        default_request_token=settings.kite_request_token,
    )
    scheduler = PriceFeedScheduler(
        state=state,
        client=client,
        tokens=tokens,
        retry_policy=RetryPolicy(settings.price_feed_retry_backoff_schedule),
        interval_seconds=settings.price_poll_interval_seconds,
    )
    return PriceFeed(
        state=state,
        client=client,
        credentials=credentials,
        tokens=tokens,
        scheduler=scheduler,
    )


__all__ = ["PriceFeed", "build_credential_store", "build_price_feed"]
