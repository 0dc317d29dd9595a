"""Periodic quote polling that feeds :class:`MarketState` and the price log."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app import crud
from app.db import session_scope
from app.errors import AuthError, BrokerError, ConfigError

from .client import KiteClient
from .retry import RetryPolicy
from .state import MarketState
from .tokens import TokenLifecycleManager

JOB_ID = "price-feed-poll"

SampleSink = Callable[[float, datetime], None]


class FetchOutcome(str, Enum):
    FETCHED = "fetched"
    SKIPPED_INVALID_TOKEN = "skipped_invalid_token"
    SKIPPED_BACKOFF = "skipped_backoff"
    SKIPPED_BUSY = "skipped_busy"
    AUTH_FAILED = "auth_failed"
    TRANSIENT_FAILURE = "transient_failure"


def persist_price_sample(price: float, fetched_at: datetime) -> None:
    with session_scope() as session:
        crud.record_price_sample(session, price, fetched_at)


class PriceFeedScheduler:
    """Drive quote fetches on a fixed interval and on demand.

    Timer ticks skip when the token is invalid, when the retry policy is
    backing off, or when a previous fetch is still in flight. No failure ever
    escapes a tick; HTTP 403 marks the token invalid and everything else is
    treated as transient.
    """

    def __init__(
        self,
        *,
        state: MarketState,
        client: KiteClient,
        tokens: TokenLifecycleManager,
        retry_policy: RetryPolicy,
        interval_seconds: int = 60,
        sample_sink: SampleSink = persist_price_sample,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._state = state
        self._client = client
        self._tokens = tokens
        self._retry = retry_policy
        self._interval_seconds = interval_seconds
        self._sample_sink = sample_sink
        self._scheduler = scheduler or AsyncIOScheduler()
        self._fetch_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Price feed polling every {}s", self._interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Price feed stopped")

    async def tick(self) -> FetchOutcome:
        if not self._tokens.is_valid():
            logger.debug("Skipping price fetch: access token not valid")
            return FetchOutcome.SKIPPED_INVALID_TOKEN
        if not self._retry.allows_attempt():
            logger.debug(
                "Skipping price fetch: backing off for {:.0f}s", self._retry.seconds_until_retry()
            )
            return FetchOutcome.SKIPPED_BACKOFF
        if self._fetch_lock.locked():
            logger.warning("Skipping price fetch: previous fetch still running")
            return FetchOutcome.SKIPPED_BUSY
        async with self._fetch_lock:
            return await self._fetch()

    async def trigger_immediate_fetch(self) -> FetchOutcome:
        """Fetch now, ignoring token validity and backoff.

        Waits for an in-flight fetch instead of skipping. Raises
        :class:`ConfigError` when no API key or access token is configured.
        """

        if not self._tokens.api_key or not self._tokens.access_token:
            raise ConfigError("Please configure access token first")
        async with self._fetch_lock:
            return await self._fetch()

    async def _fetch(self) -> FetchOutcome:
        api_key = self._tokens.api_key
        access_token = self._tokens.access_token
        if not api_key or not access_token:
            logger.info("Kite Connect credentials not configured")
            return FetchOutcome.SKIPPED_INVALID_TOKEN

        try:
            quote = await self._client.fetch_quote(api_key=api_key, access_token=access_token)
        except AuthError as exc:
            if exc.status_code == 403:
                self._tokens.mark_invalid(
                    exc.upstream_message or "Access token invalid or expired",
                    access_token=access_token,
                )
                return FetchOutcome.AUTH_FAILED
            return self._record_transient(exc)
        except BrokerError as exc:
            return self._record_transient(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error fetching {} price", self._client.instrument)
            return self._record_transient(exc)

        self._state.apply_quote(quote)
        self._tokens.confirm_valid(access_token)
        self._retry.record_success()
        logger.info(
            "{} last={} close={}", quote.instrument, quote.last_price, quote.close_price
        )

        try:
            await asyncio.to_thread(self._sample_sink, quote.last_price, quote.fetched_at)
        except SQLAlchemyError:
            logger.exception("Error persisting price sample")
        return FetchOutcome.FETCHED

    def _record_transient(self, exc: Exception) -> FetchOutcome:
        delay = self._retry.record_failure()
        logger.warning(
            "Error fetching {} price: {} (retry in {:.0f}s)", self._client.instrument, exc, delay
        )
        return FetchOutcome.TRANSIENT_FAILURE


__all__ = ["FetchOutcome", "PriceFeedScheduler", "persist_price_sample"]
