"""Operator actions: PIN sessions, broker token management, manual fetches."""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable

from loguru import logger

from app.errors import AdminAuthError, BrokerError, ConfigError
from app.schemas import AdminActionResult
from pricefeed.scheduler import FetchOutcome
from pricefeed.service import PriceFeed
from pricefeed.tokens import describe_broker_failure


ADMIN_SESSION_TTL_SECONDS = 12 * 60 * 60


class AdminSessions:
    """In-memory registry of admin session tokens issued after a PIN check.

    Tokens expire ``ttl_seconds`` after login; expired tokens are pruned on
    every login so the registry only holds live sessions.
    """

    def __init__(
        self,
        pin: str | None,
        *,
        ttl_seconds: float = ADMIN_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pin = pin
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._tokens: dict[str, float] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        expired = [token for token, expires_at in self._tokens.items() if expires_at <= now]
        for token in expired:
            del self._tokens[token]

    def login(self, pin: str | None) -> str:
        if not self._pin or not pin or not secrets.compare_digest(str(pin), self._pin):
            logger.warning("Rejected admin login attempt")
            raise AdminAuthError("Invalid PIN")
        token = secrets.token_urlsafe(32)
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._tokens[token] = now + self._ttl_seconds
        logger.info("Admin session opened")
        return token

    def logout(self, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            if self._tokens.pop(token, None) is None:
                return False
        logger.info("Admin session closed")
        return True

    def is_authenticated(self, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            expires_at = self._tokens.get(token)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._tokens[token]
                return False
            return True

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return len(self._tokens)


class AdminService:
    """Token lifecycle and price feed actions exposed to the admin console."""

    def __init__(self, feed: PriceFeed) -> None:
        self._feed = feed

    def _result(self, success: bool, **fields) -> AdminActionResult:
        return AdminActionResult(
            success=success,
            is_token_valid=self._feed.tokens.is_valid(),
            **fields,
        )

    async def _fetch_after_token_change(self) -> None:
        try:
            outcome = await self._feed.scheduler.trigger_immediate_fetch()
        except ConfigError as exc:
            logger.warning("Follow-up price fetch skipped: {}", exc)
            return
        if outcome is not FetchOutcome.FETCHED:
            logger.warning("Follow-up price fetch ended with {}", outcome.value)

    async def refresh_token(self, request_token: str | None = None) -> AdminActionResult:
        try:
            access_token = await self._feed.tokens.regenerate(request_token)
        except ConfigError as exc:
            return self._result(False, error=str(exc))
        except BrokerError as exc:
            return self._result(False, error=describe_broker_failure(exc))
        await self._fetch_after_token_change()
        return self._result(True, message="Access token generated successfully", access_token=access_token)

    async def set_access_token(self, access_token: str | None) -> AdminActionResult:
        try:
            await self._feed.tokens.set_access_token_directly(access_token or "")
        except ConfigError as exc:
            return self._result(False, error=str(exc))
        await self._fetch_after_token_change()
        return self._result(True, message="Access token updated successfully")

    async def trigger_fetch(self) -> AdminActionResult:
        try:
            outcome = await self._feed.scheduler.trigger_immediate_fetch()
        except ConfigError as exc:
            return self._result(False, error=str(exc))
        if outcome is FetchOutcome.FETCHED:
            return self._result(True, message="Started fetching prices")
        error = f"Price fetch ended with {outcome.value}"
        if outcome is FetchOutcome.AUTH_FAILED:
            error = self._feed.state.snapshot().last_error or error
        return self._result(False, error=error, details={"outcome": outcome.value})


__all__ = ["AdminService", "AdminSessions"]
