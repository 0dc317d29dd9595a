"""Access-token lifecycle: regeneration, operator overrides, and invalidation."""

from __future__ import annotations

import asyncio

from loguru import logger

from app.errors import BrokerError, ConfigError

from .client import KiteClient
from .credentials import CredentialStore, StoredCredentials
from .state import MarketState

MISSING_CREDENTIALS_MESSAGE = "Missing API credentials or request token"
INVALID_REQUEST_TOKEN_MESSAGE = (
    "Invalid or expired request token. Please get a new one from Kite Connect login."
)


def describe_broker_failure(exc: BrokerError) -> str:
    """Pick the most specific message available for a failed broker call."""

    if exc.upstream_message:
        return exc.upstream_message
    if exc.status_code == 403:
        return INVALID_REQUEST_TOKEN_MESSAGE
    return str(exc)


class TokenLifecycleManager:
    """Sole writer of the token fields held in :class:`MarketState`.

    State moves ``UNCONFIGURED -> VALID -> INVALID -> VALID ...``. Regeneration
    and direct overrides are serialised so their credential writes never
    interleave.
    """

    def __init__(
        self,
        *,
        state: MarketState,
        client: KiteClient,
        credentials: CredentialStore,
        api_key: str | None,
        api_secret: str | None,
        default_request_token: str | None = None,
    ) -> None:
        self._state = state
        self._client = client
        self._credentials = credentials
        self._api_key = api_key
        self._api_secret = api_secret
        self._default_request_token = default_request_token
        self._lock = asyncio.Lock()

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @property
    def access_token(self) -> str | None:
        return self._state.snapshot().access_token

    def is_valid(self) -> bool:
        return self._state.snapshot().is_token_valid

    async def regenerate(self, request_token: str | None = None) -> str:
        """Exchange a request token for a fresh access token.

        Falls back to the last-known request token, then the configured
        default. Raises :class:`ConfigError` without touching the network when
        the key, secret, or request token is missing; broker failures mark the
        token invalid and are re-raised.
        """

        supplied = (request_token or "").strip() or None
        async with self._lock:
            token_to_use = (
                supplied or self._state.snapshot().request_token or self._default_request_token
            )
            if not (self._api_key and self._api_secret and token_to_use):
                self._state.record_token_error(MISSING_CREDENTIALS_MESSAGE)
                logger.warning("Kite Connect credentials incomplete for token generation")
                raise ConfigError(MISSING_CREDENTIALS_MESSAGE)

            try:
                access_token = await self._client.exchange_request_token(
                    api_key=self._api_key,
                    request_token=token_to_use,
                    api_secret=self._api_secret,
                )
            except BrokerError as exc:
                message = describe_broker_failure(exc)
                self._state.mark_token_invalid(message)
                logger.error("Error generating access token: {}", message)
                raise

            self._state.install_token(access_token, request_token=token_to_use)
            logger.info("Access token generated successfully")
            await self._persist(access_token, request_token=supplied)
            return access_token

    async def restore_persisted(self) -> StoredCredentials:
        """Load tokens written by an earlier run over the configured ones.

        Restored tokens stay unverified until the next quote fetch confirms them.
        """

        async with self._lock:
            stored = await self._credentials.load()
            self._state.restore_tokens(
                access_token=stored.access_token, request_token=stored.request_token
            )
        if stored.access_token:
            logger.info("Restored persisted Kite access token")
        return stored

    async def set_access_token_directly(self, access_token: str) -> None:
        """Install an operator-supplied access token without asking the broker.

        This trusts the operator: the token is marked valid immediately and the
        next quote fetch is the first real check. A rejected token flips the
        state back to invalid on that fetch.
        """

        token = (access_token or "").strip()
        if not token:
            raise ConfigError("Access token is required")
        async with self._lock:
            self._state.install_token(token)
            logger.warning("Access token set directly by operator; not verified with broker")
            await self._persist(token)

    def mark_invalid(self, reason: str | None, *, access_token: str | None = None) -> bool:
        """Flip the token to invalid unless a newer token replaced ``access_token``."""

        changed = self._state.mark_token_invalid(reason, access_token=access_token)
        if changed:
            logger.warning("Access token invalid or expired: {}", reason)
        return changed

    def confirm_valid(self, access_token: str) -> bool:
        return self._state.mark_token_valid(access_token)

    async def _persist(self, access_token: str, *, request_token: str | None = None) -> None:
        try:
            await self._credentials.save(access_token=access_token, request_token=request_token)
        except OSError:
            logger.exception("Error persisting Kite credentials")


__all__ = [
    "INVALID_REQUEST_TOKEN_MESSAGE",
    "MISSING_CREDENTIALS_MESSAGE",
    "TokenLifecycleManager",
    "describe_broker_failure",
]
