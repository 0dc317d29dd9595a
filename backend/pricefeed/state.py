"""In-memory token and price state shared by the feed and the API."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from app.domain import Quote


class TokenStatus(str, Enum):
    UNCONFIGURED = "unconfigured"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(slots=True, frozen=True)
class MarketSnapshot:
    """Immutable view of :class:`MarketState` at one instant."""

    access_token: str | None = None
    request_token: str | None = None
    token_status: TokenStatus = TokenStatus.UNCONFIGURED
    last_error: str | None = None
    current_price: float | None = None
    last_close_price: float | None = None
    last_fetched_at: datetime | None = None

    @property
    def is_token_valid(self) -> bool:
        return self.token_status is TokenStatus.VALID


class MarketState:
    """Guarded holder for the token lifecycle and the latest quote.

    Writers are the token manager (token fields) and the scheduler (price
    fields). FastAPI serves readers from a threadpool, so every access takes the
    lock and readers only ever receive a frozen :class:`MarketSnapshot`.
    """

    def __init__(
        self,
        *,
        access_token: str | None = None,
        request_token: str | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._snapshot = MarketSnapshot(access_token=access_token, request_token=request_token)

    def snapshot(self) -> MarketSnapshot:
        with self._lock:
            return self._snapshot

    def _update(self, **changes) -> MarketSnapshot:
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)
            return self._snapshot

    # ------------------------------------------------------------------
    # Token fields

    def install_token(self, access_token: str, *, request_token: str | None = None) -> MarketSnapshot:
        changes: dict[str, object] = {
            "access_token": access_token,
            "token_status": TokenStatus.VALID,
            "last_error": None,
        }
        if request_token:
            changes["request_token"] = request_token
        return self._update(**changes)

    def mark_token_valid(self, access_token: str) -> bool:
        with self._lock:
            if self._snapshot.access_token != access_token:
                return False
            self._snapshot = replace(self._snapshot, token_status=TokenStatus.VALID, last_error=None)
            return True

    def mark_token_invalid(self, error: str | None, *, access_token: str | None = None) -> bool:
        with self._lock:
            if access_token is not None and self._snapshot.access_token != access_token:
                return False
            self._snapshot = replace(self._snapshot, token_status=TokenStatus.INVALID, last_error=error)
            return True

    def restore_tokens(
        self, *, access_token: str | None = None, request_token: str | None = None
    ) -> MarketSnapshot:
        """Replace stored tokens without vouching for them; status is left as is."""

        changes: dict[str, object] = {}
        if access_token:
            changes["access_token"] = access_token
        if request_token:
            changes["request_token"] = request_token
        return self._update(**changes)

    def record_token_error(self, error: str) -> MarketSnapshot:
        return self._update(last_error=error)

    # ------------------------------------------------------------------
    # Price fields

    def apply_quote(self, quote: Quote) -> MarketSnapshot:
        changes: dict[str, object] = {
            "current_price": quote.last_price,
            "last_fetched_at": quote.fetched_at,
        }
        if quote.close_price is not None:
            changes["last_close_price"] = quote.close_price
        return self._update(**changes)


__all__ = ["MarketSnapshot", "MarketState", "TokenStatus"]
