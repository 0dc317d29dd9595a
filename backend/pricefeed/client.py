from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from app.core.config import settings
from app.domain import Quote
from app.errors import AuthError, TransportError

SESSION_TOKEN_PATH = "/session/token"
QUOTE_PATH = "/quote"

AUTH_STATUS_CODES = {400, 401, 403}


def compute_checksum(api_key: str, request_token: str, api_secret: str) -> str:
    """Return the SHA-256 hex digest Kite expects when exchanging a request token."""

    return hashlib.sha256(f"{api_key}{request_token}{api_secret}".encode("utf-8")).hexdigest()


def _upstream_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


class KiteClient:
    """Thin async wrapper around the two Kite Connect endpoints the contest uses."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_version: str | None = None,
        instrument: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.kite_base_url)
        self.api_version = api_version or settings.kite_api_version
        self.instrument = instrument or settings.quote_instrument
        self.timeout = timeout if timeout is not None else settings.kite_timeout_seconds
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"X-Kite-Version": self.api_version},
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            upstream = _upstream_message(exc.response)
            error_cls = AuthError if status in AUTH_STATUS_CODES else TransportError
            raise error_cls(
                upstream or f"Kite {method} {path} failed with HTTP {status}",
                status_code=status,
                upstream_message=upstream,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"Kite {method} {path} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"Kite {method} {path} returned an unexpected payload")
        return payload

    async def exchange_request_token(
        self,
        *,
        api_key: str,
        request_token: str,
        api_secret: str,
    ) -> str:
        checksum = compute_checksum(api_key, request_token, api_secret)
        logger.info("Kite POST {} (exchanging request token)", SESSION_TOKEN_PATH)
        payload = await self._request(
            "POST",
            SESSION_TOKEN_PATH,
            data={
                "api_key": api_key,
                "request_token": request_token,
                "checksum": checksum,
            },
        )
        data = payload.get("data")
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise TransportError("Kite session response did not include an access token")
        return str(access_token)

    async def fetch_quote(self, *, api_key: str, access_token: str) -> Quote:
        payload = await self._request(
            "GET",
            QUOTE_PATH,
            params={"i": self.instrument},
            headers={"Authorization": f"token {api_key}:{access_token}"},
        )
        data = payload.get("data")
        entry = data.get(self.instrument) if isinstance(data, dict) else None
        if not isinstance(entry, dict) or entry.get("last_price") is None:
            raise TransportError(f"Kite quote response did not include {self.instrument}")

        ohlc = entry.get("ohlc")
        close = ohlc.get("close") if isinstance(ohlc, dict) else None
        try:
            last_price = float(entry["last_price"])
            close_price = float(close) if close is not None else None
        except (TypeError, ValueError) as exc:
            raise TransportError(f"Kite quote for {self.instrument} has non-numeric prices") from exc

        return Quote(
            instrument=self.instrument,
            last_price=last_price,
            close_price=close_price,
            fetched_at=datetime.now(timezone.utc),
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "KiteClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


__all__ = ["KiteClient", "compute_checksum"]
