"""Durable storage for the Kite access and request tokens."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from dotenv import dotenv_values, set_key
from loguru import logger

from app.core.config import ACCESS_TOKEN_PLACEHOLDER

ACCESS_TOKEN_KEY = "KITE_ACCESS_TOKEN"
REQUEST_TOKEN_KEY = "KITE_REQUEST_TOKEN"


@dataclass(slots=True, frozen=True)
class StoredCredentials:
    access_token: str | None = None
    request_token: str | None = None


class CredentialStore(Protocol):
    """Key-value sink for the two broker secrets."""

    async def save(self, *, access_token: str, request_token: str | None = None) -> None:
        """Persist the access token and, when given, the request token."""

    async def load(self) -> StoredCredentials:
        """Return the last persisted tokens."""


class MemoryCredentialStore:
    """Process-local store used when no dotenv file is configured."""

    def __init__(self, initial: StoredCredentials | None = None) -> None:
        self._credentials = initial or StoredCredentials()
        self.writes: list[StoredCredentials] = []

    async def save(self, *, access_token: str, request_token: str | None = None) -> None:
        self._credentials = StoredCredentials(
            access_token=access_token,
            request_token=request_token or self._credentials.request_token,
        )
        self.writes.append(self._credentials)

    async def load(self) -> StoredCredentials:
        return self._credentials


class EnvFileCredentialStore:
    """Rewrite individual ``KITE_*`` keys in a dotenv file.

    Each save is a read-modify-write of a shared file, so saves are serialised
    with an asyncio lock held until the rewrite finishes. Unrelated keys are
    left untouched; missing keys are appended.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _write(self, updates: dict[str, str]) -> None:
        for key, value in updates.items():
            set_key(self.path, key, value, quote_mode="never")

    async def save(self, *, access_token: str, request_token: str | None = None) -> None:
        updates = {ACCESS_TOKEN_KEY: access_token}
        if request_token:
            updates[REQUEST_TOKEN_KEY] = request_token
        async with self._lock:
            await asyncio.to_thread(self._write, updates)
        logger.info("Persisted {} to {}", ", ".join(sorted(updates)), self.path)

    async def load(self) -> StoredCredentials:
        async with self._lock:
            if not self.path.exists():
                return StoredCredentials()
            values = await asyncio.to_thread(dotenv_values, self.path)
        access_token = (values.get(ACCESS_TOKEN_KEY) or "").strip()
        if access_token == ACCESS_TOKEN_PLACEHOLDER:
            access_token = ""
        return StoredCredentials(
            access_token=access_token or None,
            request_token=values.get(REQUEST_TOKEN_KEY) or None,
        )


__all__ = [
    "ACCESS_TOKEN_KEY",
    "REQUEST_TOKEN_KEY",
    "CredentialStore",
    "EnvFileCredentialStore",
    "MemoryCredentialStore",
    "StoredCredentials",
]
