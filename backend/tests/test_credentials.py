from __future__ import annotations

import asyncio

from dotenv import dotenv_values

from pricefeed.credentials import (
    ACCESS_TOKEN_KEY,
    REQUEST_TOKEN_KEY,
    EnvFileCredentialStore,
    MemoryCredentialStore,
    StoredCredentials,
)
from pricefeed.state import MarketState
from pricefeed.tokens import TokenLifecycleManager


def test_env_file_rewrites_only_token_keys(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "KITE_API_KEY=abc\nKITE_ACCESS_TOKEN=old-access\nADMIN_PIN=1234\n",
        encoding="utf-8",
    )
    store = EnvFileCredentialStore(env_file)

    asyncio.run(store.save(access_token="new-access", request_token="req-9"))

    content = env_file.read_text(encoding="utf-8")
    assert "KITE_API_KEY=abc" in content
    assert "ADMIN_PIN=1234" in content
    assert f"{ACCESS_TOKEN_KEY}=new-access" in content
    assert "old-access" not in content
    assert f"{REQUEST_TOKEN_KEY}=req-9" in content


def test_env_file_leaves_request_token_alone_when_not_supplied(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("KITE_REQUEST_TOKEN=req-1\n", encoding="utf-8")
    store = EnvFileCredentialStore(env_file)

    asyncio.run(store.save(access_token="access-2"))

    loaded = asyncio.run(store.load())
    assert loaded == StoredCredentials(access_token="access-2", request_token="req-1")


def test_env_file_load_without_file(tmp_path):
    store = EnvFileCredentialStore(tmp_path / "missing.env")

    assert asyncio.run(store.load()) == StoredCredentials()


def test_memory_store_keeps_last_request_token():
    store = MemoryCredentialStore()

    asyncio.run(store.save(access_token="a1", request_token="r1"))
    asyncio.run(store.save(access_token="a2"))

    assert asyncio.run(store.load()) == StoredCredentials(access_token="a2", request_token="r1")
    assert len(store.writes) == 2


def test_concurrent_token_writes_leave_file_consistent(tmp_path, fake_client):
    env_file = tmp_path / ".env"
    env_file.write_text("OTHER=1\n", encoding="utf-8")
    state = MarketState()
    manager = TokenLifecycleManager(
        state=state,
        client=fake_client,
        credentials=EnvFileCredentialStore(env_file),
        api_key="test-key",
        api_secret="test-secret",
    )

    async def race():
        await asyncio.gather(
            manager.regenerate("req-1"),
            manager.set_access_token_directly("manual"),
        )

    asyncio.run(race())

    values = dotenv_values(env_file)
    assert values["OTHER"] == "1"
    assert values[ACCESS_TOKEN_KEY] == state.snapshot().access_token
    assert values[REQUEST_TOKEN_KEY] == "req-1"


def test_env_file_load_treats_placeholder_as_unset(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("KITE_ACCESS_TOKEN=your_access_token_here\n", encoding="utf-8")

    loaded = asyncio.run(EnvFileCredentialStore(env_file).load())

    assert loaded.access_token is None
