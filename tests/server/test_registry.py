"""Tests for SessionRegistry."""

from unittest.mock import MagicMock

import anyio
import pytest

from echo_mcp_server.exceptions import DuplicateSessionError, RegistryClosedError
from echo_mcp_server.server.registry import SessionRegistry

pytestmark = pytest.mark.anyio


async def test_create_and_lookup():
    registry = SessionRegistry()
    context = MagicMock()

    await registry.create("abc", context)

    assert registry.lookup("abc") is context
    assert "abc" in registry
    assert len(registry) == 1


async def test_lookup_missing_or_none():
    registry = SessionRegistry()
    await registry.create("abc", MagicMock())

    assert registry.lookup("other") is None
    assert registry.lookup(None) is None


async def test_create_duplicate_raises():
    registry = SessionRegistry()
    first = MagicMock()
    await registry.create("abc", first)

    with pytest.raises(DuplicateSessionError) as excinfo:
        await registry.create("abc", MagicMock())

    assert excinfo.value.session_id == "abc"
    assert registry.lookup("abc") is first


async def test_remove_is_idempotent():
    registry = SessionRegistry()
    context = MagicMock()
    await registry.create("abc", context)

    assert await registry.remove("abc") is context
    assert await registry.remove("abc") is None
    assert "abc" not in registry


async def test_close_refuses_new_sessions_and_returns_entries():
    registry = SessionRegistry()
    context = MagicMock()
    await registry.create("abc", context)

    entries = await registry.close()

    assert registry.closed
    assert entries == [("abc", context)]
    with pytest.raises(RegistryClosedError):
        await registry.create("def", MagicMock())
    # Closing does not drop existing entries; the caller removes them
    assert "abc" in registry


async def test_concurrent_creates_and_removes():
    registry = SessionRegistry()

    async def churn(i: int) -> None:
        await registry.create(f"s{i}", MagicMock())
        await anyio.sleep(0)
        if i % 2:
            await registry.remove(f"s{i}")

    async with anyio.create_task_group() as tg:
        for i in range(50):
            tg.start_soon(churn, i)

    assert sorted(session_id for session_id, _ in registry.snapshot()) == sorted(f"s{i}" for i in range(0, 50, 2))
