from __future__ import annotations

import asyncio

import allure
import pytest

from web_watcher.orchestrator.sessions import SessionContextRegistry

pytestmark = [
    pytest.mark.asyncio,
    allure.epic("Watcher Runtime"),
    allure.feature("Session Contexts"),
]


class _Context:
    def __init__(self, serial: int) -> None:
        self.serial = serial
        self.closed = False

    async def close(self) -> None:
        self.closed = True


async def test_concurrent_first_callers_share_one_context() -> None:
    created: list[_Context] = []

    async def _factory() -> _Context:
        await asyncio.sleep(0.01)
        context = _Context(len(created))
        created.append(context)
        return context

    registry: SessionContextRegistry[_Context] = SessionContextRegistry(_factory)

    contexts = await asyncio.gather(*(registry.get_or_create("s1") for _ in range(5)))

    assert len(created) == 1
    assert all(context is created[0] for context in contexts)
    assert len(registry) == 1


async def test_distinct_sessions_get_distinct_contexts() -> None:
    counter = 0

    async def _factory() -> _Context:
        nonlocal counter
        counter += 1
        return _Context(counter)

    registry: SessionContextRegistry[_Context] = SessionContextRegistry(_factory)

    first = await registry.get_or_create("a")
    second = await registry.get_or_create("b")

    assert first is not second
    assert await registry.get_or_create("a") is first
    assert "a" in registry
    assert "c" not in registry


async def test_failed_creation_is_retried_by_next_caller() -> None:
    attempts = 0

    async def _factory() -> _Context:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("context launch failed")
        return _Context(attempts)

    registry: SessionContextRegistry[_Context] = SessionContextRegistry(_factory)

    with pytest.raises(RuntimeError, match="context launch failed"):
        await registry.get_or_create("s1")
    assert "s1" not in registry

    context = await registry.get_or_create("s1")
    assert context.serial == 2


async def test_close_all_closes_every_context_and_refuses_new_ones() -> None:
    async def _factory() -> _Context:
        return _Context(0)

    registry: SessionContextRegistry[_Context] = SessionContextRegistry(_factory)
    first = await registry.get_or_create("a")
    second = await registry.get_or_create("b")

    async def _close(context: _Context) -> None:
        if context is first:
            raise RuntimeError("already gone")
        await context.close()

    await registry.close_all(_close)

    assert second.closed is True
    assert len(registry) == 0
    with pytest.raises(RuntimeError, match="closed"):
        await registry.get_or_create("a")
