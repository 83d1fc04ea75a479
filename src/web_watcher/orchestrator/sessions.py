"""Registry of shared browsing contexts keyed by external session id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")


class SessionContextRegistry(Generic[ContextT]):
    """Create each session's context once and share it for the process lifetime.

    Creation is single-flight: the first caller publishes a future under the
    session id before awaiting the factory, so concurrent first callers all
    observe the same context. A failed creation is unpublished and the next
    caller retries. Contexts are never evicted; ``close_all`` runs at shutdown.
    """

    def __init__(self, factory: Callable[[], Awaitable[ContextT]]) -> None:
        self._factory = factory
        self._contexts: dict[str, asyncio.Future[ContextT]] = {}
        self._closed = False

    def __len__(self) -> int:
        return sum(1 for future in self._contexts.values() if _has_result(future))

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._contexts

    async def get_or_create(self, session_id: str) -> ContextT:
        if self._closed:
            raise RuntimeError("session registry is closed")
        future = self._contexts.get(session_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._contexts[session_id] = future
            try:
                context = await self._factory()
            except asyncio.CancelledError:
                del self._contexts[session_id]
                future.cancel()
                raise
            except Exception as error:
                del self._contexts[session_id]
                future.set_exception(error)
                # Marks the exception retrieved when no other caller is waiting.
                future.exception()
                raise
            future.set_result(context)
            logger.info("Session context created: session_id=%s", session_id)
            return context
        return await asyncio.shield(future)

    async def close_all(self, close: Callable[[ContextT], Awaitable[None]]) -> None:
        """Close every created context; one failure does not stop the rest."""

        self._closed = True
        futures = list(self._contexts.items())
        self._contexts.clear()
        for session_id, future in futures:
            if not _has_result(future):
                continue
            try:
                await close(future.result())
            except Exception:  # noqa: BLE001
                logger.warning("Failed to close session context %s", session_id, exc_info=True)


def _has_result(future: asyncio.Future[object]) -> bool:
    return future.done() and not future.cancelled() and future.exception() is None
