"""Shared Playwright engine and per-job rendering surfaces."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from web_watcher.config import BrowserSettings
from web_watcher.jobs.errors import EngineFailure
from web_watcher.jobs.models import Job
from web_watcher.orchestrator.sessions import SessionContextRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Engine:
    """One launched browser shared by every job in the process."""

    playwright: Playwright
    browser: Browser

    def is_alive(self) -> bool:
        return self.browser.is_connected()

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        self.browser.on("disconnected", lambda _browser: callback())

    async def new_context(self, **options: Any) -> BrowserContext:
        return await self.browser.new_context(**options)

    async def new_session_context(self) -> BrowserContext:
        return await self.new_context()

    async def close(self) -> None:
        try:
            await self.browser.close()
        except Exception:  # noqa: BLE001
            logger.warning("Browser close failed", exc_info=True)
        await self.playwright.stop()


async def launch_engine(settings: BrowserSettings) -> Engine:
    """Start Playwright and launch Chromium; failures are fatal at startup."""

    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(
            headless=settings.headless,
            args=list(settings.args),
        )
    except Exception as error:
        await playwright.stop()
        raise EngineFailure(f"Failed to launch browser: {error}") from error
    logger.info("Browser launched: %s %s", browser.browser_type.name, browser.version)
    return Engine(playwright=playwright, browser=browser)


class SurfaceProvider:
    """Hands out one fresh page per job and always releases it."""

    def __init__(
        self,
        *,
        new_transient_context: Callable[..., Any],
        sessions: SessionContextRegistry[BrowserContext],
    ) -> None:
        self._new_transient_context = new_transient_context
        self._sessions = sessions

    @asynccontextmanager
    async def acquire(self, job: Job) -> AsyncIterator[Page]:
        owned_context: BrowserContext | None = None
        if job.session_id:
            context = await self._sessions.get_or_create(job.session_id)
        else:
            context = owned_context = await self._new_transient_context(
                **transient_context_options(job),
            )
        page: Page | None = None
        try:
            page = await context.new_page()
            yield page
        finally:
            if page is not None:
                await _close_quietly(page, "page", job.id)
            if owned_context is not None:
                await _close_quietly(owned_context, "context", job.id)


def transient_context_options(job: Job) -> dict[str, Any]:
    options: dict[str, Any] = {
        "viewport": {"width": job.viewport.width, "height": job.viewport.height},
        "device_scale_factor": job.viewport.device_scale_factor,
    }
    if job.user_agent:
        options["user_agent"] = job.user_agent
    return options


async def _close_quietly(resource: Page | BrowserContext, label: str, job_id: str) -> None:
    try:
        await resource.close()
    except Exception:  # noqa: BLE001
        logger.debug("Failed to close %s for job %s", label, job_id, exc_info=True)
