"""Runs one job end-to-end against an acquired rendering surface."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Protocol

from playwright.async_api import ConsoleMessage, Page, Request, Response
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from web_watcher.engine.actions import ActionRunner
from web_watcher.engine.extraction import run_extractions
from web_watcher.jobs.contracts import EXTRACT_FILE, HTML_FILE, SCREENSHOT_FILE
from web_watcher.jobs.errors import (
    EngineFailure,
    NavigationError,
    NavigationTimeoutError,
    classify_failure,
    error_message,
)
from web_watcher.jobs.models import (
    MAX_POST_WAIT_MS,
    Job,
    JobDiagnostics,
    JobOperation,
    JobResult,
    WaitUntil,
)
from web_watcher.orchestrator.output import JobOutput, OutputWriter

logger = logging.getLogger(__name__)

NETWORK_QUIET_SHORT_MAX_MS = 5_000


class SurfaceSource(Protocol):
    """Anything that can lend a job an exclusive page for a scoped block."""

    def acquire(self, job: Job) -> AbstractAsyncContextManager[Page]:
        """Yield a fresh page and release it on every exit path."""


class JobExecutor:
    """Executes the fail-fast step sequence and records the outcome as artifacts.

    Steps: acquire a surface, configure it best-effort, load content, apply the
    clamped post-load delay, run actions, write primary artifacts, run
    extractions, release the surface. Any step failure ends the job with an
    error message; no exception escapes ``execute``.
    """

    def __init__(
        self,
        *,
        surfaces: SurfaceSource,
        output_writer: OutputWriter,
        engine_alive: Callable[[], bool] = lambda: True,
    ) -> None:
        self.surfaces = surfaces
        self.output_writer = output_writer
        self.engine_alive = engine_alive

    async def execute(self, job: Job) -> JobResult:
        started_at = datetime.now(UTC)
        output = self.output_writer.prepare(job, started_at)
        diagnostics = JobDiagnostics()
        failure: BaseException | None = None
        try:
            await output.open()
            async with self.surfaces.acquire(job) as page:
                await self._run_steps(page, job, output, diagnostics)
        except Exception as error:  # noqa: BLE001
            failure = error
            if not self.engine_alive():
                failure = EngineFailure(f"Browser is no longer usable: {error_message(error)}")
                failure.__cause__ = error

        result = JobResult(
            job_id=job.id,
            ok=failure is None,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            error_message=error_message(failure) if failure is not None else None,
            error_kind=classify_failure(failure).value if failure is not None else None,
        )
        try:
            await output.finish(result, diagnostics)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to write completion marker for %s", job.id)
        return result

    async def _run_steps(
        self,
        page: Page,
        job: Job,
        output: JobOutput,
        diagnostics: JobDiagnostics,
    ) -> None:
        attach_diagnostics(page, job, diagnostics)
        await configure_surface(page, job)
        await load_content(page, job)
        if job.post_wait_ms > 0:
            await asyncio.sleep(min(job.post_wait_ms, MAX_POST_WAIT_MS) / 1000)
        if job.actions:
            runner = ActionRunner(page, output, snapshot_each_step=job.screenshot_on_each_action)
            await runner.run(job.actions)
        if job.html_output:
            await output.write_text(HTML_FILE, await page.content())
        if job.screenshot:
            image = await page.screenshot(full_page=job.full_page)
            await output.write_bytes(SCREENSHOT_FILE, image)
        if job.extract:
            await output.write_json(EXTRACT_FILE, await run_extractions(page, job.extract))


def attach_diagnostics(page: Page, job: Job, diagnostics: JobDiagnostics) -> None:
    if job.capture_console:

        def _on_console(message: ConsoleMessage) -> None:
            diagnostics.console_events.append(
                {"type": message.type, "text": message.text, "ts": _epoch_ms()},
            )

        page.on("console", _on_console)

    if job.capture_network:

        def _on_request(request: Request) -> None:
            diagnostics.network_events.append(
                {
                    "phase": "request",
                    "url": request.url,
                    "method": request.method,
                    "ts": _epoch_ms(),
                },
            )

        def _on_response(response: Response) -> None:
            diagnostics.network_events.append(
                {
                    "phase": "response",
                    "url": response.url,
                    "status": response.status,
                    "ts": _epoch_ms(),
                },
            )

        page.on("request", _on_request)
        page.on("response", _on_response)


async def configure_surface(page: Page, job: Job) -> None:
    """Apply viewport, headers, and timeouts; each setting is independent and optional."""

    headers = dict(job.extra_headers)
    if job.user_agent and job.session_id:
        # Shared session contexts keep their own UA; send the job's on the wire.
        headers.setdefault("User-Agent", job.user_agent)

    async def _viewport() -> None:
        await page.set_viewport_size({"width": job.viewport.width, "height": job.viewport.height})

    async def _headers() -> None:
        if headers:
            await page.set_extra_http_headers(headers)

    async def _timeouts() -> None:
        page.set_default_navigation_timeout(job.timeout_ms)
        page.set_default_timeout(job.timeout_ms)

    for label, step in (("viewport", _viewport), ("headers", _headers), ("timeouts", _timeouts)):
        try:
            await step()
        except Exception:  # noqa: BLE001
            logger.debug("Surface %s setup failed for %s", label, job.id, exc_info=True)


async def load_content(page: Page, job: Job) -> None:
    """Navigate or inject content and wait for the requested completion policy."""

    state = job.wait_until.load_state
    try:
        if job.op is JobOperation.RENDER_URL:
            await page.goto(job.url or "", wait_until=state, timeout=job.timeout_ms)
        else:
            await page.set_content(job.html or "", wait_until=state, timeout=job.timeout_ms)
    except PlaywrightTimeoutError as error:
        raise NavigationTimeoutError(
            f"Navigation timeout of {job.timeout_ms}ms exceeded ({job.wait_until.value})",
        ) from error
    except PlaywrightError as error:
        raise NavigationError(f"Navigation failed: {error.message}") from error

    if job.wait_until is WaitUntil.NETWORKIDLE2:
        await _settle_network(page, job)


async def _settle_network(page: Page, job: Job) -> None:
    timeout_ms = min(job.timeout_ms, NETWORK_QUIET_SHORT_MAX_MS)
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except PlaywrightTimeoutError:
        logger.debug("Network did not settle within %dms for %s", timeout_ms, job.id)


def _epoch_ms() -> int:
    return int(time.time() * 1000)
