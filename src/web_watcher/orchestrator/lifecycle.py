"""Long-running watcher service: startup, inbox loop, and graceful shutdown."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from web_watcher.config import BrowserSettings, Settings
from web_watcher.engine.browser import SurfaceProvider, launch_engine
from web_watcher.engine.executor import JobExecutor
from web_watcher.jobs.contracts import WatcherLayout
from web_watcher.jobs.errors import EngineFailure
from web_watcher.jobs.models import Job, JobResult
from web_watcher.orchestrator.claims import ClaimedJob, ClaimManager
from web_watcher.orchestrator.limiter import ConcurrencyLimiter
from web_watcher.orchestrator.output import OutputWriter
from web_watcher.orchestrator.sessions import SessionContextRegistry

logger = logging.getLogger(__name__)


class EngineHandle(Protocol):
    """What the service needs from a launched rendering engine."""

    def is_alive(self) -> bool: ...

    def on_disconnect(self, callback: Callable[[], None]) -> None: ...

    async def new_context(self, **options: Any) -> Any: ...

    async def new_session_context(self) -> Any: ...

    async def close(self) -> None: ...


EngineLauncher = Callable[[BrowserSettings], Awaitable[EngineHandle]]


@dataclass(slots=True)
class WatcherRunSummary:
    """Aggregate counters reported when the watcher exits."""

    claimed: int = 0
    rejected: int = 0
    succeeded: int = 0
    failed: int = 0
    recovered: int = 0
    interrupted: int = 0
    stop_reason: str | None = None
    fatal_error: str | None = None


class WatcherService:
    """Owns the engine, the limiter, and the inbox loop for one watcher process."""

    def __init__(
        self,
        settings: Settings,
        *,
        engine_launcher: EngineLauncher = launch_engine,
    ) -> None:
        self.settings = settings
        self.layout = WatcherLayout(settings.root_dir)
        self.engine_launcher = engine_launcher
        self.output_writer = OutputWriter(self.layout.responses_dir)
        self.limiter = ConcurrencyLimiter(settings.watcher.concurrency)
        self.claims = ClaimManager(
            layout=self.layout,
            output_writer=self.output_writer,
            stability_ms=settings.watcher.stability_ms,
        )
        self.summary = WatcherRunSummary()
        self._stop = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()
        self._engine: EngineHandle | None = None
        self._sessions: SessionContextRegistry[Any] | None = None
        self._executor: JobExecutor | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self, *, reason: str) -> None:
        if self._stop.is_set():
            return
        logger.info("Stop requested: %s", reason)
        self.summary.stop_reason = reason
        self._stop.set()

    async def run(self, *, max_polls: int | None = None) -> WatcherRunSummary:
        """Watch the inbox until a stop is requested, then drain and release everything.

        Raises:
            EngineFailure: the engine could not be launched.
        """

        await self.start()
        try:
            async with self._signal_handlers():
                await self._poll_loop(max_polls=max_polls)
        finally:
            await self.shutdown()
        return self.summary

    async def start(self) -> None:
        await asyncio.to_thread(self.layout.ensure)
        self.summary.recovered = await asyncio.to_thread(self.claims.recover_orphaned_claims)

        engine = await self.engine_launcher(self.settings.browser)
        self._engine = engine
        engine.on_disconnect(self._on_engine_disconnect)
        self._sessions = SessionContextRegistry(engine.new_session_context)
        self._executor = JobExecutor(
            surfaces=SurfaceProvider(
                new_transient_context=engine.new_context,
                sessions=self._sessions,
            ),
            output_writer=self.output_writer,
            engine_alive=engine.is_alive,
        )
        logger.info(
            "Watching %s (concurrency=%d)",
            self.layout.requests_dir,
            self.settings.watcher.concurrency,
        )

    async def poll_once(self) -> int:
        """Claim every stable inbox file and dispatch it; returns files still settling."""

        claimed, poll = await self.claims.poll_once()
        self.summary.rejected += poll.rejected
        for item in claimed:
            self.dispatch(item)
        return poll.waiting

    def dispatch(self, claimed: ClaimedJob) -> asyncio.Task[None]:
        self.summary.claimed += 1
        task = asyncio.create_task(self._run_claimed(claimed), name=f"job-{claimed.job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        """Stop intake, drain in-flight jobs within the grace period, then close the engine."""

        self._stop.set()
        drain_timeout = self.settings.watcher.drain_timeout_seconds
        if self._tasks:
            logger.info("Draining %d job(s) (timeout %.1fs)", len(self._tasks), drain_timeout)
            try:
                await asyncio.wait_for(self.limiter.wait_idle(), timeout=drain_timeout)
            except TimeoutError:
                logger.warning("Drain timeout exceeded; interrupting %d job(s)", len(self._tasks))
        await self._cancel_remaining()

        if self._sessions is not None:
            await self._sessions.close_all(_close_context)
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await engine.close()
        logger.info(
            "Watcher stopped: claimed=%d succeeded=%d failed=%d rejected=%d",
            self.summary.claimed,
            self.summary.succeeded,
            self.summary.failed,
            self.summary.rejected,
        )

    async def _poll_loop(self, *, max_polls: int | None) -> None:
        polls = 0
        while not self._stop.is_set():
            if max_polls is not None and polls >= max_polls:
                return
            polls += 1
            waiting = await self.poll_once()
            interval_ms = (
                self.settings.watcher.stability_poll_ms
                if waiting
                else self.settings.watcher.poll_interval_ms
            )
            await self._sleep_with_stop(interval_ms / 1000)

    async def _run_claimed(self, claimed: ClaimedJob) -> None:
        job = claimed.job
        executor = self._executor
        if executor is None:
            raise RuntimeError("watcher service is not started")
        try:
            result = await self.limiter.enqueue(lambda: self._execute_logged(executor, job))
        except asyncio.CancelledError:
            self.summary.interrupted += 1
            logger.warning("Job %s interrupted by shutdown; claim kept for recovery", job.id)
            raise
        except Exception:  # noqa: BLE001
            self.summary.failed += 1
            logger.exception("ERR %s: failed to record job outcome", job.id)
        else:
            if result.ok:
                self.summary.succeeded += 1
            else:
                self.summary.failed += 1
        self.claims.release(claimed)

    async def _execute_logged(
        self,
        executor: JobExecutor,
        job: Job,
    ) -> JobResult:
        logger.info("START %s %s", job.id, job.url or "(inline html)")
        result = await executor.execute(job)
        if result.ok:
            logger.info("OK %s in %dms", job.id, result.duration_ms)
        else:
            logger.error("ERR %s: %s", job.id, result.error_message)
        return result

    async def _cancel_remaining(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _sleep_with_stop(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except TimeoutError:
            return

    def _on_engine_disconnect(self) -> None:
        if self._stop.is_set():
            return
        failure = EngineFailure("Browser disconnected unexpectedly")
        logger.error("%s; stopping watcher", failure)
        self.summary.fatal_error = str(failure)
        self.request_stop(reason="engine_disconnected")

    @asynccontextmanager
    async def _signal_handlers(self) -> AsyncIterator[None]:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_stop_from_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError):
                # Signal handlers can only be installed in main thread.
                continue
            installed.append(signum)
        try:
            yield
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)

    def request_stop_from_signal(self, signum: signal.Signals) -> None:
        self.request_stop(reason=signal.Signals(signum).name)


async def _close_context(context: Any) -> None:
    await context.close()
