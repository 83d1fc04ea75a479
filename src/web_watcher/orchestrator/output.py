"""Per-job output directories with atomic artifacts and a last-written marker."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from web_watcher.jobs.contracts import (
    CONSOLE_LOG_FILE,
    DONE_FILE,
    META_FILE,
    NETWORK_LOG_FILE,
    done_record,
    dump_json,
    safe_join,
    write_bytes_atomic,
    write_json_atomic,
)
from web_watcher.jobs.models import Job, JobDiagnostics, JobResult

logger = logging.getLogger(__name__)


def isoformat(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JobOutput:
    """Artifact sink for one job id.

    Every artifact is written atomically. Once the completion marker is
    written the output is sealed and further writes raise ``RuntimeError``.
    """

    def __init__(self, directory: Path, meta: dict[str, Any]) -> None:
        self.directory = directory
        self.meta = meta
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def path_for(self, name: str) -> Path:
        return safe_join(self.directory, name)

    async def write_bytes(self, name: str, data: bytes) -> Path:
        self._ensure_open(name)
        path = self.path_for(name)
        await asyncio.to_thread(write_bytes_atomic, path, data)
        return path

    async def write_text(self, name: str, text: str) -> Path:
        return await self.write_bytes(name, text.encode("utf-8"))

    async def write_json(self, name: str, payload: Any) -> Path:
        return await self.write_text(name, dump_json(payload))

    async def write_start_meta(self) -> None:
        await self.write_json(META_FILE, self.meta)

    async def open(self) -> None:
        """Create the directory and publish in-flight metadata (no end time)."""

        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        await self.write_start_meta()

    async def finish(self, result: JobResult, diagnostics: JobDiagnostics | None = None) -> None:
        """Finalize metadata and flush diagnostics best-effort, then seal with the marker.

        Only the marker write may raise.
        """

        self.meta["finishedAt"] = isoformat(result.finished_at)
        self.meta["durationMs"] = result.duration_ms
        if not result.ok:
            self.meta["hadError"] = True
            self.meta["errorMessage"] = result.error_message
            self.meta["errorKind"] = result.error_kind
        try:
            await self.write_json(META_FILE, self.meta)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Failed to write final metadata for %s",
                self.directory.name,
                exc_info=True,
            )

        if diagnostics is not None:
            await self._write_diagnostics(diagnostics)

        await self.write_json(DONE_FILE, done_record(None if result.ok else result.error_message))
        self._sealed = True

    async def _write_diagnostics(self, diagnostics: JobDiagnostics) -> None:
        try:
            if diagnostics.console_events:
                await self.write_json(CONSOLE_LOG_FILE, diagnostics.console_events)
            if diagnostics.network_events:
                await self.write_json(NETWORK_LOG_FILE, diagnostics.network_events)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to write diagnostics for %s", self.directory.name, exc_info=True)

    def _ensure_open(self, name: str) -> None:
        if self._sealed:
            raise RuntimeError(f"output {self.directory.name} is sealed; refusing to write {name}")


class OutputWriter:
    """Creates deterministic per-job output directories."""

    def __init__(self, responses_dir: Path) -> None:
        self.responses_dir = responses_dir

    def output_dir(self, job_id: str) -> Path:
        return safe_join(self.responses_dir, job_id)

    def prepare(self, job: Job, started_at: datetime) -> JobOutput:
        """Bind a job to its output directory without touching the filesystem."""

        return JobOutput(
            self.output_dir(job.id),
            {
                "id": job.id,
                "op": job.op.value,
                "startedAt": isoformat(started_at),
                **job.echo_config(),
                "hadError": False,
            },
        )

    async def begin(self, job: Job, started_at: datetime) -> JobOutput:
        """Create the job's directory and publish in-flight metadata (no end time)."""

        output = self.prepare(job, started_at)
        await output.open()
        return output

    async def write_synthetic_error(
        self,
        *,
        job_id: str,
        raw: object,
        error_message: str,
        error_kind: str,
    ) -> Path:
        """Write meta + marker for a record that never became a job."""

        echoed = raw if isinstance(raw, dict) else {}
        now = datetime.now(UTC)
        directory = self.output_dir(job_id)
        meta = {
            "id": job_id,
            "op": echoed.get("op"),
            "startedAt": isoformat(now),
            "finishedAt": isoformat(now),
            "durationMs": 0,
            "url": echoed.get("url"),
            "viewport": echoed.get("viewport"),
            "fullPage": echoed.get("fullPage"),
            "waitUntil": echoed.get("waitUntil"),
            "sessionId": echoed.get("sessionId"),
            "hadError": True,
            "errorMessage": error_message,
            "errorKind": error_kind,
        }

        def _write() -> None:
            write_json_atomic(directory / META_FILE, meta)
            write_json_atomic(directory / DONE_FILE, done_record(error_message))

        await asyncio.to_thread(_write)
        return directory
