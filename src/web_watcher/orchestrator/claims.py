"""Inbox discovery, parsing, validation, and atomic claiming of job files."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from web_watcher.jobs.contracts import DONE_FILE, WatcherLayout
from web_watcher.jobs.errors import (
    ClaimRaceError,
    ParseError,
    classify_failure,
    error_message,
)
from web_watcher.jobs.models import Job
from web_watcher.jobs.validator import best_effort_job_id, normalize
from web_watcher.orchestrator.output import OutputWriter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClaimedJob:
    """A validated job whose file now lives in the processing area."""

    job: Job
    claim_path: Path


@dataclass(slots=True)
class _Observation:
    size: int
    mtime_ns: int
    stable_since: float


@dataclass(slots=True)
class PollSummary:
    """Counters for one inbox pass."""

    claimed: int = 0
    rejected: int = 0
    races: int = 0
    waiting: int = 0
    deferred: int = 0


class ClaimManager:
    """Turns stable inbox files into exclusively owned jobs.

    A file is acted on only once its size and mtime have been unchanged for
    ``stability_ms``. Unparsable or invalid records get synthetic error
    artifacts and are deleted without ever being claimed. A job id is
    processed at most once: a record whose id is already claimed or already
    has an output directory is dropped as a duplicate.
    """

    def __init__(
        self,
        *,
        layout: WatcherLayout,
        output_writer: OutputWriter,
        stability_ms: int = 200,
    ) -> None:
        self.layout = layout
        self.output_writer = output_writer
        self.stability_ms = stability_ms
        self._observed: dict[Path, _Observation] = {}
        self._undeletable: set[Path] = set()

    def scan_inbox(self) -> list[Path]:
        """Candidate job files in discovery order (mtime, then name)."""

        candidates: list[tuple[int, str, Path]] = []
        for path in self.layout.requests_dir.glob("*.json"):
            if path.name.startswith("."):
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if path.is_file():
                candidates.append((stat.st_mtime_ns, path.name, path))
        return [path for _, _, path in sorted(candidates)]

    async def poll_once(self) -> tuple[list[ClaimedJob], PollSummary]:
        summary = PollSummary()
        claimed: list[ClaimedJob] = []
        paths = await asyncio.to_thread(self.scan_inbox)
        present = set(paths)
        for stale in set(self._observed) - present:
            del self._observed[stale]
        self._undeletable &= present

        for path in paths:
            if path in self._undeletable:
                continue
            if not self._is_stable(path):
                summary.waiting += 1
                continue
            self._observed.pop(path, None)
            try:
                job = await self.intake(path)
            except ClaimRaceError as race:
                logger.debug("Claim race lost: %s", race)
                summary.races += 1
                continue
            except OSError:
                logger.exception("Failed to claim %s; retrying on a later poll", path.name)
                summary.deferred += 1
                continue
            if job is None:
                summary.rejected += 1
                continue
            summary.claimed += 1
            claimed.append(job)
        return claimed, summary

    async def intake(self, path: Path) -> ClaimedJob | None:
        """Parse, validate, and claim one file; ``None`` when it was rejected.

        Any failure to read, parse, or normalize the record rejects it.

        Raises:
            ClaimRaceError: the file vanished, or its id is already claimed
                or processed.
            OSError: the claiming rename failed; the file stays in the inbox.
        """

        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as error:
            raise ClaimRaceError(f"{path.name} disappeared before it was read") from error
        except OSError as error:
            await self._reject(path, None, error)
            return None

        raw: object = None
        try:
            raw = parse_job_bytes(data)
            job = normalize(raw)
        except Exception as error:  # noqa: BLE001
            await self._reject(path, raw, error)
            return None

        return self.claim(path, job)

    def claim(self, path: Path, job: Job) -> ClaimedJob:
        """Relocate ``path`` into the processing area under the job's id.

        The existence checks and the rename run without yielding to the event
        loop, so within this process exactly one file can win a given id.
        """

        claim_path = self.layout.claim_path(job.id)
        if claim_path.exists() or self.layout.output_dir(job.id).exists():
            path.unlink(missing_ok=True)
            raise ClaimRaceError(
                f"job {job.id} is already claimed or processed; dropped {path.name}",
            )
        try:
            os.rename(path, claim_path)
        except FileNotFoundError as error:
            raise ClaimRaceError(f"{path.name} disappeared before it was claimed") from error
        return ClaimedJob(job=job, claim_path=claim_path)

    def release(self, claimed: ClaimedJob) -> None:
        claimed.claim_path.unlink(missing_ok=True)

    def recover_orphaned_claims(self) -> int:
        """Return claims left by a crashed process to the inbox.

        Claims whose job already has a completion marker are simply removed.
        Partial output of an unfinished job is cleared so the re-run creates
        the directory afresh.
        """

        recovered = 0
        for claim_path in sorted(self.layout.processing_dir.glob("*.json")):
            job_id = claim_path.stem
            try:
                output_dir = self.layout.output_dir(job_id)
            except ValueError:
                logger.warning("Orphaned claim %s has an unsafe name; left in place", job_id)
                continue
            if (output_dir / DONE_FILE).exists():
                claim_path.unlink(missing_ok=True)
                continue
            target = self.layout.request_path(job_id)
            if target.exists():
                logger.warning("Orphaned claim %s shadowed by inbox file; left in place", job_id)
                continue
            try:
                if output_dir.exists():
                    shutil.rmtree(output_dir)
            except OSError:
                logger.warning(
                    "Cannot clear partial output of %s; claim left in place",
                    job_id,
                    exc_info=True,
                )
                continue
            try:
                os.rename(claim_path, target)
            except FileNotFoundError:
                continue
            recovered += 1
            logger.info("Recovered orphaned claim %s", job_id)
        return recovered

    def _is_stable(self, path: Path) -> bool:
        try:
            stat = path.stat()
        except FileNotFoundError:
            self._observed.pop(path, None)
            return False
        now = time.monotonic()
        observation = self._observed.get(path)
        if (
            observation is None
            or observation.size != stat.st_size
            or observation.mtime_ns != stat.st_mtime_ns
        ):
            self._observed[path] = _Observation(stat.st_size, stat.st_mtime_ns, now)
            return self.stability_ms <= 0
        return (now - observation.stable_since) * 1000 >= self.stability_ms

    def _id_in_use(self, job_id: str) -> bool:
        return self.layout.claim_path(job_id).exists() or self.layout.output_dir(job_id).exists()

    async def _reject(self, path: Path, raw: object, error: Exception) -> None:
        job_id = best_effort_job_id(raw)
        if self._id_in_use(job_id):
            job_id = str(uuid4())
        message = error_message(error)
        logger.error("ERR Failed to handle request file %s: %s", path.name, message)
        try:
            await self.output_writer.write_synthetic_error(
                job_id=job_id,
                raw=raw,
                error_message=message,
                error_kind=classify_failure(error).value,
            )
        except (OSError, ValueError):
            logger.exception("Failed to write error artifacts for %s", path.name)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError:
            logger.exception("Failed to remove rejected file %s; ignoring it", path.name)
            self._undeletable.add(path)


def parse_job_bytes(data: bytes) -> object:
    """Decode a job file as UTF-8 JSON."""

    try:
        return json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise ParseError(f"Invalid job file: {error}") from error


__all__ = [
    "ClaimManager",
    "ClaimedJob",
    "PollSummary",
    "parse_job_bytes",
]
