"""Submit render jobs through the filesystem and wait for their completion marker."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from web_watcher.config import ClientSettings
from web_watcher.jobs.contracts import (
    DONE_FILE,
    HTML_FILE,
    META_FILE,
    SCREENSHOT_FILE,
    STATUS_ERROR,
    WatcherLayout,
    dump_json,
    load_json,
    write_text_atomic,
)
from web_watcher.jobs.models import DEFAULT_TIMEOUT_MS, JobOperation

logger = logging.getLogger(__name__)

_WIRE_KEYS = {
    "viewport": "viewport",
    "full_page": "fullPage",
    "wait_until": "waitUntil",
    "timeout_ms": "timeoutMs",
    "user_agent": "userAgent",
    "extra_headers": "extraHeaders",
    "screenshot": "screenshot",
    "html_output": "htmlOutput",
    "post_wait_ms": "postWaitMs",
    "actions": "actions",
    "extract": "extract",
    "capture_console": "captureConsole",
    "capture_network": "captureNetwork",
    "screenshot_on_each_action": "screenshotOnEachAction",
    "session_id": "sessionId",
}


class RenderJobFailed(RuntimeError):
    """The watcher finished the job with an error status."""

    def __init__(self, job_id: str, message: str, *, error_kind: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.error_kind = error_kind


@dataclass(slots=True)
class RenderResult:
    """Where a finished job's artifacts live."""

    id: str
    output_dir: Path
    done: dict[str, Any]

    @property
    def meta_path(self) -> Path:
        return self.output_dir / META_FILE

    @property
    def html_path(self) -> Path:
        return self.output_dir / HTML_FILE

    @property
    def screenshot_path(self) -> Path:
        return self.output_dir / SCREENSHOT_FILE

    def meta(self) -> dict[str, Any]:
        return load_json(self.meta_path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "paths": {
                "meta": str(self.meta_path),
                "html": str(self.html_path),
                "screenshot": str(self.screenshot_path),
            },
            "done": self.done,
        }


def build_request(
    op: JobOperation,
    *,
    job_id: str,
    url: str | None = None,
    html: str | None = None,
    **options: Any,
) -> dict[str, Any]:
    """Build a wire-format job record; ``None`` options are left to watcher defaults."""

    unknown = set(options) - set(_WIRE_KEYS)
    if unknown:
        raise TypeError(f"Unknown render options: {', '.join(sorted(unknown))}")
    request: dict[str, Any] = {"id": job_id, "op": op.value}
    if op is JobOperation.RENDER_URL:
        request["url"] = url
    else:
        request["html"] = html
    for name, value in options.items():
        if value is not None:
            request[_WIRE_KEYS[name]] = value
    return request


def submit(root_dir: Path, request: dict[str, Any]) -> Path:
    """Atomically drop a job record into the inbox."""

    layout = WatcherLayout(root_dir)
    path = layout.request_path(str(request["id"]))
    path.parent.mkdir(parents=True, exist_ok=True)
    write_text_atomic(path, dump_json(request))
    logger.debug("Submitted job %s to %s", request["id"], path)
    return path


def wait_for_done(
    root_dir: Path,
    job_id: str,
    *,
    timeout_seconds: float,
    poll_interval_ms: int = 300,
) -> dict[str, Any]:
    """Poll for the job's completion marker.

    Raises:
        TimeoutError: no marker appeared within ``timeout_seconds``.
    """

    done_path = WatcherLayout(root_dir).output_dir(job_id) / DONE_FILE
    deadline = time.monotonic() + timeout_seconds
    while True:
        try:
            return load_json(done_path)
        except (FileNotFoundError, ValueError, TypeError):
            pass
        if time.monotonic() > deadline:
            raise TimeoutError(f"Timeout waiting for {done_path}")
        time.sleep(poll_interval_ms / 1000)


def client_timeout_seconds(timeout_ms: int | None, settings: ClientSettings) -> float:
    navigation_seconds = (timeout_ms or DEFAULT_TIMEOUT_MS) / 1000
    return max(settings.min_wait_seconds, navigation_seconds + settings.grace_seconds)


def render_url(
    url: str,
    *,
    root_dir: Path = Path("."),
    job_id: str | None = None,
    client_timeout_seconds: float | None = None,
    settings: ClientSettings | None = None,
    **options: Any,
) -> RenderResult:
    """Submit a URL render and block until the watcher completes it."""

    return _render(
        JobOperation.RENDER_URL,
        root_dir=root_dir,
        job_id=job_id,
        wait_seconds=client_timeout_seconds,
        settings=settings,
        url=url,
        **options,
    )


def render_html(
    html: str,
    *,
    root_dir: Path = Path("."),
    job_id: str | None = None,
    client_timeout_seconds: float | None = None,
    settings: ClientSettings | None = None,
    **options: Any,
) -> RenderResult:
    """Submit an inline HTML render and block until the watcher completes it."""

    return _render(
        JobOperation.RENDER_HTML,
        root_dir=root_dir,
        job_id=job_id,
        wait_seconds=client_timeout_seconds,
        settings=settings,
        html=html,
        **options,
    )


def _render(
    op: JobOperation,
    *,
    root_dir: Path,
    job_id: str | None,
    wait_seconds: float | None,
    settings: ClientSettings | None,
    **payload: Any,
) -> RenderResult:
    settings = settings or ClientSettings()
    job_id = job_id or str(uuid.uuid4())
    options = {key: value for key, value in payload.items() if key not in {"url", "html"}}
    options.setdefault("screenshot", True)
    options.setdefault("html_output", True)
    request = build_request(
        op,
        job_id=job_id,
        url=payload.get("url"),
        html=payload.get("html"),
        **options,
    )
    submit(root_dir, request)

    timeout = (
        wait_seconds
        if wait_seconds is not None
        else client_timeout_seconds(options.get("timeout_ms"), settings)
    )
    done = wait_for_done(
        root_dir,
        job_id,
        timeout_seconds=timeout,
        poll_interval_ms=settings.poll_interval_ms,
    )
    output_dir = WatcherLayout(root_dir).output_dir(job_id)
    result = RenderResult(id=job_id, output_dir=output_dir, done=done)
    if done.get("status") == STATUS_ERROR:
        raise _failure(result)
    return result


def _failure(result: RenderResult) -> RenderJobFailed:
    fallback = str(result.done.get("error") or "Unknown error")
    try:
        meta = result.meta()
    except (OSError, ValueError, TypeError):
        return RenderJobFailed(result.id, fallback)
    return RenderJobFailed(
        result.id,
        str(meta.get("errorMessage") or fallback),
        error_kind=meta.get("errorKind"),
    )
