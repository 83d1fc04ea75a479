"""Controllers for watcher CLI commands."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from web_watcher.client import build_request, render_html, render_url, submit
from web_watcher.config import Settings
from web_watcher.jobs.contracts import WatcherLayout, dump_json
from web_watcher.jobs.errors import EngineFailure
from web_watcher.jobs.models import JobOperation
from web_watcher.orchestrator.lifecycle import WatcherService

GITKEEP = ".gitkeep"


@dataclass(slots=True)
class WatchCommand:
    """CLI input for the long-running watcher."""

    root_dir: Path | None
    concurrency: int | None = None
    headless: bool | None = None


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for submitting one render job."""

    op: JobOperation
    target: str
    root_dir: Path | None = None
    job_id: str | None = None
    timeout_ms: int | None = None
    post_wait_ms: int | None = None
    wait_until: str | None = None
    screenshot: bool | None = None
    html_output: bool | None = None
    actions_file: Path | None = None
    extract_file: Path | None = None
    headers_file: Path | None = None
    capture_console: bool = False
    capture_network: bool = False
    screenshot_on_each_action: bool = False
    session_id: str | None = None
    user_agent: str | None = None
    viewport: str | None = None
    client_timeout_ms: int | None = None
    wait: bool = True


@dataclass(slots=True)
class CleanCommand:
    """CLI input for emptying the inbox and output areas."""

    root_dir: Path | None


class WatcherCliController:
    """Coordinates watcher, submit, and housekeeping CLI operations."""

    def run_watch(self, command: WatchCommand) -> list[str]:
        settings = Settings.from_env(root_dir=command.root_dir)
        if command.concurrency is not None:
            settings.watcher.concurrency = command.concurrency
        if command.headless is not None:
            settings.browser.headless = command.headless
        settings.validate()

        summary = asyncio.run(WatcherService(settings).run())
        if summary.fatal_error:
            raise EngineFailure(summary.fatal_error)
        return [
            "Watcher summary: "
            f"claimed={summary.claimed} succeeded={summary.succeeded} "
            f"failed={summary.failed} rejected={summary.rejected} "
            f"recovered={summary.recovered} interrupted={summary.interrupted}",
            f"Stop reason: {summary.stop_reason or 'n/a'}",
        ]

    def submit(self, command: SubmitCommand) -> list[str]:
        settings = Settings.from_env(root_dir=command.root_dir)
        settings.validate()
        options = _submit_options(command)

        if command.op is JobOperation.RENDER_URL:
            content, payload = command.target, {"url": command.target}
        else:
            content = Path(command.target).read_text("utf-8")
            payload = {"html": content}

        if not command.wait:
            job_id = command.job_id or str(uuid4())
            options.setdefault("screenshot", True)
            options.setdefault("html_output", True)
            request = build_request(command.op, job_id=job_id, **payload, **options)
            path = submit(settings.root_dir, request)
            return [f"Job submitted: id={job_id}", f"Request: {path}"]

        wait_seconds = (
            command.client_timeout_ms / 1000 if command.client_timeout_ms is not None else None
        )
        render = render_url if command.op is JobOperation.RENDER_URL else render_html
        result = render(
            content,
            root_dir=settings.root_dir,
            job_id=command.job_id,
            client_timeout_seconds=wait_seconds,
            settings=settings.client,
            **options,
        )
        return [dump_json(result.to_dict())]

    def clean(self, command: CleanCommand) -> list[str]:
        settings = Settings.from_env(root_dir=command.root_dir)
        layout = WatcherLayout(settings.root_dir)
        _empty_dir(layout.responses_dir)
        _empty_dir(layout.requests_dir)
        layout.ensure()
        for directory in (layout.responses_dir, layout.requests_dir, layout.processing_dir):
            (directory / GITKEEP).touch()
        return ["Cleaned responses/ and requests/"]


def parse_viewport(value: str) -> dict[str, float]:
    """Parse ``WxH`` or ``WxHxD`` into a wire viewport."""

    parts = value.lower().split("x")
    if len(parts) not in {2, 3}:
        raise ValueError(f"Invalid viewport {value!r}; expected WxH or WxHxD")
    try:
        width, height = int(parts[0]), int(parts[1])
        scale = float(parts[2]) if len(parts) == 3 else 1.0
    except ValueError as error:
        raise ValueError(f"Invalid viewport {value!r}; expected WxH or WxHxD") from error
    return {"width": width, "height": height, "deviceScaleFactor": scale}


def _submit_options(command: SubmitCommand) -> dict[str, Any]:
    options = {
        "timeout_ms": command.timeout_ms,
        "post_wait_ms": command.post_wait_ms,
        "wait_until": command.wait_until,
        "screenshot": command.screenshot,
        "html_output": command.html_output,
        "actions": _load_json_file(command.actions_file),
        "extract": _load_json_file(command.extract_file),
        "extra_headers": _load_json_file(command.headers_file),
        "capture_console": command.capture_console or None,
        "capture_network": command.capture_network or None,
        "screenshot_on_each_action": command.screenshot_on_each_action or None,
        "session_id": command.session_id,
        "user_agent": command.user_agent,
        "viewport": parse_viewport(command.viewport) if command.viewport else None,
    }
    return {key: value for key, value in options.items() if value is not None}


def _load_json_file(path: Path | None) -> Any:
    if path is None:
        return None
    return json.loads(path.read_text("utf-8"))


def _empty_dir(directory: Path) -> None:
    if not directory.exists():
        return
    for entry in directory.iterdir():
        if entry.name == GITKEEP:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry, ignore_errors=True)
        else:
            entry.unlink(missing_ok=True)
