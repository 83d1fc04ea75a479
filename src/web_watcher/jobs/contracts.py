"""File-based contracts: directory layout, artifact names, and atomic writes."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

META_FILE = "meta.json"
DONE_FILE = "done.json"
HTML_FILE = "page.html"
SCREENSHOT_FILE = "screenshot.png"
EXTRACT_FILE = "extract.json"
CONSOLE_LOG_FILE = "console.log.json"
NETWORK_LOG_FILE = "network.log.json"

RESERVED_ARTIFACTS = frozenset(
    {
        META_FILE,
        DONE_FILE,
        HTML_FILE,
        SCREENSHOT_FILE,
        EXTRACT_FILE,
        CONSOLE_LOG_FILE,
        NETWORK_LOG_FILE,
    },
)

STATUS_OK = "ok"
STATUS_ERROR = "error"


@dataclass(slots=True, frozen=True)
class WatcherLayout:
    """Well-known locations shared by the watcher and its clients."""

    root: Path

    @property
    def requests_dir(self) -> Path:
        return self.root / "requests"

    @property
    def processing_dir(self) -> Path:
        return self.requests_dir / "processing"

    @property
    def responses_dir(self) -> Path:
        return self.root / "responses"

    def claim_path(self, job_id: str) -> Path:
        return self.processing_dir / f"{job_id}.json"

    def request_path(self, job_id: str) -> Path:
        return self.requests_dir / f"{job_id}.json"

    def output_dir(self, job_id: str) -> Path:
        return safe_join(self.responses_dir, job_id)

    def ensure(self) -> None:
        for directory in (self.requests_dir, self.processing_dir, self.responses_dir):
            directory.mkdir(parents=True, exist_ok=True)


def step_snapshot_name(index: int) -> str:
    return f"step-{index:02d}.png"


def element_snapshot_name(index: int) -> str:
    return f"step-{index:02d}-element.png"


def safe_join(base_dir: Path, name: str) -> Path:
    """Join ``name`` to ``base_dir`` and refuse results outside the base."""

    base = base_dir.resolve()
    resolved = (base / name).resolve()
    if resolved == base or base not in resolved.parents:
        raise ValueError(f"Unsafe path resolution: {resolved}")
    return resolved


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write to a same-directory temp file, then rename it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / f".{path.name}.tmp-{uuid4().hex}"
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_text_atomic(path: Path, text: str) -> None:
    write_bytes_atomic(path, text.encode("utf-8"))


def dump_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def write_json_atomic(path: Path, payload: Any) -> None:
    """Persist JSON payload atomically using deterministic formatting."""

    write_text_atomic(path, dump_json(payload))


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def done_record(error_message: str | None) -> dict[str, str]:
    if error_message is None:
        return {"status": STATUS_OK}
    return {"status": STATUS_ERROR, "error": error_message}
