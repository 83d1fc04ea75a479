from __future__ import annotations

from pathlib import Path

import allure
import pytest

from web_watcher.jobs.contracts import (
    WatcherLayout,
    done_record,
    element_snapshot_name,
    load_json,
    safe_join,
    step_snapshot_name,
    write_bytes_atomic,
    write_json_atomic,
)
from web_watcher.jobs.errors import (
    ActionTimeoutError,
    EngineFailure,
    ExtractionError,
    FailureKind,
    NavigationError,
    NavigationTimeoutError,
    ParseError,
    ValidationError,
    classify_failure,
    error_message,
)

pytestmark = [
    allure.epic("Job Intake"),
    allure.feature("Filesystem Contracts"),
]


def test_layout_uses_well_known_directories(tmp_path: Path) -> None:
    layout = WatcherLayout(tmp_path)
    layout.ensure()

    assert layout.requests_dir == tmp_path / "requests"
    assert layout.processing_dir == tmp_path / "requests" / "processing"
    assert layout.claim_path("j1") == tmp_path / "requests" / "processing" / "j1.json"
    assert layout.output_dir("j1") == (tmp_path / "responses" / "j1").resolve()
    assert layout.processing_dir.is_dir()
    assert layout.responses_dir.is_dir()


def test_atomic_write_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "out" / "meta.json"

    write_json_atomic(target, {"id": "x", "name": "Žluťoučký"})
    write_json_atomic(target, {"id": "y"})

    assert load_json(target) == {"id": "y"}
    assert [path.name for path in target.parent.iterdir()] == ["meta.json"]


def test_atomic_write_cleans_up_temp_file_on_failure(tmp_path: Path, monkeypatch) -> None:
    def _boom(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("web_watcher.jobs.contracts.os.replace", _boom)

    with pytest.raises(OSError, match="disk full"):
        write_bytes_atomic(tmp_path / "screenshot.png", b"png")

    assert list(tmp_path.iterdir()) == []


def test_safe_join_refuses_escaping_names(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unsafe path"):
        safe_join(tmp_path, "../outside")
    with pytest.raises(ValueError, match="Unsafe path"):
        safe_join(tmp_path, ".")


def test_snapshot_names_are_zero_padded() -> None:
    assert step_snapshot_name(3) == "step-03.png"
    assert element_snapshot_name(12) == "step-12-element.png"


def test_done_record_shapes() -> None:
    assert done_record(None) == {"status": "ok"}
    assert done_record("boom") == {"status": "error", "error": "boom"}


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (ParseError("bad json"), FailureKind.PARSE),
        (ValidationError("bad field"), FailureKind.VALIDATION),
        (NavigationTimeoutError("slow"), FailureKind.TIMEOUT),
        (ActionTimeoutError("slow click"), FailureKind.TIMEOUT),
        (NavigationError("net::ERR"), FailureKind.NAVIGATION),
        (ExtractionError("gone"), FailureKind.EXTRACTION),
        (EngineFailure("crashed"), FailureKind.ENGINE),
        (TimeoutError(), FailureKind.TIMEOUT),
        (RuntimeError("surprise"), FailureKind.INTERNAL),
    ],
)
def test_classify_failure(error: Exception, kind: FailureKind) -> None:
    assert classify_failure(error) is kind


def test_error_message_falls_back_to_class_name() -> None:
    assert error_message(RuntimeError()) == "RuntimeError"
    assert error_message(ValueError("nope")) == "nope"
