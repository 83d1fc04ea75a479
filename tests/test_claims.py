from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from web_watcher.jobs.contracts import WatcherLayout, load_json
from web_watcher.jobs.errors import ClaimRaceError, ParseError
from web_watcher.orchestrator.claims import ClaimManager, parse_job_bytes
from web_watcher.orchestrator.output import OutputWriter

pytestmark = [
    pytest.mark.asyncio,
    allure.epic("Job Intake"),
    allure.feature("Inbox Claims"),
]


def _manager(layout: WatcherLayout, *, stability_ms: int = 0) -> ClaimManager:
    return ClaimManager(
        layout=layout,
        output_writer=OutputWriter(layout.responses_dir),
        stability_ms=stability_ms,
    )


def _drop(layout: WatcherLayout, name: str, payload: object) -> Path:
    path = layout.requests_dir / name
    text = payload if isinstance(payload, str) else json.dumps(payload)
    path.write_text(text, "utf-8")
    return path


async def test_valid_file_is_claimed_into_processing(layout: WatcherLayout) -> None:
    source = _drop(layout, "a.json", {"id": "j1", "op": "render_url", "url": "https://e.x"})
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert [item.job.id for item in claimed] == ["j1"]
    assert summary.claimed == 1
    assert not source.exists()
    assert claimed[0].claim_path == layout.claim_path("j1")
    assert claimed[0].claim_path.exists()

    manager.release(claimed[0])
    assert not layout.claim_path("j1").exists()


async def test_unparsable_file_gets_error_artifacts_and_is_removed(layout: WatcherLayout) -> None:
    source = _drop(layout, "broken.json", "{not json")
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert claimed == []
    assert summary.rejected == 1
    assert not source.exists()
    outputs = list(layout.responses_dir.iterdir())
    assert len(outputs) == 1
    meta = load_json(outputs[0] / "meta.json")
    assert meta["hadError"] is True
    assert meta["errorKind"] == "parse"
    assert meta["errorMessage"].startswith("Invalid job file")
    done = load_json(outputs[0] / "done.json")
    assert done["status"] == "error"
    assert list(layout.processing_dir.iterdir()) == []


async def test_invalid_record_reuses_its_id_for_error_artifacts(layout: WatcherLayout) -> None:
    _drop(layout, "bad.json", {"id": "bad-7", "op": "render_url"})
    manager = _manager(layout)

    await manager.poll_once()

    meta = load_json(layout.output_dir("bad-7") / "meta.json")
    assert meta["errorKind"] == "validation"
    assert meta["op"] == "render_url"
    assert load_json(layout.output_dir("bad-7") / "done.json") == {
        "status": "error",
        "error": "url is required for op=render_url",
    }


async def test_duplicate_delivery_yields_a_single_claim(layout: WatcherLayout) -> None:
    record = {"id": "dup", "op": "render_html", "html": "<p>x</p>"}
    _drop(layout, "first.json", record)
    _drop(layout, "second.json", record)
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert [item.job.id for item in claimed] == ["dup"]
    assert summary.races == 1
    assert list(layout.requests_dir.glob("*.json")) == []
    assert [path.name for path in layout.processing_dir.iterdir()] == ["dup.json"]


async def test_still_growing_file_is_not_touched(layout: WatcherLayout) -> None:
    source = _drop(layout, "slow.json", '{"id": "slow", "op": "render_url"')
    manager = _manager(layout, stability_ms=60_000)

    claimed, summary = await manager.poll_once()
    source.write_text('{"id": "slow", "op": "render_url", "url": "https://e.x"}', "utf-8")
    claimed_again, summary_again = await manager.poll_once()

    assert claimed == [] and claimed_again == []
    assert summary.waiting == 1 and summary_again.waiting == 1
    assert source.exists()
    assert list(layout.responses_dir.iterdir()) == []


async def test_hidden_and_non_json_files_are_ignored(layout: WatcherLayout) -> None:
    _drop(layout, ".a.json.tmp-123", "{}")
    _drop(layout, ".hidden.json", "{}")
    _drop(layout, "notes.txt", "hello")
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert claimed == []
    assert summary.rejected == 0
    assert list(layout.responses_dir.iterdir()) == []


async def test_vanished_file_is_a_lost_race(layout: WatcherLayout) -> None:
    manager = _manager(layout)

    with pytest.raises(ClaimRaceError):
        await manager.intake(layout.requests_dir / "gone.json")


async def test_orphaned_claims_are_returned_to_the_inbox(layout: WatcherLayout) -> None:
    record = json.dumps({"id": "orphan", "op": "render_url", "url": "https://e.x"})
    layout.claim_path("orphan").write_text(record, "utf-8")
    layout.claim_path("finished").write_text("{}", "utf-8")
    finished_dir = layout.output_dir("finished")
    finished_dir.mkdir(parents=True)
    (finished_dir / "done.json").write_text('{"status": "ok"}', "utf-8")
    manager = _manager(layout)

    recovered = manager.recover_orphaned_claims()

    assert recovered == 1
    assert layout.request_path("orphan").read_text("utf-8") == record
    assert list(layout.processing_dir.iterdir()) == []


async def test_parse_job_bytes_rejects_invalid_utf8() -> None:
    with pytest.raises(ParseError):
        parse_job_bytes(b"\xff\xfe{")


async def test_non_finite_numbers_are_rejected_without_stopping_the_pass(
    layout: WatcherLayout,
) -> None:
    template = '{"id": "%s", "op": "render_url", "url": "https://x", "timeoutMs": %s}'
    _drop(layout, "a-inf.json", template % ("inf", "1e999"))
    _drop(layout, "b-nan.json", template % ("nan", "NaN"))
    _drop(layout, "c-good.json", {"id": "good", "op": "render_url", "url": "https://e.x"})
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert [item.job.id for item in claimed] == ["good"]
    assert summary.rejected == 2
    assert list(layout.requests_dir.glob("*.json")) == []
    for job_id in ("inf", "nan"):
        meta = load_json(layout.output_dir(job_id) / "meta.json")
        assert meta["errorKind"] == "validation"
        assert "finite" in meta["errorMessage"]


async def test_unexpected_normalization_failure_is_rejected(
    layout: WatcherLayout,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _explode(_raw: object) -> None:
        raise RuntimeError("normalizer bug")

    monkeypatch.setattr("web_watcher.orchestrator.claims.normalize", _explode)
    source = _drop(layout, "odd.json", {"id": "odd", "op": "render_url", "url": "https://e.x"})
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert claimed == []
    assert summary.rejected == 1
    assert not source.exists()
    meta = load_json(layout.output_dir("odd") / "meta.json")
    assert meta["errorKind"] == "internal"
    assert meta["errorMessage"] == "normalizer bug"


async def test_failed_rename_leaves_the_file_for_a_later_poll(
    layout: WatcherLayout,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    source = _drop(layout, "a.json", {"id": "locked", "op": "render_url", "url": "https://e.x"})
    manager = _manager(layout)

    def _denied(_src: object, _dst: object) -> None:
        raise PermissionError("read-only processing dir")

    with monkeypatch.context() as patch:
        patch.setattr("web_watcher.orchestrator.claims.os.rename", _denied)
        claimed, summary = await manager.poll_once()

    assert claimed == []
    assert summary.deferred == 1
    assert source.exists()

    claimed_later, _ = await manager.poll_once()
    assert [item.job.id for item in claimed_later] == ["locked"]


async def test_invalid_record_never_overwrites_a_finished_job(layout: WatcherLayout) -> None:
    finished = layout.output_dir("job1")
    finished.mkdir(parents=True)
    (finished / "done.json").write_text('{"status": "ok"}', "utf-8")
    _drop(layout, "again.json", {"id": "job1", "op": "bogus"})
    manager = _manager(layout)

    _, summary = await manager.poll_once()

    assert summary.rejected == 1
    assert load_json(finished / "done.json") == {"status": "ok"}
    others = [path for path in layout.responses_dir.iterdir() if path.name != "job1"]
    assert len(others) == 1
    assert load_json(others[0] / "meta.json")["errorKind"] == "validation"
    assert load_json(others[0] / "done.json")["status"] == "error"


async def test_invalid_record_never_writes_into_an_in_flight_job(layout: WatcherLayout) -> None:
    layout.claim_path("busy").write_text("{}", "utf-8")
    _drop(layout, "busy-copy.json", {"id": "busy", "op": "render_url"})
    manager = _manager(layout)

    await manager.poll_once()

    assert not layout.output_dir("busy").exists()
    assert len(list(layout.responses_dir.iterdir())) == 1


async def test_redelivered_job_with_existing_output_is_dropped(layout: WatcherLayout) -> None:
    finished = layout.output_dir("dup")
    finished.mkdir(parents=True)
    (finished / "meta.json").write_text('{"id": "dup"}', "utf-8")
    (finished / "done.json").write_text('{"status": "ok"}', "utf-8")
    source = _drop(layout, "second.json", {"id": "dup", "op": "render_html", "html": "<p>x</p>"})
    manager = _manager(layout)

    claimed, summary = await manager.poll_once()

    assert claimed == []
    assert summary.races == 1
    assert not source.exists()
    assert list(layout.processing_dir.iterdir()) == []
    assert load_json(finished / "meta.json") == {"id": "dup"}


async def test_recovery_clears_partial_output_before_requeueing(layout: WatcherLayout) -> None:
    record = {"id": "half", "op": "render_url", "url": "https://e.x"}
    layout.claim_path("half").write_text(json.dumps(record), "utf-8")
    partial = layout.output_dir("half")
    partial.mkdir(parents=True)
    (partial / "meta.json").write_text('{"id": "half"}', "utf-8")
    manager = _manager(layout)

    assert manager.recover_orphaned_claims() == 1
    assert not partial.exists()

    claimed, _ = await manager.poll_once()
    assert [item.job.id for item in claimed] == ["half"]
