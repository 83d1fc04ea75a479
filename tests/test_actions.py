from __future__ import annotations

import time
from datetime import UTC, datetime

import allure
import pytest

from tests.fakes import FakeElement, FakePage
from web_watcher.engine.actions import (
    ActionRunner,
    PaintTimeoutError,
    click_mute_heuristic,
    pick_mute_candidate,
    score_mute_candidate,
    wait_for_canvas_paint,
)
from web_watcher.engine.scripts import CANVAS_PAINT_CHECK
from web_watcher.jobs.contracts import WatcherLayout
from web_watcher.jobs.errors import ActionError, ActionTimeoutError
from web_watcher.jobs.models import (
    Click,
    ClickAt,
    Job,
    JobOperation,
    PressKey,
    ScreenshotElement,
    TypeText,
    WaitForSelector,
    WaitForTime,
)
from web_watcher.orchestrator.output import JobOutput, OutputWriter

pytestmark = [
    pytest.mark.asyncio,
    allure.epic("Job Execution"),
    allure.feature("Scripted Actions"),
]


async def _output(layout: WatcherLayout) -> JobOutput:
    job = Job(id="acts", op=JobOperation.RENDER_HTML, html="<p></p>")
    return await OutputWriter(layout.responses_dir).begin(job, datetime.now(UTC))


@pytest.mark.parametrize(
    ("text", "score"),
    [
        ("Sound", 2),
        ("No Sound", 5),
        ("Accept", -1),
        ("Hudba: vyp", 5),
        ("Play", 0),
        ("OK, mute audio", 4),
    ],
)
async def test_mute_candidate_scoring(text: str, score: int) -> None:
    assert score_mute_candidate(text) == score


async def test_pick_requires_threshold_and_prefers_first_best() -> None:
    assert pick_mute_candidate(["Sound", "Accept"]) is None
    assert pick_mute_candidate(["Start", "No Sound", "Sound off"]) == 1
    assert pick_mute_candidate([]) is None


async def test_mute_heuristic_clicks_only_the_marked_candidate() -> None:
    page = FakePage(clickable_texts=["Play", "Sound", "No Sound"])

    clicked = await click_mute_heuristic(page)

    assert clicked is True
    assert page.called("mark") == [("mark", 2, "data-ww-click")]
    assert page.called("click") == [("click", "[data-ww-click]")]
    assert page.called("unmark") == [("unmark", "data-ww-click")]
    assert page.calls.index(("click", "[data-ww-click]")) < page.calls.index(
        ("unmark", "data-ww-click"),
    )


async def test_mute_heuristic_is_a_no_op_without_candidate() -> None:
    page = FakePage(clickable_texts=["Accept", "Sound"])

    assert await click_mute_heuristic(page) is False
    assert page.called("click") == []
    assert page.called("mark") == []


async def test_canvas_paint_wait_returns_once_painted() -> None:
    page = FakePage(paint_results=[False, False, True])

    await wait_for_canvas_paint(page, timeout_ms=1000, interval_ms=1)

    assert page.paint_checks == 3


async def test_canvas_paint_wait_resolves_within_one_interval_of_painting() -> None:
    delay_s = 0.2
    interval_ms = 50

    class _DelayedPaintPage(FakePage):
        def __init__(self, painted_at: float) -> None:
            super().__init__()
            self.painted_at = painted_at

        async def evaluate(self, script: str, arg: object = None) -> object:
            if script == CANVAS_PAINT_CHECK:
                self.paint_checks += 1
                return time.monotonic() >= self.painted_at
            return await super().evaluate(script, arg)

    started = time.monotonic()
    page = _DelayedPaintPage(painted_at=started + delay_s)

    await wait_for_canvas_paint(page, timeout_ms=5000, interval_ms=interval_ms)
    elapsed = time.monotonic() - started

    assert elapsed >= delay_s
    assert elapsed <= delay_s + interval_ms / 1000 + 0.1
    assert page.paint_checks >= 2


async def test_canvas_paint_wait_times_out() -> None:
    page = FakePage(paint_results=[False] * 1000)

    with pytest.raises(PaintTimeoutError, match="waitForCanvasPaint timeout after 20ms"):
        await wait_for_canvas_paint(page, timeout_ms=20, interval_ms=5)

    assert page.paint_checks >= 2


async def test_runner_performs_steps_in_order(layout: WatcherLayout) -> None:
    page = FakePage(elements={"#go": [FakeElement()], "input": [FakeElement()]})
    runner = ActionRunner(page, await _output(layout))

    await runner.run(
        (
            WaitForSelector(selector="#go"),
            Click(selector="#go", timeout_ms=500),
            TypeText(selector="input", text="hello", delay_ms=5),
            PressKey(key="Enter"),
            ClickAt(x=10, y=20),
            WaitForTime(ms=1),
        ),
    )

    assert page.called("wait_for_selector")[0] == ("wait_for_selector", "#go", 30000, "attached")
    assert page.called("click") == [("click", "#go")]
    assert page.called("type") == [("type", "input", "hello", 5)]
    assert page.keyboard.pressed == [("Enter", 0)]
    assert page.mouse.clicks == [(10, 20)]


async def test_missing_selector_aborts_with_action_timeout(layout: WatcherLayout) -> None:
    page = FakePage()
    runner = ActionRunner(page, await _output(layout))

    with pytest.raises(ActionTimeoutError) as caught:
        await runner.run((PressKey(key="Tab"), Click(selector="#missing", timeout_ms=50)))

    assert caught.value.index == 2
    assert caught.value.action_type == "click"
    assert "action 2 (click)" in str(caught.value)
    assert isinstance(caught.value, ActionError)
    assert page.called("click") == []


async def test_element_screenshot_and_step_snapshots(layout: WatcherLayout) -> None:
    page = FakePage(elements={"canvas": [FakeElement()]})
    output = await _output(layout)
    runner = ActionRunner(page, output, snapshot_each_step=True)

    await runner.run(
        (
            ScreenshotElement(selector="canvas", file="canvas.png"),
            ScreenshotElement(selector="canvas"),
        ),
    )

    names = sorted(path.name for path in output.directory.iterdir())
    assert names == [
        "canvas.png",
        "meta.json",
        "step-01.png",
        "step-02-element.png",
        "step-02.png",
    ]


async def test_failed_step_snapshot_does_not_fail_the_job(layout: WatcherLayout) -> None:
    page = FakePage()
    page.screenshot_error = RuntimeError("target closed")
    runner = ActionRunner(page, await _output(layout), snapshot_each_step=True)

    await runner.run((WaitForTime(ms=0),))
