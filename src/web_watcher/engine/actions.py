"""Scripted action sequence executed against a job's page, one step at a time."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import assert_never

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from web_watcher.engine.scripts import (
    CANVAS_PAINT_CHECK,
    COLLECT_CLICKABLE_TEXTS,
    MARK_CLICK_TARGET,
    UNMARK_CLICK_TARGET,
)
from web_watcher.jobs.contracts import element_snapshot_name, step_snapshot_name
from web_watcher.jobs.errors import ActionError, ActionTimeoutError
from web_watcher.jobs.models import (
    Action,
    Click,
    ClickAt,
    Hover,
    MuteHeuristic,
    PressKey,
    ScreenshotElement,
    TypeText,
    WaitForCanvasPaint,
    WaitForFunction,
    WaitForSelector,
    WaitForTime,
)
from web_watcher.orchestrator.output import JobOutput

logger = logging.getLogger(__name__)

PAINT_SAMPLE_SIZE = 64

MUTE_CANDIDATE_SELECTOR = 'button, [role="button"], a, .btn'
MUTE_CLICK_ATTRIBUTE = "data-ww-click"
MUTE_CLICK_THRESHOLD = 3

_SOUND_TERMS = re.compile(r"sound|audio|music|zvuk|zvuky|hudba")
_NEGATION_TERMS = re.compile(r"no|off|mute|disable|bez|vyp")
_ACCEPT_TERMS = re.compile(r"accept|ok|yes|ano")


class PaintTimeoutError(ActionTimeoutError):
    """No painted canvas appeared before the deadline."""


def score_mute_candidate(text: str) -> int:
    """Score a clickable element's text as a "turn sound off" control."""

    lowered = text.lower()
    score = 0
    if _SOUND_TERMS.search(lowered):
        score += 2
    if _NEGATION_TERMS.search(lowered):
        score += 3
    if _ACCEPT_TERMS.search(lowered):
        score -= 1
    return score


def pick_mute_candidate(texts: list[str]) -> int | None:
    """Index of the first highest-scoring text, if it reaches the click threshold."""

    best_index: int | None = None
    best_score = 0
    for index, text in enumerate(texts):
        score = score_mute_candidate(text)
        if score > best_score:
            best_index, best_score = index, score
    if best_index is None or best_score < MUTE_CLICK_THRESHOLD:
        return None
    return best_index


async def wait_for_canvas_paint(page: Page, *, timeout_ms: float, interval_ms: float) -> None:
    """Poll the first canvas until it looks painted or the deadline passes."""

    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        if await page.evaluate(CANVAS_PAINT_CHECK, PAINT_SAMPLE_SIZE):
            return
        if time.monotonic() > deadline:
            raise PaintTimeoutError(f"waitForCanvasPaint timeout after {timeout_ms:g}ms")
        await asyncio.sleep(interval_ms / 1000)


async def click_mute_heuristic(page: Page) -> bool:
    """Click the most likely "sound off" control; a no-op when nothing qualifies."""

    texts = await page.evaluate(COLLECT_CLICKABLE_TEXTS, MUTE_CANDIDATE_SELECTOR)
    index = pick_mute_candidate([str(text) for text in texts or []])
    if index is None:
        logger.debug("Mute heuristic found no qualifying element")
        return False
    marked = await page.evaluate(
        MARK_CLICK_TARGET,
        [MUTE_CANDIDATE_SELECTOR, index, MUTE_CLICK_ATTRIBUTE],
    )
    if not marked:
        logger.debug("Mute candidate %d vanished before it could be clicked", index)
        return False
    try:
        await page.click(f"[{MUTE_CLICK_ATTRIBUTE}]")
    finally:
        try:
            await page.evaluate(UNMARK_CLICK_TARGET, MUTE_CLICK_ATTRIBUTE)
        except PlaywrightError:
            logger.debug("Could not remove the mute click marker", exc_info=True)
    return True


class ActionRunner:
    """Runs a job's actions in order and aborts on the first failing step."""

    def __init__(self, page: Page, output: JobOutput, *, snapshot_each_step: bool = False) -> None:
        self.page = page
        self.output = output
        self.snapshot_each_step = snapshot_each_step

    async def run(self, actions: tuple[Action, ...]) -> None:
        for index, action in enumerate(actions, start=1):
            try:
                await self.perform(action, index)
            except ActionError:
                raise
            except PlaywrightTimeoutError as error:
                raise ActionTimeoutError(
                    f"action {index} ({action.type}) timed out: {error}",
                    index=index,
                    action_type=action.type,
                ) from error
            except (PlaywrightError, OSError) as error:
                raise ActionError(
                    f"action {index} ({action.type}) failed: {error}",
                    index=index,
                    action_type=action.type,
                ) from error
            if self.snapshot_each_step:
                await self._step_snapshot(index)

    async def perform(self, action: Action, index: int) -> None:  # noqa: C901
        page = self.page
        match action:
            case WaitForSelector(selector=selector, timeout_ms=timeout_ms):
                await page.wait_for_selector(selector, timeout=timeout_ms, state="attached")
            case Click(selector=selector, timeout_ms=timeout_ms):
                await page.wait_for_selector(selector, timeout=timeout_ms)
                await page.click(selector, timeout=timeout_ms)
            case Hover(selector=selector, timeout_ms=timeout_ms):
                await page.wait_for_selector(selector, timeout=timeout_ms)
                await page.hover(selector, timeout=timeout_ms)
            case TypeText(selector=selector, text=text, delay_ms=delay_ms, timeout_ms=timeout_ms):
                await page.wait_for_selector(selector, timeout=timeout_ms)
                await page.type(selector, text, delay=delay_ms, timeout=timeout_ms)
            case PressKey(key=key, delay_ms=delay_ms):
                await page.keyboard.press(key, delay=delay_ms)
            case ClickAt(x=x, y=y):
                await page.mouse.click(x, y)
            case WaitForTime(ms=ms):
                await asyncio.sleep(ms / 1000)
            case WaitForFunction(fn=fn, timeout_ms=timeout_ms):
                await page.wait_for_function(fn, timeout=timeout_ms)
            case WaitForCanvasPaint(timeout_ms=timeout_ms, interval_ms=interval_ms):
                await wait_for_canvas_paint(page, timeout_ms=timeout_ms, interval_ms=interval_ms)
            case MuteHeuristic():
                await click_mute_heuristic(page)
            case ScreenshotElement(selector=selector, file=file_name, timeout_ms=timeout_ms):
                handle = await page.wait_for_selector(selector, timeout=timeout_ms)
                if handle is not None:
                    image = await handle.screenshot()
                    await self.output.write_bytes(file_name or element_snapshot_name(index), image)
            case _:
                assert_never(action)

    async def _step_snapshot(self, index: int) -> None:
        try:
            image = await self.page.screenshot(full_page=True)
            await self.output.write_bytes(step_snapshot_name(index), image)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Step snapshot %d failed for %s",
                index,
                self.output.directory.name,
                exc_info=True,
            )
