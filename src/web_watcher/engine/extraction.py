"""Declarative extraction of values from a page's final state."""

from __future__ import annotations

from typing import Any, assert_never

from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError

from web_watcher.engine.scripts import OUTER_HTML
from web_watcher.jobs.errors import ExtractionError
from web_watcher.jobs.models import (
    ExtractAttr,
    ExtractExists,
    ExtractHtml,
    ExtractionSpec,
    ExtractText,
)

ExtractedValue = str | list[str | None] | bool | None


async def run_extractions(page: Page, specs: tuple[ExtractionSpec, ...]) -> list[dict[str, Any]]:
    """Evaluate specs in order; unmatched single-element specs yield ``None``."""

    results: list[dict[str, Any]] = []
    for index, spec in enumerate(specs, start=1):
        try:
            results.append(await extract_one(page, spec))
        except PlaywrightError as error:
            raise ExtractionError(
                f"extract {index} ({spec.type} {spec.selector!r}) failed: {error}",
            ) from error
    return results


async def extract_one(page: Page, spec: ExtractionSpec) -> dict[str, Any]:
    match spec:
        case ExtractText(selector=selector, all=all_matches, name=name):
            value = await _per_element(page, selector, all_matches, _text_of)
            return {"type": spec.type, "name": name, "selector": selector, "value": value}
        case ExtractAttr(selector=selector, attribute=attribute, all=all_matches, key=key):

            async def _attribute(handle: ElementHandle) -> str | None:
                return await handle.get_attribute(attribute)

            value = await _per_element(page, selector, all_matches, _attribute)
            return {
                "type": spec.type,
                "key": key or attribute,
                "selector": selector,
                "value": value,
            }
        case ExtractHtml(selector=selector, all=all_matches, name=name):
            value = await _per_element(page, selector, all_matches, _outer_html_of)
            return {"type": spec.type, "name": name, "selector": selector, "value": value}
        case ExtractExists(selector=selector, name=name):
            exists = await page.query_selector(selector) is not None
            return {"type": spec.type, "name": name, "selector": selector, "value": exists}
        case _:
            assert_never(spec)


async def _per_element(page: Page, selector: str, all_matches: bool, read) -> ExtractedValue:
    if all_matches:
        return [await read(handle) for handle in await page.query_selector_all(selector)]
    handle = await page.query_selector(selector)
    if handle is None:
        return None
    return await read(handle)


async def _text_of(handle: ElementHandle) -> str:
    return (await handle.text_content() or "").strip()


async def _outer_html_of(handle: ElementHandle) -> str:
    return await handle.evaluate(OUTER_HTML)
