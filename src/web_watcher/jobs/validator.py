"""Normalize untrusted job records into typed jobs."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from typing import Any
from uuid import uuid4

from web_watcher.jobs.contracts import RESERVED_ARTIFACTS
from web_watcher.jobs.errors import ValidationError
from web_watcher.jobs.models import (
    DEFAULT_ACTION_TIMEOUT_MS,
    DEFAULT_PAINT_INTERVAL_MS,
    DEFAULT_PAINT_TIMEOUT_MS,
    DEFAULT_TIMEOUT_MS,
    Action,
    Click,
    ClickAt,
    ExtractAttr,
    ExtractExists,
    ExtractHtml,
    ExtractionSpec,
    ExtractText,
    Hover,
    Job,
    JobOperation,
    MuteHeuristic,
    PressKey,
    ScreenshotElement,
    TypeText,
    Viewport,
    WaitForCanvasPaint,
    WaitForFunction,
    WaitForSelector,
    WaitForTime,
    WaitUntil,
)

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]{0,199}$")
_SNAPSHOT_NAME_RE = re.compile(r"^step-\d+(-element)?\.png$")
_WAIT_UNTIL_ALIASES = {"networkidle": WaitUntil.NETWORKIDLE0}


def normalize(raw: object) -> Job:
    """Validate a parsed job record and apply defaults.

    Raises:
        ValidationError: the record is not an object, names an unknown
            operation, lacks the operation's payload, or carries a
            malformed field, action, or extraction spec.
    """

    if not isinstance(raw, Mapping):
        raise ValidationError("job record must be a JSON object")

    job_id = _job_id(raw.get("id"))
    op_raw = raw.get("op")
    try:
        op = JobOperation(op_raw)
    except ValueError:
        raise ValidationError('op must be "render_url" or "render_html"') from None

    url = _optional_str(raw, "url")
    html = _optional_str(raw, "html")
    if op is JobOperation.RENDER_URL and not url:
        raise ValidationError("url is required for op=render_url")
    if op is JobOperation.RENDER_HTML and not html:
        raise ValidationError("html is required for op=render_html")

    session_raw = raw.get("sessionId")
    return Job(
        id=job_id,
        op=op,
        url=url,
        html=html,
        viewport=_viewport(raw.get("viewport")),
        wait_until=_wait_until(raw.get("waitUntil")),
        timeout_ms=_int_field(raw, "timeoutMs", DEFAULT_TIMEOUT_MS, minimum=0),
        user_agent=_optional_str(raw, "userAgent") or None,
        extra_headers=_headers(raw.get("extraHeaders")),
        screenshot=_flag(raw, "screenshot", default=True),
        html_output=_flag(raw, "htmlOutput", default=True),
        full_page=_flag(raw, "fullPage", default=True),
        post_wait_ms=_int_field(raw, "postWaitMs", 0, minimum=0),
        actions=tuple(
            _action(item, index) for index, item in enumerate(_list(raw, "actions"), start=1)
        ),
        extract=tuple(
            _extraction(item, index) for index, item in enumerate(_list(raw, "extract"), start=1)
        ),
        session_id=str(session_raw) if session_raw else None,
        capture_console=bool(raw.get("captureConsole")),
        capture_network=bool(raw.get("captureNetwork")),
        screenshot_on_each_action=bool(raw.get("screenshotOnEachAction")),
    )


def is_safe_job_id(value: object) -> bool:
    return isinstance(value, str) and bool(_SAFE_ID_RE.match(value))


def best_effort_job_id(raw: object) -> str:
    """Id used for synthetic error artifacts when a record cannot be normalized."""

    if isinstance(raw, Mapping):
        candidate = raw.get("id")
        if isinstance(candidate, int | float) and not isinstance(candidate, bool):
            candidate = str(candidate)
        if is_safe_job_id(candidate):
            return str(candidate)
    return str(uuid4())


def _job_id(value: object) -> str:
    if value is None or value == "":
        return str(uuid4())
    job_id = str(value)
    if not is_safe_job_id(job_id):
        raise ValidationError(
            f"id must match {_SAFE_ID_RE.pattern} (letters, digits, '.', '_', '-'): {job_id!r}",
        )
    return job_id


def _viewport(value: object) -> Viewport:
    if value is None:
        return Viewport()
    if not isinstance(value, Mapping):
        raise ValidationError("viewport must be an object")
    width = _int_field(value, "width", 1280, minimum=1, prefix="viewport.")
    height = _int_field(value, "height", 800, minimum=1, prefix="viewport.")
    scale = _number(value.get("deviceScaleFactor", 1), "viewport.deviceScaleFactor")
    if scale <= 0:
        raise ValidationError("viewport.deviceScaleFactor must be > 0")
    return Viewport(width=width, height=height, device_scale_factor=scale)


def _wait_until(value: object) -> WaitUntil:
    if value is None or value == "":
        return WaitUntil.NETWORKIDLE2
    if isinstance(value, str) and value in _WAIT_UNTIL_ALIASES:
        return _WAIT_UNTIL_ALIASES[value]
    try:
        return WaitUntil(value)
    except ValueError:
        allowed = ", ".join(item.value for item in WaitUntil)
        raise ValidationError(f"waitUntil must be one of: {allowed}") from None


def _headers(value: object) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("extraHeaders must be an object")
    return {str(name): str(header) for name, header in value.items()}


def _action(item: object, index: int) -> Action:  # noqa: PLR0911
    if not isinstance(item, Mapping):
        raise ValidationError(f"actions[{index}] must be an object")
    action_type = item.get("type")
    prefix = f"actions[{index}]."
    timeout_ms = _int_field(item, "timeoutMs", DEFAULT_ACTION_TIMEOUT_MS, minimum=0, prefix=prefix)

    def selector() -> str:
        return _required_str(item, "selector", prefix)

    if action_type == "waitForSelector":
        return WaitForSelector(selector=selector(), timeout_ms=timeout_ms)
    if action_type == "click":
        return Click(selector=selector(), timeout_ms=timeout_ms)
    if action_type == "hover":
        return Hover(selector=selector(), timeout_ms=timeout_ms)
    if action_type == "type":
        text = item.get("text")
        if not isinstance(text, str):
            raise ValidationError(f"{prefix}text must be a string")
        return TypeText(
            selector=selector(),
            text=text,
            delay_ms=_number(item.get("delay", 0), f"{prefix}delay"),
            timeout_ms=timeout_ms,
        )
    if action_type == "press":
        return PressKey(
            key=_required_str(item, "key", prefix),
            delay_ms=_number(item.get("delay", 0), f"{prefix}delay"),
        )
    if action_type == "clickAt":
        return ClickAt(
            x=_number(item.get("x"), f"{prefix}x"),
            y=_number(item.get("y"), f"{prefix}y"),
        )
    if action_type == "waitForTime":
        ms = _number(item.get("ms"), f"{prefix}ms")
        if ms < 0:
            raise ValidationError(f"{prefix}ms must be >= 0")
        return WaitForTime(ms=ms)
    if action_type == "waitForFunction":
        return WaitForFunction(fn=_required_str(item, "fn", prefix), timeout_ms=timeout_ms)
    if action_type == "waitForCanvasPaint":
        return WaitForCanvasPaint(
            timeout_ms=_int_field(
                item,
                "timeoutMs",
                DEFAULT_PAINT_TIMEOUT_MS,
                minimum=0,
                prefix=prefix,
            ),
            interval_ms=_int_field(
                item,
                "intervalMs",
                DEFAULT_PAINT_INTERVAL_MS,
                minimum=1,
                prefix=prefix,
            ),
        )
    if action_type == "muteHeuristic":
        return MuteHeuristic()
    if action_type == "screenshotElement":
        file_name = item.get("file")
        if file_name is not None and (
            not is_safe_job_id(file_name)
            or file_name in RESERVED_ARTIFACTS
            or _SNAPSHOT_NAME_RE.match(file_name)
        ):
            raise ValidationError(f"{prefix}file must be a plain, non-reserved file name")
        return ScreenshotElement(selector=selector(), file=file_name, timeout_ms=timeout_ms)
    raise ValidationError(f"{prefix}type {action_type!r} is not a supported action")


_EXTRACTORS: dict[str, Callable[[Mapping[str, Any], str], ExtractionSpec]] = {
    "text": lambda item, prefix: ExtractText(
        selector=_required_str(item, "selector", prefix),
        all=bool(item.get("all")),
        name=_optional_str(item, "name", prefix),
    ),
    "attr": lambda item, prefix: ExtractAttr(
        selector=_required_str(item, "selector", prefix),
        attribute=_required_str(item, "name", prefix),
        all=bool(item.get("all")),
        key=_optional_str(item, "key", prefix),
    ),
    "html": lambda item, prefix: ExtractHtml(
        selector=_required_str(item, "selector", prefix),
        all=bool(item.get("all")),
        name=_optional_str(item, "name", prefix),
    ),
    "exists": lambda item, prefix: ExtractExists(
        selector=_required_str(item, "selector", prefix),
        name=_optional_str(item, "name", prefix),
    ),
}


def _extraction(item: object, index: int) -> ExtractionSpec:
    if not isinstance(item, Mapping):
        raise ValidationError(f"extract[{index}] must be an object")
    prefix = f"extract[{index}]."
    builder = _EXTRACTORS.get(str(item.get("type")))
    if builder is None:
        raise ValidationError(f"{prefix}type {item.get('type')!r} is not a supported extraction")
    return builder(item, prefix)


def _list(raw: Mapping[str, Any], key: str) -> list[Any]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be an array")
    return value


def _flag(raw: Mapping[str, Any], key: str, *, default: bool) -> bool:
    value = raw.get(key)
    return default if value is None else bool(value)


def _required_str(raw: Mapping[str, Any], key: str, prefix: str = "") -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{prefix}{key} must be a non-empty string")
    return value


def _optional_str(raw: Mapping[str, Any], key: str, prefix: str = "") -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{prefix}{key} must be a string when provided")
    return value


def _number(value: object, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError(f"{label} must be a number")
    if not math.isfinite(value):
        raise ValidationError(f"{label} must be a finite number")
    return value


def _int_field(
    raw: Mapping[str, Any],
    key: str,
    default: int,
    *,
    minimum: int,
    prefix: str = "",
) -> int:
    value = raw.get(key)
    if value is None:
        return default
    number = int(_number(value, f"{prefix}{key}"))
    if number < minimum:
        raise ValidationError(f"{prefix}{key} must be >= {minimum}")
    return number
