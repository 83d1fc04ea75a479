"""Domain models for render jobs, scripted actions, and extraction specs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_ACTION_TIMEOUT_MS = 30_000
DEFAULT_PAINT_TIMEOUT_MS = 60_000
DEFAULT_PAINT_INTERVAL_MS = 500
MAX_POST_WAIT_MS = 5 * 60_000


class JobOperation(str, Enum):
    """How the job's content reaches the rendering surface."""

    RENDER_URL = "render_url"
    RENDER_HTML = "render_html"


class WaitUntil(str, Enum):
    """Navigation-completion policies accepted on the wire."""

    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE0 = "networkidle0"
    NETWORKIDLE2 = "networkidle2"

    @property
    def load_state(self) -> str:
        """Playwright load state used for the navigation call itself."""

        if self is WaitUntil.NETWORKIDLE0:
            return "networkidle"
        if self is WaitUntil.NETWORKIDLE2:
            return "load"
        return self.value


@dataclass(slots=True, frozen=True)
class Viewport:
    width: int = 1280
    height: int = 800
    device_scale_factor: float = 1

    def to_wire(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "deviceScaleFactor": self.device_scale_factor,
        }


# -- actions ------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class WaitForSelector:
    selector: str
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    type: str = field(default="waitForSelector", init=False)


@dataclass(slots=True, frozen=True)
class Click:
    selector: str
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    type: str = field(default="click", init=False)


@dataclass(slots=True, frozen=True)
class Hover:
    selector: str
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    type: str = field(default="hover", init=False)


@dataclass(slots=True, frozen=True)
class TypeText:
    selector: str
    text: str
    delay_ms: float = 0
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    type: str = field(default="type", init=False)


@dataclass(slots=True, frozen=True)
class PressKey:
    key: str
    delay_ms: float = 0
    type: str = field(default="press", init=False)


@dataclass(slots=True, frozen=True)
class ClickAt:
    x: float
    y: float
    type: str = field(default="clickAt", init=False)


@dataclass(slots=True, frozen=True)
class WaitForTime:
    ms: float
    type: str = field(default="waitForTime", init=False)


@dataclass(slots=True, frozen=True)
class WaitForFunction:
    fn: str
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    type: str = field(default="waitForFunction", init=False)


@dataclass(slots=True, frozen=True)
class WaitForCanvasPaint:
    timeout_ms: int = DEFAULT_PAINT_TIMEOUT_MS
    interval_ms: int = DEFAULT_PAINT_INTERVAL_MS
    type: str = field(default="waitForCanvasPaint", init=False)


@dataclass(slots=True, frozen=True)
class MuteHeuristic:
    type: str = field(default="muteHeuristic", init=False)


@dataclass(slots=True, frozen=True)
class ScreenshotElement:
    selector: str
    file: str | None = None
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    type: str = field(default="screenshotElement", init=False)


Action = (
    WaitForSelector
    | Click
    | Hover
    | TypeText
    | PressKey
    | ClickAt
    | WaitForTime
    | WaitForFunction
    | WaitForCanvasPaint
    | MuteHeuristic
    | ScreenshotElement
)


# -- extraction specs ---------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExtractText:
    selector: str
    all: bool = False
    name: str | None = None
    type: str = field(default="text", init=False)


@dataclass(slots=True, frozen=True)
class ExtractAttr:
    selector: str
    attribute: str
    all: bool = False
    key: str | None = None
    type: str = field(default="attr", init=False)


@dataclass(slots=True, frozen=True)
class ExtractHtml:
    selector: str
    all: bool = False
    name: str | None = None
    type: str = field(default="html", init=False)


@dataclass(slots=True, frozen=True)
class ExtractExists:
    selector: str
    name: str | None = None
    type: str = field(default="exists", init=False)


ExtractionSpec = ExtractText | ExtractAttr | ExtractHtml | ExtractExists


# -- jobs ---------------------------------------------------------------------


@dataclass(slots=True)
class Job:
    """Normalized unit of work produced by the validator."""

    id: str
    op: JobOperation
    url: str | None = None
    html: str | None = None
    viewport: Viewport = field(default_factory=Viewport)
    wait_until: WaitUntil = WaitUntil.NETWORKIDLE2
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    user_agent: str | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    screenshot: bool = True
    html_output: bool = True
    full_page: bool = True
    post_wait_ms: int = 0
    actions: tuple[Action, ...] = ()
    extract: tuple[ExtractionSpec, ...] = ()
    session_id: str | None = None
    capture_console: bool = False
    capture_network: bool = False
    screenshot_on_each_action: bool = False

    def echo_config(self) -> dict[str, Any]:
        """Configuration echoed into the metadata artifact."""

        return {
            "url": self.url,
            "viewport": self.viewport.to_wire(),
            "fullPage": self.full_page,
            "waitUntil": self.wait_until.value,
            "sessionId": self.session_id,
        }


@dataclass(slots=True)
class JobResult:
    """Outcome of one job execution; failures are data, never exceptions."""

    job_id: str
    ok: bool
    started_at: datetime
    finished_at: datetime
    error_message: str | None = None
    error_kind: str | None = None

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


@dataclass(slots=True)
class JobDiagnostics:
    """Console and network events captured while a job's surface was open."""

    console_events: list[dict[str, Any]] = field(default_factory=list)
    network_events: list[dict[str, Any]] = field(default_factory=list)
