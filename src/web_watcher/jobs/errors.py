"""Error taxonomy for job intake and execution, plus failure classification."""

from __future__ import annotations

import builtins
from enum import Enum


class WatcherError(Exception):
    """Base class for all watcher errors."""


class ParseError(WatcherError):
    """Raw job file is not a well-formed JSON document."""


class ValidationError(WatcherError, ValueError):
    """Parsed job record is incomplete or malformed."""


class ClaimRaceError(WatcherError):
    """Job file vanished or was already claimed before relocation."""


class NavigationError(WatcherError):
    """Content could not be loaded into the rendering surface."""


class WatcherTimeoutError(WatcherError, builtins.TimeoutError):
    """A load, wait, or poll deadline was exceeded."""


class NavigationTimeoutError(NavigationError, WatcherTimeoutError):
    """Navigation did not reach the requested completion state in time."""


class ActionError(WatcherError):
    """A scripted interaction step failed."""

    def __init__(self, message: str, *, index: int | None = None, action_type: str | None = None):
        super().__init__(message)
        self.index = index
        self.action_type = action_type


class ActionTimeoutError(ActionError, WatcherTimeoutError):
    """A scripted step timed out waiting for its target or condition."""


class ExtractionError(WatcherError):
    """An extraction spec could not be evaluated against final content."""


class EngineFailure(WatcherError):  # noqa: N818
    """The shared rendering engine became unusable; requires a restart."""


class FailureKind(str, Enum):
    """Stable failure kinds recorded as ``errorKind`` in job metadata."""

    PARSE = "parse"
    VALIDATION = "validation"
    NAVIGATION = "navigation"
    TIMEOUT = "timeout"
    ACTION = "action"
    EXTRACTION = "extraction"
    ENGINE = "engine"
    INTERNAL = "internal"


_CLASSIFICATION_ORDER: tuple[tuple[type[BaseException], FailureKind], ...] = (
    (EngineFailure, FailureKind.ENGINE),
    (ParseError, FailureKind.PARSE),
    (ValidationError, FailureKind.VALIDATION),
    (builtins.TimeoutError, FailureKind.TIMEOUT),
    (NavigationError, FailureKind.NAVIGATION),
    (ActionError, FailureKind.ACTION),
    (ExtractionError, FailureKind.EXTRACTION),
)


def classify_failure(error: BaseException) -> FailureKind:
    """Map an exception to its failure kind; timeouts win over their step kind."""

    for error_type, kind in _CLASSIFICATION_ORDER:
        if isinstance(error, error_type):
            return kind
    return FailureKind.INTERNAL


def error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
