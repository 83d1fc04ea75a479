"""Runtime configuration for the watcher, its engine, and its clients."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BROWSER_ARGS: tuple[str, ...] = (
    "--use-gl=swiftshader",
    "--enable-webgl",
    "--ignore-gpu-blocklist",
    "--no-sandbox",
)


@dataclass(slots=True)
class WatcherSettings:
    """Inbox polling, concurrency, and shutdown settings."""

    concurrency: int = 1
    poll_interval_ms: int = 200
    stability_ms: int = 200
    stability_poll_ms: int = 50
    drain_timeout_seconds: float = 30.0


@dataclass(slots=True)
class BrowserSettings:
    """Shared rendering engine launch settings."""

    headless: bool = True
    args: tuple[str, ...] = DEFAULT_BROWSER_ARGS


@dataclass(slots=True)
class ClientSettings:
    """Submit-and-wait client settings."""

    poll_interval_ms: int = 300
    min_wait_seconds: float = 60.0
    grace_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    root_dir: Path = Path(".")
    watcher: WatcherSettings = field(default_factory=WatcherSettings)
    browser: BrowserSettings = field(default_factory=BrowserSettings)
    client: ClientSettings = field(default_factory=ClientSettings)

    @classmethod
    def from_env(cls, root_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        browser_args_raw = os.getenv("WEB_WATCHER_BROWSER_ARGS")
        return cls(
            root_dir=root_dir or Path(os.getenv("WEB_WATCHER_ROOT", ".")),
            watcher=WatcherSettings(
                concurrency=int(
                    os.getenv("WEB_WATCHER_CONCURRENCY", os.getenv("CONCURRENCY", "1")),
                ),
                poll_interval_ms=int(os.getenv("WEB_WATCHER_POLL_INTERVAL_MS", "200")),
                stability_ms=int(os.getenv("WEB_WATCHER_STABILITY_MS", "200")),
                stability_poll_ms=int(os.getenv("WEB_WATCHER_STABILITY_POLL_MS", "50")),
                drain_timeout_seconds=float(
                    os.getenv("WEB_WATCHER_DRAIN_TIMEOUT_SECONDS", "30"),
                ),
            ),
            browser=BrowserSettings(
                headless=_env_bool("WEB_WATCHER_HEADLESS", default=True),
                args=(
                    tuple(shlex.split(browser_args_raw))
                    if browser_args_raw is not None
                    else DEFAULT_BROWSER_ARGS
                ),
            ),
            client=ClientSettings(
                poll_interval_ms=int(os.getenv("WEB_WATCHER_CLIENT_POLL_INTERVAL_MS", "300")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the watcher cannot run with."""

        if self.watcher.concurrency < 1:
            raise ValueError("WEB_WATCHER_CONCURRENCY must be >= 1.")
        if self.watcher.poll_interval_ms <= 0:
            raise ValueError("WEB_WATCHER_POLL_INTERVAL_MS must be > 0.")
        if self.watcher.stability_ms < 0:
            raise ValueError("WEB_WATCHER_STABILITY_MS must be >= 0.")
        if self.watcher.stability_poll_ms <= 0:
            raise ValueError("WEB_WATCHER_STABILITY_POLL_MS must be > 0.")
        if self.watcher.drain_timeout_seconds < 0:
            raise ValueError("WEB_WATCHER_DRAIN_TIMEOUT_SECONDS must be >= 0.")
        if self.client.poll_interval_ms <= 0:
            raise ValueError("WEB_WATCHER_CLIENT_POLL_INTERVAL_MS must be > 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
