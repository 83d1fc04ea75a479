"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from web_watcher.config import Settings
from web_watcher.jobs.contracts import WatcherLayout


@pytest.fixture()
def layout(tmp_path: Path) -> WatcherLayout:
    watcher_layout = WatcherLayout(tmp_path)
    watcher_layout.ensure()
    return watcher_layout


@pytest.fixture()
def fast_settings(tmp_path: Path) -> Settings:
    settings = Settings(root_dir=tmp_path)
    settings.watcher.poll_interval_ms = 10
    settings.watcher.stability_ms = 0
    settings.watcher.stability_poll_ms = 10
    settings.watcher.drain_timeout_seconds = 5
    settings.client.poll_interval_ms = 10
    return settings
