"""CLI entrypoint for web-watcher."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from web_watcher import __version__
from web_watcher.client import RenderJobFailed
from web_watcher.jobs.errors import EngineFailure
from web_watcher.jobs.models import JobOperation, WaitUntil
from web_watcher.orchestrator.controllers import (
    CleanCommand,
    SubmitCommand,
    WatchCommand,
    WatcherCliController,
)

click.rich_click.USE_MARKDOWN = True
WATCHER_CONTROLLER = WatcherCliController()

_ROOT_OPTION = click.option(
    "--root",
    "root_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding requests/ and responses/ (default: WEB_WATCHER_ROOT or cwd).",
)


@click.group()
@click.version_option(version=__version__, prog_name="web-watcher")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def web_watcher(log_level: str) -> None:
    """Filesystem-driven page render watcher."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@web_watcher.command("watch")
@_ROOT_OPTION
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Max jobs rendered at once (default: WEB_WATCHER_CONCURRENCY or 1).",
)
@click.option(
    "--headless/--headed",
    default=None,
    help="Override WEB_WATCHER_HEADLESS.",
)
def watch(root_dir: Path | None, concurrency: int | None, headless: bool | None) -> None:
    """Watch `requests/` and render every job into `responses/<id>/`."""

    try:
        lines = WATCHER_CONTROLLER.run_watch(
            WatchCommand(root_dir=root_dir, concurrency=concurrency, headless=headless),
        )
    except (EngineFailure, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@web_watcher.group()
def submit() -> None:
    """Submit a render job and wait for its completion marker."""


def _submit_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        _ROOT_OPTION,
        click.option("--id", "job_id", default=None, help="Job id (default: random UUID)."),
        click.option(
            "--timeout",
            "timeout_ms",
            type=click.IntRange(min=1),
            default=None,
            help="Navigation timeout in ms.",
        ),
        click.option(
            "--post-wait",
            "post_wait_ms",
            type=click.IntRange(min=0),
            default=None,
            help="Delay after load in ms (capped at 5 minutes).",
        ),
        click.option(
            "--wait-until",
            type=click.Choice([state.value for state in WaitUntil] + ["networkidle"]),
            default=None,
            help="Load completion policy.",
        ),
        click.option("--screenshot/--no-screenshot", default=None, help="Write screenshot.png."),
        click.option("--html/--no-html", "html_output", default=None, help="Write page.html."),
        click.option(
            "--actions",
            "actions_file",
            type=click.Path(dir_okay=False, exists=True, path_type=Path),
            default=None,
            help="JSON file with the action list.",
        ),
        click.option(
            "--extract",
            "extract_file",
            type=click.Path(dir_okay=False, exists=True, path_type=Path),
            default=None,
            help="JSON file with extraction specs.",
        ),
        click.option(
            "--headers",
            "headers_file",
            type=click.Path(dir_okay=False, exists=True, path_type=Path),
            default=None,
            help="JSON file with extra request headers.",
        ),
        click.option("--console", "capture_console", is_flag=True, help="Write console.log.json."),
        click.option("--network", "capture_network", is_flag=True, help="Write network.log.json."),
        click.option(
            "--steps",
            "screenshot_on_each_action",
            is_flag=True,
            help="Screenshot after every action.",
        ),
        click.option("--session", "session_id", default=None, help="Shared session id."),
        click.option("--ua", "user_agent", default=None, help="User-Agent override."),
        click.option("--viewport", default=None, help="Viewport as WxH or WxHxD."),
        click.option(
            "--client-timeout",
            "client_timeout_ms",
            type=click.IntRange(min=1),
            default=None,
            help="How long to wait for done.json in ms.",
        ),
        click.option(
            "--wait/--no-wait",
            default=True,
            show_default=True,
            help="Wait for the completion marker or only enqueue.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@submit.command("url")
@click.argument("url")
@_submit_options
def submit_url(url: str, **options: Any) -> None:
    """Render a URL."""

    _run_submit(JobOperation.RENDER_URL, url, options)


@submit.command("html")
@click.argument("html_file", type=click.Path(dir_okay=False, exists=True))
@_submit_options
def submit_html(html_file: str, **options: Any) -> None:
    """Render a local HTML file as inline content."""

    _run_submit(JobOperation.RENDER_HTML, html_file, options)


@web_watcher.command("clean")
@_ROOT_OPTION
def clean(root_dir: Path | None) -> None:
    """Empty `requests/` and `responses/`, keeping `.gitkeep` files."""

    _emit_lines(WATCHER_CONTROLLER.clean(CleanCommand(root_dir=root_dir)))


def _run_submit(op: JobOperation, target: str, options: dict[str, Any]) -> None:
    try:
        lines = WATCHER_CONTROLLER.submit(SubmitCommand(op=op, target=target, **options))
    except RenderJobFailed as error:
        raise click.ClickException(f"Job {error.job_id} failed: {error}") from error
    except TimeoutError as error:
        raise click.ClickException(str(error)) from error
    except ValueError as error:
        raise click.BadParameter(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    web_watcher()
