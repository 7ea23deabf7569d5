"""Command-line interface for glider."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

from glider.config import Config, load_config
from glider.errors import GliderError, RelayUnreachable
from glider.logging import get_logger, setup_logging
from glider.reporter import Reporter

log = get_logger("cli")

PageAction = Callable[[Any, Reporter], Awaitable[int]]


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="glider",
        description="Browser automation through a CDP relay and a tab-attached extension",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (can be repeated)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file path (default: ./glider.yaml)",
    )
    parser.add_argument("--host", help="Relay host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Relay port (default: 19988)")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Relay
    subparsers.add_parser("serve", help="Run the relay server in the foreground")
    subparsers.add_parser("status", help="Show relay, extension and tab status")
    subparsers.add_parser("targets", help="List attached tabs")
    subparsers.add_parser("attach", help="Ask the extension to attach the active tab")

    # Page commands
    goto_parser = subparsers.add_parser("goto", aliases=["navigate"], help="Navigate to a URL")
    goto_parser.add_argument("url")

    eval_parser = subparsers.add_parser("eval", aliases=["js"], help="Evaluate JavaScript")
    eval_parser.add_argument("expression")

    click_parser = subparsers.add_parser("click", help="Click the first element matching a selector")
    click_parser.add_argument("selector")

    type_parser = subparsers.add_parser("type", help="Type text into an element")
    type_parser.add_argument("selector")
    type_parser.add_argument("text")

    screenshot_parser = subparsers.add_parser("screenshot", help="Capture the viewport")
    screenshot_parser.add_argument("path", nargs="?", type=Path)

    subparsers.add_parser("text", help="Print the page's visible text")
    html_parser = subparsers.add_parser("html", help="Print the page HTML, or one element's outer HTML")
    html_parser.add_argument("selector", nargs="?")
    subparsers.add_parser("title", help="Print the page title")
    subparsers.add_parser("url", help="Print the page URL")

    # Tasks
    run_parser = subparsers.add_parser("run", help="Run a task file once")
    run_parser.add_argument("task", type=Path, help="Task file (YAML or JSON)")

    loop_parser = subparsers.add_parser(
        "loop",
        aliases=["ralph"],
        help="Run a task file repeatedly until it signals completion",
    )
    loop_parser.add_argument("task", type=Path, help="Task file (YAML or JSON)")
    loop_parser.add_argument(
        "-n", "--max-iterations",
        type=int,
        help="Maximum iterations (default: 10)",
    )
    loop_parser.add_argument(
        "-t", "--timeout",
        type=float,
        help="Maximum runtime in seconds (default: 3600)",
    )
    loop_parser.add_argument(
        "-m", "--marker",
        help="Completion marker (default: LOOP_COMPLETE)",
    )
    loop_parser.add_argument(
        "--state-file",
        type=Path,
        help="Where loop state is checkpointed",
    )

    return parser


_COMMAND_ALIASES = {"navigate": "goto", "js": "eval", "ralph": "loop"}


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> None:
    """Apply CLI flags on top of file and environment config."""
    if parsed.host:
        config.relay.host = parsed.host
    if parsed.port:
        config.relay.port = parsed.port
    if parsed.verbose:
        config.logging.verbose = min(4, parsed.verbose + 1)

    if getattr(parsed, "max_iterations", None) is not None:
        config.loop.max_iterations = parsed.max_iterations
    if getattr(parsed, "timeout", None) is not None:
        config.loop.max_runtime = parsed.timeout
    if getattr(parsed, "marker", None):
        config.loop.completion_marker = parsed.marker
    if getattr(parsed, "state_file", None) is not None:
        config.loop.state_file = parsed.state_file


def run_cli(args: Sequence[str], reporter: Reporter | None = None) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1
    command = _COMMAND_ALIASES.get(parsed.command, parsed.command)

    config = load_config(config_path=parsed.config)
    apply_cli_overrides(config, parsed)
    setup_logging(config.logging)

    reporter = reporter or Reporter()
    try:
        return asyncio.run(dispatch(command, parsed, config, reporter))
    except RelayUnreachable as e:
        reporter.fail(str(e))
        reporter.info("Start the relay with: glider serve")
        return 1
    except GliderError as e:
        reporter.fail(str(e))
        return 1
    except KeyboardInterrupt:
        reporter.warn("Interrupted")
        return 130


async def dispatch(
    command: str, parsed: argparse.Namespace, config: Config, reporter: Reporter
) -> int:
    match command:
        case "serve":
            from glider.relay.server import serve

            reporter.info(f"Relay listening on {config.relay.ws_url}")
            await serve(config.relay)
            return 0
        case "status":
            return await cmd_status(config, reporter)
        case "targets":
            return await cmd_targets(config, reporter)
        case "attach":
            return await cmd_attach(config, reporter)
        case "goto" | "eval" | "click" | "type" | "screenshot" | "text" | "html" | "title" | "url":
            return await with_page(config, reporter, _page_action(command, parsed))
        case "run":
            return await cmd_run(config, reporter, parsed.task)
        case "loop":
            return await cmd_loop(config, reporter, parsed.task)
        case _:
            reporter.fail(f"Unknown command: {command}")
            return 1


async def cmd_status(config: Config, reporter: Reporter) -> int:
    from glider.http_api import RelayAPI

    api = RelayAPI.from_config(config.relay)
    try:
        status = await api.status()
    except RelayUnreachable:
        reporter.fail(f"Relay: not running ({config.relay.http_url})")
        return 1

    reporter.ok(f"Relay: running ({config.relay.http_url})")
    if status.get("extension"):
        reporter.ok("Extension: connected")
    else:
        reporter.fail("Extension: not connected")
    reporter.info(f"Tabs: {status.get('targets', 0)}")
    reporter.info(f"Clients: {status.get('clients', 0)}")
    return 0


async def cmd_targets(config: Config, reporter: Reporter) -> int:
    from glider.http_api import RelayAPI

    targets = await RelayAPI.from_config(config.relay).targets()
    if not targets:
        reporter.warn("No tabs attached")
        return 0
    for target in targets:
        info = target.get("targetInfo") or {}
        reporter.result(f"{target.get('sessionId')}  {info.get('url', '')}  {info.get('title', '')}")
    return 0


async def cmd_attach(config: Config, reporter: Reporter) -> int:
    from glider.http_api import RelayAPI

    result = await RelayAPI.from_config(config.relay).attach()
    reporter.ok("Attach requested")
    reporter.result(json.dumps(result))
    return 0


async def with_page(config: Config, reporter: Reporter, action: PageAction) -> int:
    """Connect, adopt the attached tab, and run ``action`` against it."""
    from glider.client import RelayClient
    from glider.page import Page

    async with RelayClient.from_config(config.relay) as client:
        await client.init()
        return await action(Page(client), reporter)


def _page_action(command: str, parsed: argparse.Namespace) -> PageAction:
    async def action(page: Any, reporter: Reporter) -> int:
        match command:
            case "goto":
                await page.navigate(parsed.url)
                reporter.ok(f"Navigated: {parsed.url}")
            case "eval":
                value = await page.evaluate(parsed.expression)
                reporter.result(value if isinstance(value, str) else json.dumps(value))
            case "click":
                await page.click(parsed.selector)
                reporter.ok(f"Clicked: {parsed.selector}")
            case "type":
                await page.type(parsed.selector, parsed.text)
                reporter.ok(f"Typed into: {parsed.selector}")
            case "screenshot":
                from glider.tasks.interpreter import default_screenshot_path

                path = await page.screenshot(parsed.path or default_screenshot_path())
                reporter.ok(f"Screenshot saved: {path}")
            case "text":
                reporter.result(await page.text())
            case "html":
                reporter.result(await page.html(parsed.selector))
            case "title":
                reporter.result(await page.title())
            case "url":
                reporter.result(await page.url())
        return 0

    return action


async def cmd_run(config: Config, reporter: Reporter, task_path: Path) -> int:
    """Run a task once. Exit status 1 when any step failed."""
    from glider.tasks.interpreter import StepInterpreter
    from glider.tasks.model import TaskSource

    source = TaskSource(task_path)
    if not source.exists():
        reporter.fail(f"Task file not found: {task_path}")
        return 1
    task = source.load()

    async def action(page: Any, reporter: Reporter) -> int:
        reporter.info(f"Running: {task.display_name} ({len(task.steps)} steps)")
        result = await StepInterpreter(page, reporter).run(task)
        if result.succeeded:
            reporter.ok(f"Task completed: {task.display_name}")
            return 0
        failed = len(result.failed_steps)
        reporter.fail(f"Task failed: {failed} of {len(task.steps)} steps failed")
        return 1

    return await with_page(config, reporter, action)


async def cmd_loop(config: Config, reporter: Reporter, task_path: Path) -> int:
    """Run the autonomous loop.

    Exit status reflects startup only; the loop's outcome is in the printed
    summary and the state file.
    """
    from glider.loop import LoopController
    from glider.tasks.interpreter import StepInterpreter
    from glider.tasks.model import TaskSource

    source = TaskSource(task_path)
    if not source.exists():
        reporter.fail(f"Task file not found: {task_path}")
        return 1

    async def action(page: Any, reporter: Reporter) -> int:
        controller = LoopController(StepInterpreter(page, reporter), source, config.loop, reporter)
        state = await controller.run()
        reporter.info(f"State saved to {config.loop.state_file}")
        log.info("Loop finished with status %s", state.status.value)
        return 0

    return await with_page(config, reporter, action)
