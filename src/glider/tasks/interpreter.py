"""Step interpreter: runs a task's steps in order against a page.

A failing step is recorded and the remaining steps still run, so later
diagnostic steps (asserts, screenshots, logs) report on the same pass.
Only a lost relay/extension connection aborts the pass.
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, assert_never

from glider.errors import GliderError, UpstreamUnavailable
from glider.page import Page
from glider.reporter import Reporter
from glider.tasks.model import Operation, Step, TaskDefinition

log = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def default_screenshot_path() -> Path:
    return Path(tempfile.gettempdir()) / f"glider-screenshot-{int(time.time() * 1000)}.png"


@dataclass
class StepOutcome:
    """Result of one step."""

    index: int
    step: Step
    ok: bool
    output: Any = None
    error: str | None = None


@dataclass
class TaskResult:
    """Result of one pass over a task."""

    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def has_output(self) -> bool:
        return any(o.ok and o.step.operation.produces_output for o in self.outcomes)

    @property
    def last_output(self) -> Any:
        """Value of the last successful evaluate-style step, or None."""
        for outcome in reversed(self.outcomes):
            if outcome.ok and outcome.step.operation.produces_output:
                return outcome.output
        return None


class StepInterpreter:
    """Executes task steps against a Page."""

    def __init__(
        self,
        page: Page,
        reporter: Reporter | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.page = page
        self.reporter = reporter or Reporter()
        self._sleep = sleep

    async def run(self, task: TaskDefinition) -> TaskResult:
        """Run every step of ``task``.

        Raises:
            UpstreamUnavailable: The relay or extension went away mid-pass.
        """
        result = TaskResult()
        total = len(task.steps)

        for index, step in enumerate(task.steps, start=1):
            self.reporter.step(f"[{index}/{total}] {step.describe()}")
            try:
                output = await self.execute(step)
            except UpstreamUnavailable:
                raise
            except (GliderError, OSError) as e:
                self.reporter.fail(f"Step failed: {e}")
                log.debug("Step %d (%s) failed: %s", index, step.operation.value, e)
                result.outcomes.append(StepOutcome(index, step, ok=False, error=str(e)))
            else:
                result.outcomes.append(StepOutcome(index, step, ok=True, output=output))

        return result

    async def execute(self, step: Step) -> Any:
        """Perform one step and return its output (None for side-effect steps)."""
        arg = step.argument
        match step.operation:
            case Operation.NAVIGATE:
                await self.page.navigate(arg)
                self.reporter.ok(f"Navigated: {arg}")
                return None
            case Operation.WAIT:
                await self._sleep(arg)
                self.reporter.ok(f"Waited {arg:g}s")
                return None
            case Operation.EVALUATE:
                value = await self.page.evaluate(arg)
                self.reporter.result(json.dumps(value, default=str))
                return value
            case Operation.CLICK:
                await self.page.click(arg)
                self.reporter.ok(f"Clicked: {arg}")
                return None
            case Operation.TYPE:
                selector, text = arg
                await self.page.type(selector, text)
                self.reporter.ok(f"Typed into: {selector}")
                return None
            case Operation.SCREENSHOT:
                path = await self.page.screenshot(Path(arg) if arg else default_screenshot_path())
                self.reporter.ok(f"Screenshot saved: {path}")
                return str(path)
            case Operation.ASSERT:
                await self.page.check(arg)
                self.reporter.ok("Assertion passed")
                return True
            case Operation.LOG:
                self.reporter.log(str(arg))
                return None
            case Operation.TEXT:
                text = await self.page.text()
                self.reporter.result(text)
                return text
            case _:
                assert_never(step.operation)
