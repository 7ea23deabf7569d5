"""Autonomous loop: run a task repeatedly until it signals completion.

Each iteration re-reads the task file and runs one full pass. The loop
ends when the completion marker shows up in the last evaluate-style
output or in the task file itself (the literal ``DONE`` also counts),
or when the iteration or wall-clock bound is reached. Bounds are
checked before an iteration starts, never preemptively.

Pass-level errors are recorded and followed by an exponential backoff of
``min(30, 2 ** error_count)`` seconds.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from glider.config import LoopConfig
from glider.reporter import Reporter
from glider.tasks.interpreter import StepInterpreter, TaskResult
from glider.tasks.model import TaskSource

log = logging.getLogger(__name__)

MAX_BACKOFF = 30.0
DONE_MARKER = "DONE"

Clock = Callable[[], float]
SleepFn = Callable[[float], Awaitable[None]]


class LoopStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    TIMEOUT = "timeout"
    ERROR = "error"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self is not LoopStatus.RUNNING


def backoff_delay(error_count: int) -> float:
    return min(MAX_BACKOFF, float(2**error_count))


def stringify_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


@dataclass
class LoopState:
    """Persisted record of one loop run."""

    iteration: int = 0
    start_time: float = field(default_factory=time.time)
    status: LoopStatus = LoopStatus.RUNNING
    last_output: Any = None
    outcomes: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome["success"])

    def record_pass(self, iteration: int, result: TaskResult) -> None:
        self.outcomes.append({"iteration": iteration, "success": result.succeeded})
        if result.has_output:
            self.last_output = result.last_output

    def record_error(self, iteration: int, error: BaseException) -> None:
        self.errors.append({"iteration": iteration, "error": str(error) or type(error).__name__})

    def finish(self, status: LoopStatus) -> None:
        """Move to a terminal status. The first terminal status sticks."""
        if not self.status.terminal:
            self.status = status

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "start_time": self.start_time,
            "status": self.status.value,
            "last_output": self.last_output,
            "outcomes": self.outcomes,
            "errors": self.errors,
        }

    def save(self, path: Path) -> None:
        """Rewrite ``path`` with the full state."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, default=str), encoding="utf-8")
        tmp.replace(path)

    @classmethod
    def load(cls, path: Path) -> LoopState:
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            iteration=data.get("iteration", 0),
            start_time=data.get("start_time", 0.0),
            status=LoopStatus(data.get("status", LoopStatus.RUNNING.value)),
            last_output=data.get("last_output"),
            outcomes=list(data.get("outcomes", [])),
            errors=list(data.get("errors", [])),
        )


class LoopController:
    """Drives repeated task passes and owns the loop state."""

    def __init__(
        self,
        interpreter: StepInterpreter,
        source: TaskSource,
        config: LoopConfig | None = None,
        reporter: Reporter | None = None,
        clock: Clock = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.interpreter = interpreter
        self.source = source
        self.config = config or LoopConfig()
        self.reporter = reporter or interpreter.reporter
        self._clock = clock
        self._sleep = sleep
        self.state = LoopState()
        self._started = 0.0

    @property
    def state_file(self) -> Path:
        return Path(self.config.state_file)

    def elapsed(self) -> float:
        return self._clock() - self._started

    async def run(self) -> LoopState:
        """Run until a terminal status and return the final state.

        The state is written to the state file on every checkpoint and
        once more on the way out, whatever the way out is.
        """
        cfg = self.config
        self.state = LoopState()
        self._started = self._clock()

        self.reporter.banner(
            "Autonomous loop",
            f"Task: {self.source}",
            f"Max iterations: {cfg.max_iterations}",
            f"Timeout: {cfg.max_runtime:g}s",
            f"Completion marker: {cfg.completion_marker}",
        )
        log.info("Loop started: %s", self.source)

        try:
            self.state.finish(await self._iterate())
        except (asyncio.CancelledError, KeyboardInterrupt):
            self.state.finish(LoopStatus.ABORTED)
            raise
        except Exception:
            self.state.finish(LoopStatus.ERROR)
            raise
        finally:
            self._checkpoint()
            self._summary()

        return self.state

    async def _iterate(self) -> LoopStatus:
        cfg = self.config
        state = self.state

        while True:
            if state.iteration >= cfg.max_iterations:
                self.reporter.warn(f"Max iterations reached ({cfg.max_iterations})")
                return LoopStatus.MAX_ITERATIONS
            if self.elapsed() >= cfg.max_runtime:
                self.reporter.warn(f"Timeout reached ({cfg.max_runtime:g}s)")
                return LoopStatus.TIMEOUT

            state.iteration += 1
            self.reporter.blank()
            self.reporter.iteration(state.iteration, cfg.max_iterations, self.elapsed())

            try:
                result = await self.interpreter.run(self.source.load())
            except Exception as e:
                state.record_error(state.iteration, e)
                delay = backoff_delay(state.error_count)
                self.reporter.fail(f"Iteration error: {e}")
                self.reporter.info(f"Backing off {delay:g}s...")
                log.warning("Iteration %d failed: %s", state.iteration, e)
                await self._sleep(delay)
            else:
                state.record_pass(state.iteration, result)
                if self._completed(result):
                    return LoopStatus.COMPLETED

            if state.iteration % cfg.checkpoint_interval == 0:
                self._checkpoint()

            if cfg.iteration_delay > 0:
                await self._sleep(cfg.iteration_delay)

    def _completed(self, result: TaskResult) -> bool:
        marker = self.config.completion_marker
        if result.has_output and marker in stringify_output(result.last_output):
            self.reporter.ok(f"Completion marker found in output: {marker}")
            return True
        if self.source.contains(marker, DONE_MARKER):
            self.reporter.ok("Completion marker found in task file")
            return True
        return False

    def _checkpoint(self) -> None:
        try:
            self.state.save(self.state_file)
        except OSError as e:
            self.reporter.warn(f"Could not save loop state to {self.state_file}: {e}")
            log.warning("State save failed: %s", e)
        else:
            log.debug("Loop state saved to %s (iteration %d)", self.state_file, self.state.iteration)

    def _summary(self) -> None:
        state = self.state
        self.reporter.blank()
        self.reporter.banner(
            "Loop finished",
            f"Status: {state.status.value}",
            f"Iterations: {state.iteration}",
            f"Successful: {state.success_count}",
            f"Errors: {state.error_count}",
            f"Runtime: {self.elapsed():.1f}s",
        )
