"""Task definitions: a name plus an ordered list of steps.

Task file format (YAML or JSON)::

    name: Example
    steps:
      - goto: https://example.com
      - wait: 2
      - eval: document.title
      - click: "#submit"
      - type: ["#q", "hello"]
      - screenshot: /tmp/shot.png
      - assert: "document.title.length > 0"
      - log: done

Each step is a single-key mapping. Step names are resolved to the closed
``Operation`` set when the file is loaded, so unknown names fail early.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from glider.errors import TaskDefinitionError


class Operation(str, Enum):
    """Operations a task step can perform."""

    NAVIGATE = "navigate"
    WAIT = "wait"
    EVALUATE = "evaluate"
    CLICK = "click"
    TYPE = "type"
    SCREENSHOT = "screenshot"
    ASSERT = "assert"
    LOG = "log"
    TEXT = "text"

    @property
    def produces_output(self) -> bool:
        """Evaluate-style steps whose value feeds completion detection."""
        return self in (Operation.EVALUATE, Operation.TEXT)


ALIASES: dict[str, Operation] = {
    "goto": Operation.NAVIGATE,
    "sleep": Operation.WAIT,
    "eval": Operation.EVALUATE,
    "js": Operation.EVALUATE,
    "echo": Operation.LOG,
}


def resolve_operation(name: str) -> Operation:
    if name in ALIASES:
        return ALIASES[name]
    try:
        return Operation(name)
    except ValueError:
        raise TaskDefinitionError(f"Unknown step: {name}") from None


@dataclass(frozen=True)
class Step:
    """One operation and its argument."""

    operation: Operation
    argument: Any = None

    def describe(self, width: int = 60) -> str:
        arg = "" if self.argument is None else str(self.argument)
        if len(arg) > width:
            arg = arg[:width] + "..."
        return f"{self.operation.value}: {arg}" if arg else self.operation.value


@dataclass(frozen=True)
class TaskDefinition:
    """An immutable, validated task."""

    steps: tuple[Step, ...]
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or "Unnamed task"


def parse_step(raw: Any, index: int) -> Step:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise TaskDefinitionError(f"Step {index}: expected a single-key mapping, got {raw!r}")
    [(name, argument)] = raw.items()
    operation = resolve_operation(str(name))
    _validate_argument(operation, argument, index)
    if operation is Operation.TYPE:
        argument = (str(argument[0]), str(argument[1]))
    elif operation is Operation.WAIT:
        argument = float(argument)
    return Step(operation=operation, argument=argument)


def _validate_argument(operation: Operation, argument: Any, index: int) -> None:
    match operation:
        case Operation.WAIT:
            if isinstance(argument, bool) or not isinstance(argument, (int, float)) or argument < 0:
                raise TaskDefinitionError(f"Step {index}: wait needs a non-negative number of seconds")
        case Operation.TYPE:
            if not isinstance(argument, (list, tuple)) or len(argument) != 2:
                raise TaskDefinitionError(f"Step {index}: type needs [selector, text]")
        case Operation.NAVIGATE | Operation.EVALUATE | Operation.CLICK | Operation.ASSERT:
            if not isinstance(argument, str) or not argument:
                raise TaskDefinitionError(
                    f"Step {index}: {operation.value} needs a non-empty string"
                )
        case Operation.SCREENSHOT:
            if argument is not None and not isinstance(argument, str):
                raise TaskDefinitionError(f"Step {index}: screenshot needs a file path")
        case Operation.LOG | Operation.TEXT:
            pass


def parse_task(data: Any) -> TaskDefinition:
    """Build a TaskDefinition from parsed YAML/JSON data."""
    if not isinstance(data, dict):
        raise TaskDefinitionError("Task must be a mapping with a 'steps' list")
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list):
        raise TaskDefinitionError("No steps defined in task file")
    name = data.get("name")
    steps = tuple(parse_step(raw, i) for i, raw in enumerate(raw_steps, start=1))
    return TaskDefinition(steps=steps, name=str(name) if name is not None else None)


class TaskSource:
    """A task file, re-read on every load so external edits are visible."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __str__(self) -> str:
        return str(self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")

    def load(self) -> TaskDefinition:
        try:
            data = yaml.safe_load(self.read_text())
        except yaml.YAMLError as e:
            raise TaskDefinitionError(f"Invalid task file {self.path}: {e}") from e
        return parse_task(data)

    def contains(self, *markers: str) -> bool:
        """Whether the current file contents include any of ``markers``."""
        if not self.path.exists():
            return False
        text = self.read_text()
        return any(marker and marker in text for marker in markers)
