"""Declarative tasks and the interpreter that runs them."""

from glider.tasks.interpreter import StepInterpreter, StepOutcome, TaskResult
from glider.tasks.model import Operation, Step, TaskDefinition, TaskSource, parse_task

__all__ = [
    "Operation",
    "Step",
    "StepInterpreter",
    "StepOutcome",
    "TaskDefinition",
    "TaskResult",
    "TaskSource",
    "parse_task",
]
