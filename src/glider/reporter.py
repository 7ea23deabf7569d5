"""Console output for task runs, loops and CLI commands."""

from __future__ import annotations

import sys
from typing import Any

from rich.console import Console
from rich.markup import escape

RULE = "═" * 59
THIN_RULE = "─" * 58


class Reporter:
    """Status lines go to stderr; results scripts consume go to stdout."""

    def __init__(self, console: Console | None = None, out: Console | None = None) -> None:
        self.console = console or Console(stderr=True, highlight=False)
        self.out = out or Console(file=sys.stdout, highlight=False, soft_wrap=True)

    def ok(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {escape(message)}")

    def fail(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {escape(message)}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]→[/blue] {escape(message)}")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {escape(message)}")

    def step(self, message: str) -> None:
        self.console.print(f"[cyan]▸[/cyan] {escape(message)}")

    def log(self, message: str) -> None:
        self.console.print(f"[blue]\\[LOG][/blue] {escape(message)}")

    def result(self, value: Any) -> None:
        self.out.print(escape(value if isinstance(value, str) else str(value)))

    def banner(self, *lines: str) -> None:
        self.console.print(RULE)
        for line in lines:
            self.console.print(f"  {escape(line)}")
        self.console.print(RULE)

    def iteration(self, iteration: int, max_iterations: int, elapsed: float) -> None:
        self.console.print(THIN_RULE)
        self.console.print(f"  Iteration {iteration} / {max_iterations} ({elapsed:.1f}s elapsed)")
        self.console.print(THIN_RULE)

    def blank(self) -> None:
        self.console.print()
