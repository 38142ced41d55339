"""
review-pipeline — CLI output rendering.

File: src/review_pipeline/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for check reports and workflows.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

Functional requirements
- Plain-text rendering must always work; color is an optional ANSI decoration
  applied to status labels only.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from typing import Final

from review_pipeline.checks.models import CheckReport, CheckStatus
from review_pipeline.workflow.definition import WorkflowDefinition

_STATUS_COLORS: Final[dict[CheckStatus, str]] = {
    CheckStatus.PASS: "\033[32m",
    CheckStatus.FAIL: "\033[31m",
    CheckStatus.ERROR: "\033[33m",
}
_RESET: Final[str] = "\033[0m"


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin CLI output renderer producing deterministic plain text."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        print(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def status(self, status: CheckStatus) -> str:
        label = status.value.upper()
        if not self._color:
            return label
        return f"{_STATUS_COLORS[status]}{label}{_RESET}"

    def report(self, report: CheckReport) -> None:
        """Print one section per category followed by the overall status."""

        for group in report.results:
            label = f"[{self.status(group.status)}] {group.passed}/{group.total} passed"
            self.section(f"{group.category} {label}")
            for item in group.checks:
                line = f"{self.status(item.status):<5} {item.id}: {item.result.message}"
                self.text(f"  {line}")
                if item.status is not CheckStatus.PASS and item.result.help:
                    self.text(f"        help: {item.result.help}")
                if self.verbose and item.result.note:
                    self.text(f"        note: {item.result.note}")
        self.section(f"Overall: {self.status(report.status)}")

    def workflow(self, definition: WorkflowDefinition) -> None:
        self.kv("Workflow", f"{definition.name} (v{definition.version})")
        self.kv("Label", definition.label)
        self.kv("Initial state", definition.initial_state)
        self.table(
            ["STATE", "LABEL", "VISIBLE", "PUBLISHED", "TERMINAL"],
            [
                [
                    state.name,
                    state.label,
                    _yes_no(state.visible),
                    _yes_no(state.published),
                    _yes_no(definition.is_terminal(state.name)),
                ]
                for state in definition.states.values()
            ],
            title="States:",
        )
        self.table(
            ["TRIGGER", "FROM", "TO", "SCOPES", "CHECKS"],
            [
                [
                    item.name,
                    item.source,
                    item.target,
                    ",".join(item.required_scopes) or "-",
                    ",".join((*item.required_check_categories, *item.required_check_ids)) or "-",
                ]
                for item in definition.transitions
            ],
            title="Transitions:",
        )


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
