"""Reconciliation summary -- counts and a detail table for an apply pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from .apply import AppliedMode, AppliedOutcome

DETAIL_THRESHOLD = 20

MODE_STYLES = {
    AppliedMode.SYMLINKED: "green",
    AppliedMode.COPIED: "blue",
    AppliedMode.SKIPPED: "dim",
}


@dataclass
class SummaryRow:
    mode: AppliedMode
    path: str
    annotation: str


@dataclass
class ApplySummary:
    """Aggregated view of an apply pass.

    Attributes:
        counts: Entries per AppliedMode, only modes that occurred,
            in enum order.
        rows: One row per outcome, in apply order.
        total: Number of outcomes.
    """

    counts: dict[AppliedMode, int] = field(default_factory=dict)
    rows: list[SummaryRow] = field(default_factory=list)
    total: int = 0

    @property
    def show_details(self) -> bool:
        return self.total <= DETAIL_THRESHOLD


def _annotation(outcome: AppliedOutcome) -> str:
    if outcome.skip_reason:
        return f"({outcome.skip_reason})"
    if outcome.backup_created:
        return "(backed up)"
    return ""


def summarize(outcomes: Iterable[AppliedOutcome]) -> ApplySummary:
    """Group outcomes by mode and build the per-entry rows."""
    items = list(outcomes)
    tally = {mode: 0 for mode in AppliedMode}
    rows = []
    for outcome in items:
        tally[outcome.mode] += 1
        rows.append(SummaryRow(
            mode=outcome.mode,
            path=f"{outcome.target} -> {outcome.source}",
            annotation=_annotation(outcome),
        ))

    return ApplySummary(
        counts={mode: n for mode, n in tally.items() if n},
        rows=rows,
        total=len(items),
    )


def render_summary(summary: ApplySummary, console: Optional[Console] = None) -> None:
    """Print counts and, for short runs, the detail table."""
    out = console or Console()
    out.print("\n[bold]Application Summary[/]\n")

    for mode, count in summary.counts.items():
        style = MODE_STYLES[mode]
        out.print(f"[{style}]{mode.value.capitalize()}[/]: {count}")

    if not summary.rows or not summary.show_details:
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Mode")
    table.add_column("Path", style="cyan")
    table.add_column("Status", style="dim")

    for row in summary.rows:
        style = MODE_STYLES[row.mode]
        table.add_row(
            f"[{style}]{row.mode.value.capitalize()}[/]",
            row.path,
            row.annotation,
        )

    out.print()
    out.print(table)
