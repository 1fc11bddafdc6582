"""Rich terminal renderer for build plans, progress and reports.

Color scheme
------------
- green     : SUCCEEDED
- red       : FAILED
- yellow    : RUNNING
- dim       : UP_TO_DATE / PENDING
- magenta   : SKIPPED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from iceforge.core.engine import PlanEntry
from iceforge.models.graph import NodeStatus
from iceforge.models.reports import BuildReport, NodeFailure

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[NodeStatus, str] = {
    NodeStatus.SUCCEEDED: "bold green",
    NodeStatus.FAILED: "bold red",
    NodeStatus.RUNNING: "bold yellow",
    NodeStatus.UP_TO_DATE: "dim",
    NodeStatus.PENDING: "dim",
    NodeStatus.SKIPPED: "bold magenta",
}

_STATE_LABELS: dict[NodeStatus, str] = {
    NodeStatus.SUCCEEDED: "[green]DONE[/green]",
    NodeStatus.FAILED: "[bold red]FAILED[/bold red]",
    NodeStatus.RUNNING: "[yellow]RUN[/yellow]",
    NodeStatus.UP_TO_DATE: "[dim]OK[/dim]",
    NodeStatus.PENDING: "[dim]PENDING[/dim]",
    NodeStatus.SKIPPED: "[magenta]SKIPPED[/magenta]",
}


class BuildRenderer:
    """Renders engine results as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def on_transition(self, node_id: str, status: NodeStatus) -> None:
        """Scheduler callback: one line per node that starts, fails or is skipped."""
        if status in (NodeStatus.RUNNING, NodeStatus.FAILED, NodeStatus.SKIPPED):
            self.console.print(f"{_STATE_LABELS[status]} {node_id}", highlight=False)

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def render_plan(self, entries: list[PlanEntry], *, show_commands: bool = False) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=5, justify="right")
        table.add_column("Node", min_width=25)
        table.add_column("Kind", min_width=10)
        table.add_column("Action", justify="center", min_width=8)
        table.add_column("Reason")
        if show_commands:
            table.add_column("Command", overflow="fold")

        for i, entry in enumerate(entries):
            action = "[yellow]run[/yellow]" if entry.stale else "[dim]skip[/dim]"
            row = [str(i), entry.node_id, entry.kind.value, action, entry.reason]
            if show_commands:
                row.append(entry.command or "[dim]-[/dim]")
            table.add_row(*row)

        stale = sum(1 for e in entries if e.stale)
        table.caption = f"{stale} of {len(entries)} node(s) would run"
        return table

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def render_report(self, report: BuildReport) -> Panel:
        summary = Table.grid(padding=(0, 2))
        summary.add_column(justify="right", style="bold")
        summary.add_column()
        summary.add_row("Executed", str(report.executed_count))
        summary.add_row("Succeeded", f"[green]{len(report.succeeded)}[/green]")
        summary.add_row("Up to date", f"[dim]{len(report.up_to_date)}[/dim]")
        summary.add_row("Failed", f"[red]{len(report.failed)}[/red]" if report.failed else "0")
        summary.add_row(
            "Skipped", f"[magenta]{len(report.skipped)}[/magenta]" if report.skipped else "0"
        )
        summary.add_row("Duration", f"{report.duration_seconds:.2f}s")

        if report.cancelled:
            title, border = "[bold yellow]Build cancelled[/bold yellow]", "yellow"
        elif report.ok:
            title, border = "[bold green]Build succeeded[/bold green]", "green"
        else:
            title, border = "[bold red]Build failed[/bold red]", "red"
        return Panel(summary, title=title, border_style=border, padding=(1, 2))

    def render_failure(self, failure: NodeFailure) -> Panel:
        parts: list = [Text.from_markup(f"[bold]{failure.error_type}:[/bold] {failure.message}")]
        if failure.command:
            parts.append(Text(""))
            parts.append(Syntax(failure.command, "bash", word_wrap=True))
        if failure.stderr_tail:
            parts.append(Text(""))
            parts.append(Text(failure.stderr_tail, style="red"))
        return Panel(
            Group(*parts),
            title=f"[bold red]{failure.node_id}[/bold red]",
            border_style="red",
        )

    def print_report(self, report: BuildReport) -> None:
        for failure in report.failures:
            self.console.print(self.render_failure(failure))
        if report.skipped and not report.cancelled:
            self.console.print(
                f"[magenta]Skipped {len(report.skipped)} node(s) downstream of failures.[/magenta]"
            )
            for node_id in report.skipped:
                reason = report.skip_reasons.get(node_id, "skipped")
                self.console.print(Text(f"  {node_id}: {reason}", style="dim"))
        self.console.print(self.render_report(report))
