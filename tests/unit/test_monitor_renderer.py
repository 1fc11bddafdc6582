"""Unit tests for the BuildRenderer.

Covers state style mapping, plan tables, report panels and the progress
callback, rendered into an in-memory Rich console.
"""

from __future__ import annotations

import pytest
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from iceforge.core.engine import PlanEntry
from iceforge.models.graph import NodeKind, NodeStatus
from iceforge.models.reports import BuildReport, NodeFailure
from iceforge.monitor.renderer import _STATE_LABELS, _STATE_STYLES, BuildRenderer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _console() -> Console:
    return Console(record=True, width=160, force_terminal=False)


def _text(console: Console, renderable) -> str:
    console.print(renderable)
    return console.export_text()


def _failure() -> NodeFailure:
    return NodeFailure(
        node_id="compile:core:core/src/a.c",
        kind=NodeKind.COMPILE,
        error_type="CompileError",
        message="cc exited with status 1",
        command="cc -c core/src/a.c -o build/debug/obj/core/a.c.o",
        exit_code=1,
        stderr_tail="core/src/a.c:1: error: expected ';'",
    )


# ---------------------------------------------------------------------------
# Test: State mappings
# ---------------------------------------------------------------------------


class TestStateMappings:
    @pytest.mark.parametrize("status", list(NodeStatus))
    def test_every_status_is_styled(self, status):
        assert status in _STATE_STYLES
        assert status in _STATE_LABELS


# ---------------------------------------------------------------------------
# Test: Rendering
# ---------------------------------------------------------------------------


class TestBuildRenderer:
    def test_plan_table(self):
        entries = [
            PlanEntry(node_id="compile:x:x/a.c", kind=NodeKind.COMPILE, scope="x",
                      stale=True, reason="never built", command="cc -c x/a.c"),
            PlanEntry(node_id="link:x", kind=NodeKind.LINK, scope="x",
                      stale=False, reason="up to date", command="cc -o x"),
        ]
        console = _console()
        table = BuildRenderer(console).render_plan(entries, show_commands=True)
        assert isinstance(table, Table)
        text = _text(console, table)
        assert "1 of 2 node(s) would run" in text
        assert "never built" in text
        assert "cc -c x/a.c" in text

    def test_plan_without_commands(self):
        entries = [PlanEntry(node_id="n", kind=NodeKind.FETCH, scope="s", stale=False, reason="up to date")]
        table = BuildRenderer(_console()).render_plan(entries)
        assert len(table.columns) == 5

    @pytest.mark.parametrize(
        ("report", "title"),
        [
            (BuildReport(succeeded=["a"]), "Build succeeded"),
            (BuildReport(failed=["a"]), "Build failed"),
            (BuildReport(skipped=["a"], cancelled=True), "Build cancelled"),
        ],
    )
    def test_report_titles(self, report, title):
        console = _console()
        panel = BuildRenderer(console).render_report(report)
        assert isinstance(panel, Panel)
        assert title in _text(console, panel)

    def test_failure_panel_shows_command_and_stderr(self):
        console = _console()
        text = _text(console, BuildRenderer(console).render_failure(_failure()))
        assert "CompileError" in text
        assert "cc -c core/src/a.c" in text
        assert "expected ';'" in text

    def test_print_report_lists_failures_first(self):
        console = _console()
        report = BuildReport(
            failed=["compile:core:core/src/a.c"],
            skipped=["archive:core"],
            failures=[_failure()],
            skip_reasons={"archive:core": "predecessor compile:core:core/src/a.c failed"},
        )
        BuildRenderer(console).print_report(report)
        text = console.export_text()
        assert text.index("CompileError") < text.index("Build failed")
        assert "Skipped 1 node(s) downstream of failures." in text
        assert "archive:core: predecessor compile:core:core/src/a.c failed" in text

    def test_on_transition_prints_interesting_states(self):
        console = _console()
        renderer = BuildRenderer(console)
        renderer.on_transition("a", NodeStatus.RUNNING)
        renderer.on_transition("b", NodeStatus.UP_TO_DATE)
        renderer.on_transition("c", NodeStatus.FAILED)
        text = console.export_text()
        assert "RUN a" in text
        assert " b" not in text
        assert "FAILED c" in text
