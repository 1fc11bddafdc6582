"""``iceforge build``: bring the project (or one subproject) up to date.

Resolves the manifest, builds the graph, runs every stale node on the
worker pool and prints a report. Exit status is 0 on success, 1 when any
node failed, 3 for manifest or graph errors and 130 when interrupted.
"""

from __future__ import annotations

from pathlib import Path

import typer

from iceforge.cli.common import MANIFEST_OPTION_HELP, console, open_engine, report_error
from iceforge.core.errors import EXIT_CANCELLED, IceforgeError
from iceforge.core.manifest_loader import DEFAULT_MANIFEST
from iceforge.models.project import BuildProfile
from iceforge.monitor.renderer import BuildRenderer


def build_cmd(
    release: bool = typer.Option(
        False,
        "--release/--debug",
        help="Build with release flags instead of debug flags.",
    ),
    subproject: str = typer.Option(
        None,
        "--subproject",
        "-s",
        help="Build only this subproject and what it needs.",
    ),
    parallel: int = typer.Option(
        None,
        "--parallel",
        "-j",
        min=1,
        help="Global job cap (default: manifest, then ICEFORGE_DEFAULT_PARALLEL_JOBS, then CPU count).",
    ),
    trigger: list[str] = typer.Option(
        [],
        "--trigger",
        "-t",
        help="Run this on-trigger custom build rule. Repeatable.",
    ),
    manifest: Path = typer.Option(
        Path(DEFAULT_MANIFEST),
        "--manifest",
        "-m",
        help=MANIFEST_OPTION_HELP,
    ),
    check_toolchain: bool = typer.Option(
        False,
        "--check-toolchain/--no-check-toolchain",
        help="Verify the compiler is on PATH and accepts the C standard first.",
    ),
) -> None:
    """Build the project."""
    engine = open_engine(manifest, check_toolchain=check_toolchain)
    renderer = BuildRenderer(console=console)
    profile = BuildProfile.RELEASE if release else BuildProfile.DEBUG

    try:
        report = engine.build(
            profile,
            parallel,
            subproject,
            triggers=trigger,
            on_transition=renderer.on_transition,
        )
    except IceforgeError as exc:
        raise report_error(exc) from exc
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_CANCELLED) from None

    renderer.print_report(report)
    if not report.ok:
        raise typer.Exit(code=report.exit_code)
