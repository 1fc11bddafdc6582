"""``iceforge plan``: show the build graph in execution order without running it."""

from __future__ import annotations

from pathlib import Path

import typer

from iceforge.cli.common import MANIFEST_OPTION_HELP, console, open_engine, report_error
from iceforge.core.errors import IceforgeError
from iceforge.core.manifest_loader import DEFAULT_MANIFEST
from iceforge.models.project import BuildProfile
from iceforge.monitor.renderer import BuildRenderer


def plan_cmd(
    release: bool = typer.Option(False, "--release/--debug", help="Plan the release profile."),
    subproject: str = typer.Option(
        None, "--subproject", "-s", help="Restrict the plan to this subproject."
    ),
    trigger: list[str] = typer.Option(
        [], "--trigger", "-t", help="Treat this on-trigger rule as requested. Repeatable."
    ),
    commands: bool = typer.Option(False, "--commands", help="Show the resolved commands."),
    manifest: Path = typer.Option(
        Path(DEFAULT_MANIFEST), "--manifest", "-m", help=MANIFEST_OPTION_HELP
    ),
) -> None:
    """Print every build node in topological order with a staleness preview."""
    engine = open_engine(manifest)
    profile = BuildProfile.RELEASE if release else BuildProfile.DEBUG
    try:
        entries = engine.plan(profile, subproject, triggers=trigger)
    except IceforgeError as exc:
        raise report_error(exc) from exc

    console.print(BuildRenderer(console=console).render_plan(entries, show_commands=commands))
