"""``iceforge run``: build one binary subproject, then execute it.

The binary runs from the project root with any extra arguments given after
``--``. Its exit status becomes the command's exit status; a failed build
exits 1 without starting it.
"""

from __future__ import annotations

from pathlib import Path

import typer

from iceforge.cli.common import (
    MANIFEST_OPTION_HELP,
    console,
    err_console,
    open_engine,
    report_error,
)
from iceforge.core.errors import EXIT_CANCELLED, IceforgeError
from iceforge.core.manifest_loader import DEFAULT_MANIFEST
from iceforge.models.project import BuildProfile
from iceforge.monitor.renderer import BuildRenderer


def run_cmd(
    args: list[str] = typer.Argument(None, help="Arguments passed to the binary."),
    binary: str = typer.Option(
        None,
        "--binary",
        "-b",
        help="Binary subproject to run; required when there is more than one.",
    ),
    release: bool = typer.Option(
        False,
        "--release/--debug",
        help="Build and run the release binary.",
    ),
    parallel: int = typer.Option(None, "--parallel", "-j", min=1, help="Global job cap."),
    manifest: Path = typer.Option(
        Path(DEFAULT_MANIFEST), "--manifest", "-m", help=MANIFEST_OPTION_HELP
    ),
) -> None:
    """Build a binary and run it."""
    engine = open_engine(manifest)
    renderer = BuildRenderer(console=console)
    profile = BuildProfile.RELEASE if release else BuildProfile.DEBUG

    try:
        result = engine.run(
            binary,
            profile,
            parallel,
            args=args or (),
            on_transition=renderer.on_transition,
        )
    except IceforgeError as exc:
        raise report_error(exc) from exc
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_CANCELLED) from None

    if result.process is None:
        renderer.print_report(result.report)
        raise typer.Exit(code=result.exit_code)

    if result.process.stdout:
        console.print(result.process.stdout, end="", markup=False, highlight=False)
    if result.process.stderr:
        err_console.print(result.process.stderr, end="", markup=False, highlight=False)
    if result.exit_code != 0:
        console.print(f"[red]{result.binary} exited with status {result.exit_code}[/red]")
        raise typer.Exit(code=result.exit_code)
