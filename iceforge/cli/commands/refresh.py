"""``iceforge refresh``: re-fetch every remote dependency."""

from __future__ import annotations

from pathlib import Path

import typer

from iceforge.cli.common import MANIFEST_OPTION_HELP, console, open_engine, report_error
from iceforge.core.errors import IceforgeError
from iceforge.core.manifest_loader import DEFAULT_MANIFEST
from iceforge.monitor.renderer import BuildRenderer


def refresh_cmd(
    parallel: int = typer.Option(None, "--parallel", "-j", min=1, help="Concurrent fetches."),
    manifest: Path = typer.Option(
        Path(DEFAULT_MANIFEST), "--manifest", "-m", help=MANIFEST_OPTION_HELP
    ),
) -> None:
    """Fetch every remote dependency again, ignoring recorded fingerprints.

    Dependency builds are invalidated too, so the next build recompiles them
    against the fresh checkouts.
    """
    engine = open_engine(manifest)
    renderer = BuildRenderer(console=console)
    try:
        report = engine.refresh(parallel, on_transition=renderer.on_transition)
    except IceforgeError as exc:
        raise report_error(exc) from exc

    renderer.print_report(report)
    if not report.ok:
        raise typer.Exit(code=report.exit_code)
