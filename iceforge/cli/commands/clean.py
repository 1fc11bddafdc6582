"""``iceforge clean``: remove build outputs and forget their fingerprints."""

from __future__ import annotations

from pathlib import Path

import typer

from iceforge.cli.common import MANIFEST_OPTION_HELP, console, open_engine, report_error
from iceforge.core.errors import IceforgeError
from iceforge.core.manifest_loader import DEFAULT_MANIFEST


def clean_cmd(
    subproject: str = typer.Option(
        None, "--subproject", "-s", help="Clean only this subproject's outputs."
    ),
    manifest: Path = typer.Option(
        Path(DEFAULT_MANIFEST), "--manifest", "-m", help=MANIFEST_OPTION_HELP
    ),
) -> None:
    """Remove compiled objects, archives, binaries and custom-rule outputs."""
    engine = open_engine(manifest)
    try:
        removed = engine.clean(subproject)
    except IceforgeError as exc:
        raise report_error(exc) from exc

    target = f"subproject [cyan]{subproject}[/cyan]" if subproject else "project"
    console.print(f"[green]Cleaned {target}:[/green] removed {len(removed)} file(s).")
