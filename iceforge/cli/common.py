"""Helpers shared by the CLI commands: project loading and error display."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from iceforge.config import settings
from iceforge.core.engine import BuildEngine
from iceforge.core.errors import ConfigError, IceforgeError, ResolutionError
from iceforge.core.manifest_loader import DEFAULT_MANIFEST, load_project
from iceforge.core.toolchain import probe_toolchain
from iceforge.models.project import Project

console = Console()
err_console = Console(stderr=True)

MANIFEST_OPTION_HELP = f"Path to the project manifest (default: ./{DEFAULT_MANIFEST})."


def configure_logging(level: str | None = None) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def report_error(exc: IceforgeError) -> typer.Exit:
    """Print *exc* and return the ``typer.Exit`` carrying its exit code."""
    if isinstance(exc, ConfigError):
        body = "\n".join(f"[red]-[/red] {v}" for v in exc.violations)
        title = "[bold red]Invalid manifest[/bold red]"
    elif isinstance(exc, ResolutionError):
        body = str(exc)
        if exc.cycle:
            body += "\n\n[bold]Cycle:[/bold] " + " [red]->[/red] ".join(exc.cycle)
        title = "[bold red]Cannot resolve build graph[/bold red]"
    else:
        body = str(exc)
        title = f"[bold red]{type(exc).__name__}[/bold red]"
    err_console.print(Panel(body, title=title, border_style="red"))
    return typer.Exit(code=exc.exit_code)


def open_engine(manifest: Path, *, check_toolchain: bool = False) -> BuildEngine:
    """Load *manifest* and wrap it in an engine, exiting on configuration errors."""
    try:
        project: Project = load_project(manifest)
        if check_toolchain:
            probe_toolchain(project)
    except IceforgeError as exc:
        raise report_error(exc) from exc
    return BuildEngine(project, settings=settings)
