"""Main Typer application: imports and registers all CLI commands.

Entry point: ``iceforge`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import typer

from iceforge import __version__
from iceforge.cli.commands.build import build_cmd
from iceforge.cli.commands.clean import clean_cmd
from iceforge.cli.commands.plan import plan_cmd
from iceforge.cli.commands.refresh import refresh_cmd
from iceforge.cli.commands.run import run_cmd
from iceforge.cli.common import configure_logging, console

app = typer.Typer(
    name="iceforge",
    help="Iceforge: incremental, parallel builds for multi-subproject C projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"iceforge {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (default: ICEFORGE_LOG_LEVEL or INFO).",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Iceforge: incremental, parallel builds for multi-subproject C projects."""
    configure_logging(log_level)


# Register subcommands
app.command(name="build", help="Build the project or one subproject.")(build_cmd)
app.command(name="run", help="Build a binary and run it.")(run_cmd)
app.command(name="plan", help="Show the build plan without running it.")(plan_cmd)
app.command(name="refresh", help="Re-fetch all remote dependencies.")(refresh_cmd)
app.command(name="clean", help="Remove build outputs.")(clean_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
