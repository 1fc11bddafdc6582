"""Iceforge CLI: Typer-based command-line interface.

Provides the ``iceforge`` command with subcommands for building, previewing
the build plan, refreshing remote dependencies and cleaning outputs.

All output uses Rich for formatted terminal display.
"""
