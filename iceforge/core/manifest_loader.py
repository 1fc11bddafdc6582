"""Thin TOML front end for the manifest resolver."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from iceforge.core.errors import ConfigError
from iceforge.core.resolver import resolve_manifest
from iceforge.models.project import Project

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST = "iceforge.toml"


def read_manifest(path: Path) -> dict[str, Any]:
    """Parse a manifest file into the raw mapping the resolver consumes.

    Raises
    ------
    ConfigError
        If the file is missing or is not valid TOML.
    """
    path = Path(path)
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        raise ConfigError(f"manifest '{path}' does not exist") from None
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"manifest '{path}' is not valid TOML: {exc}") from exc


def load_project(path: Path, *, check_paths: bool = True) -> Project:
    """Read and resolve the manifest at *path*; its directory is the project root."""
    path = Path(path).resolve()
    logger.debug("Loading manifest %s", path)
    return resolve_manifest(read_manifest(path), path.parent, check_paths=check_paths)
