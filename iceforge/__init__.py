"""Iceforge: incremental, parallel build orchestration for multi-subproject C projects.

Resolves a project manifest (subprojects, remote / pkg-config / manual
dependencies, custom build rules, per-subproject overrides) into a build
graph, decides which nodes are stale from persisted content fingerprints,
and executes the stale ones on a bounded worker pool.
"""

__version__ = "0.1.0"
__description__ = "Incremental, parallel build orchestration for multi-subproject C projects"

from iceforge.core.engine import BuildEngine, build, clean, refresh
from iceforge.core.manifest_loader import load_project
from iceforge.core.resolver import resolve_manifest

__all__ = [
    "BuildEngine",
    "build",
    "clean",
    "load_project",
    "refresh",
    "resolve_manifest",
    "__version__",
]
