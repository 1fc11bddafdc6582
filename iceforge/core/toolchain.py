"""Toolchain probe: is the compiler on PATH and does it accept the C standard?

Runs before a build when requested, so a misconfigured ``[build]`` section
is reported as a configuration problem instead of as a compile failure on
every translation unit.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

from iceforge.core.errors import ConfigError
from iceforge.core.executors import ProcessExecutor, SubprocessExecutor
from iceforge.models.project import Project

logger = logging.getLogger(__name__)


def probe_compiler(
    compiler: str,
    c_standard: str,
    executor: ProcessExecutor | None = None,
) -> list[str]:
    """Return the problems found with one compiler / standard pair."""
    if shutil.which(compiler) is None:
        return [f"build.compiler: '{compiler}' was not found on PATH"]

    executor = executor or SubprocessExecutor()
    with tempfile.TemporaryDirectory(prefix="iceforge-probe-") as tmp:
        workdir = Path(tmp)
        (workdir / "probe.c").write_text("int iceforge_probe;\n", encoding="utf-8")
        result = executor.execute(
            [compiler, f"-std={c_standard}", "-c", "probe.c", "-o", "probe.o"],
            workdir,
        )
    if not result.ok:
        logger.debug("Standard probe stderr: %s", result.stderr.strip())
        return [f"build.c_standard: '{compiler}' does not accept -std={c_standard}"]
    return []


def probe_toolchain(project: Project, executor: ProcessExecutor | None = None) -> None:
    """Probe every distinct compiler / standard pair the project uses.

    Raises
    ------
    ConfigError
        Listing every pair that failed.
    """
    pairs = {(project.settings.compiler, project.settings.c_standard)}
    pairs.update((s.compile.compiler, s.compile.c_standard) for s in project.subprojects)

    problems: list[str] = []
    for compiler, standard in sorted(pairs):
        problems.extend(probe_compiler(compiler, standard, executor))
    if problems:
        raise ConfigError(problems)
    logger.debug("Toolchain probe passed for %d compiler(s)", len(pairs))
