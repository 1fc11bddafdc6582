"""Pluggable collaborator backends: process execution, VCS fetch, package query.

Defines the ``ProcessExecutor``, ``VcsFetcher`` and ``PackageQuery``
Protocols the engine calls through, along with default implementations
backed by ``subprocess``, ``git`` and ``pkg-config``. Tests and embedders
substitute their own objects; anything with the right methods satisfies the
protocol.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from iceforge.core.errors import FetchError

logger = logging.getLogger(__name__)


class ProcessResult(BaseModel):
    """Outcome of one external command."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ProcessExecutor(Protocol):
    """Runs one argv command synchronously from the calling worker's view."""

    def execute(
        self,
        command: Sequence[str],
        workdir: Path,
        timeout: float | None = None,
    ) -> ProcessResult:
        ...


@runtime_checkable
class VcsFetcher(Protocol):
    """Ensures a local checkout of a remote source exists at a version.

    ``checkout_path`` is pure: it names where ``ensure_checkout`` will place
    the tree, so include paths can be computed before anything is fetched.
    """

    def checkout_path(self, source_url: str, version: str | None) -> Path:
        ...

    def ensure_checkout(self, source_url: str, version: str | None) -> Path:
        ...


@runtime_checkable
class PackageQuery(Protocol):
    """``pkg-config``-equivalent flag lookup. Raises ``FetchError`` on unknown packages."""

    def query(self, query: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
        ...


# ---------------------------------------------------------------------------
# Default implementations
# ---------------------------------------------------------------------------


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class SubprocessExecutor:
    """Runs commands with ``subprocess.run`` and captures their output."""

    def execute(
        self,
        command: Sequence[str],
        workdir: Path,
        timeout: float | None = None,
    ) -> ProcessResult:
        argv = list(command)
        logger.debug("exec [%s] %s", workdir, shlex.join(argv))
        try:
            completed = subprocess.run(
                argv,
                cwd=workdir,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return ProcessResult(
                exit_code=-1,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr) + f"\ncommand timed out after {timeout}s",
                timed_out=True,
            )
        except OSError as exc:
            # Missing binary or unreadable workdir; mirror the shell's 127.
            return ProcessResult(exit_code=127, stderr=str(exc))
        return ProcessResult(
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )


_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")


class GitFetcher:
    """Clones remote sources under *root* and checks out the requested version.

    Parameters
    ----------
    root:
        Directory holding all checkouts (``.iceforge/deps`` by default).
    executor:
        Process executor used to run ``git``.
    """

    def __init__(self, root: Path, executor: ProcessExecutor | None = None) -> None:
        self._root = Path(root)
        self._executor = executor or SubprocessExecutor()

    def checkout_path(self, source_url: str, version: str | None) -> Path:
        stem = source_url.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git") or "source"
        slug = _SLUG_RE.sub("_", stem)
        if version:
            slug = f"{slug}@{_SLUG_RE.sub('_', version)}"
        return self._root / slug

    def _git(self, args: list[str], workdir: Path, source_url: str) -> ProcessResult:
        result = self._executor.execute(["git", *args], workdir)
        if not result.ok:
            raise FetchError(
                f"git {args[0]} failed for {source_url} (exit {result.exit_code}): "
                f"{result.stderr.strip()}"
            )
        return result

    def ensure_checkout(self, source_url: str, version: str | None) -> Path:
        path = self.checkout_path(source_url, version)
        if not (path / ".git").exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            logger.info("Cloning %s into %s", source_url, path)
            self._git(["clone", source_url, str(path)], path.parent, source_url)
        else:
            self._git(["fetch", "--tags", "origin"], path, source_url)

        if version:
            self._git(["checkout", "--detach", version], path, source_url)
        else:
            self._git(["pull", "--ff-only"], path, source_url)
        return path


class PkgConfigQuery:
    """Queries ``pkg-config`` for compile and link flags."""

    def __init__(self, executor: ProcessExecutor | None = None, binary: str = "pkg-config") -> None:
        self._executor = executor or SubprocessExecutor()
        self._binary = binary

    def query(self, query: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
        packages = shlex.split(query)
        cwd = Path.cwd()
        cflags = self._executor.execute([self._binary, "--cflags", *packages], cwd)
        if not cflags.ok:
            raise FetchError(
                f"pkg-config does not know '{query}': {cflags.stderr.strip() or 'no output'}"
            )
        libs = self._executor.execute([self._binary, "--libs", *packages], cwd)
        if not libs.ok:
            raise FetchError(
                f"pkg-config --libs failed for '{query}': {libs.stderr.strip() or 'no output'}"
            )
        return tuple(shlex.split(cflags.stdout)), tuple(shlex.split(libs.stdout))
