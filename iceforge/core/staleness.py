"""Staleness engine: fingerprints nodes and decides whether they must run.

A node's fingerprint is the SHA-256 of canonical JSON covering its id and
kind, the content digest of every input, the resolved command and working
directory, the declared outputs, and the fingerprints of its direct
predecessors. Feeding predecessor fingerprints forward means a change
anywhere upstream propagates to every dependent without the engine having to
walk the graph itself.

Dependency units that publish include directories also digest the headers
found there, so new upstream headers pulled in by a refresh recompile every
dependent.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from iceforge.core.fingerprint_store import FingerprintStore
from iceforge.core.hasher import compute_fingerprint, file_digest
from iceforge.models.graph import BuildUnit, NodeKind
from iceforge.models.manifest import RebuildRule

logger = logging.getLogger(__name__)

MISSING_DIGEST = "missing"


class Verdict(BaseModel):
    """Staleness decision for one node."""

    model_config = ConfigDict(frozen=True)

    stale: bool
    reason: str
    fingerprint: str


class StalenessEngine:
    """Computes fingerprints and staleness verdicts for one invocation.

    Parameters
    ----------
    root:
        Project root; relative inputs and outputs resolve against it.
    store:
        Persisted fingerprints from earlier runs.
    triggers:
        Names of ``on-trigger`` custom rules the caller asked to run.
    forced:
        Node ids that are stale regardless of their fingerprint.
    header_extensions:
        Suffixes counted as headers when a dependency's include
        directories are digested.
    """

    def __init__(
        self,
        root: Path,
        store: FingerprintStore,
        *,
        triggers: Iterable[str] = (),
        forced: Iterable[str] = (),
        header_extensions: Iterable[str] = (".h",),
    ) -> None:
        self._root = Path(root)
        self._store = store
        self._triggers = frozenset(triggers)
        self._forced = frozenset(forced)
        self._header_suffixes = frozenset(
            e if e.startswith(".") else f".{e}" for e in header_extensions
        )
        self._digests: dict[Path, tuple[int, int, str]] = {}
        self._lock = threading.Lock()

    def _absolute(self, path: Path) -> Path:
        return path if path.is_absolute() else self._root / path

    # ------------------------------------------------------------------
    # Content digests
    # ------------------------------------------------------------------

    def input_digest(self, path: Path) -> str:
        """SHA-256 of *path*, cached by ``(mtime_ns, size)`` for this run."""
        absolute = self._absolute(Path(path))
        try:
            stat = absolute.stat()
        except OSError:
            return MISSING_DIGEST
        with self._lock:
            cached = self._digests.get(absolute)
        if cached is not None and cached[:2] == (stat.st_mtime_ns, stat.st_size):
            return cached[2]
        try:
            digest = file_digest(absolute)
        except OSError:
            return MISSING_DIGEST
        with self._lock:
            self._digests[absolute] = (stat.st_mtime_ns, stat.st_size, digest)
        return digest

    def header_digests(self, directories: Iterable[Path]) -> dict[str, str]:
        """Content digest of every header under *directories*, read now.

        Dependency checkouts may not exist when the graph is built, so their
        headers are digested when the unit that owns them is fingerprinted.
        """
        digests: dict[str, str] = {}
        for directory in directories:
            base = self._absolute(Path(directory))
            if not base.is_dir():
                continue
            for path in sorted(base.rglob("*")):
                if path.is_file() and path.suffix in self._header_suffixes:
                    key = f"{Path(directory).as_posix()}/{path.relative_to(base).as_posix()}"
                    digests[key] = self.input_digest(path)
        return digests

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def fingerprint(self, unit: BuildUnit, predecessors: Mapping[str, str]) -> str:
        """Fingerprint *unit* given the fingerprints of its predecessors."""
        payload: dict[str, Any] = {
            "kind": unit.kind.value,
            "outputs": [p.as_posix() for p in unit.outputs],
            "predecessors": {p: predecessors.get(p, "") for p in unit.predecessors},
        }
        if unit.kind == NodeKind.FETCH and unit.fetch is not None:
            # Only the requested revision decides whether to fetch again.
            payload["fetch"] = {"source": unit.fetch.source, "version": unit.fetch.version}
        else:
            payload["inputs"] = {p.as_posix(): self.input_digest(p) for p in unit.inputs}
        if unit.command is not None:
            payload["command"] = {
                "steps": [list(step) for step in unit.command.steps],
                "workdir": unit.command.workdir.as_posix(),
            }
        if unit.kind == NodeKind.FLAG_ONLY:
            payload["flags"] = {
                "cflags": list(unit.cflags),
                "ldflags": list(unit.ldflags),
                "include_dirs": [d.as_posix() for d in unit.include_dirs],
                "error": unit.error,
            }
        if unit.kind in (NodeKind.FLAG_ONLY, NodeKind.DEPENDENCY_BUILD) and unit.include_dirs:
            payload["headers"] = self.header_digests(unit.include_dirs)
        return compute_fingerprint(unit.node_id, payload)

    # ------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------

    def assess(self, unit: BuildUnit, fingerprint: str) -> Verdict:
        """Decide whether *unit* must run."""
        if unit.node_id in self._forced:
            return Verdict(stale=True, reason="forced", fingerprint=fingerprint)

        if unit.kind == NodeKind.CUSTOM_RULE:
            if unit.rebuild_rule == RebuildRule.ALWAYS:
                return Verdict(stale=True, reason="rebuild rule is 'always'", fingerprint=fingerprint)
            if unit.rebuild_rule == RebuildRule.ON_TRIGGER:
                if unit.rule_name in self._triggers:
                    return Verdict(stale=True, reason="triggered", fingerprint=fingerprint)
                return Verdict(stale=False, reason="not triggered", fingerprint=fingerprint)

        record = self._store.get(unit.node_id)
        if record is None:
            return Verdict(stale=True, reason="never built", fingerprint=fingerprint)
        if record.digest != fingerprint:
            return Verdict(stale=True, reason="inputs changed", fingerprint=fingerprint)
        for output in unit.outputs:
            if not self._absolute(output).exists():
                return Verdict(
                    stale=True,
                    reason=f"output {output.as_posix()} is missing",
                    fingerprint=fingerprint,
                )
        return Verdict(stale=False, reason="up to date", fingerprint=fingerprint)
