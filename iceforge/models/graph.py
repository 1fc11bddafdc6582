"""Build graph node models and the per-node state machine."""

from __future__ import annotations

import shlex
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from iceforge.models.manifest import RebuildRule


class NodeKind(str, Enum):
    COMPILE = "compile"
    ARCHIVE = "archive"
    LINK = "link"
    CUSTOM_RULE = "custom-rule"
    DEPENDENCY_BUILD = "dependency-build"
    FETCH = "fetch"
    FLAG_ONLY = "flag-only"


# Kinds that do work (a command or a fetch) when stale.
EXECUTABLE_KINDS: frozenset[NodeKind] = frozenset({
    NodeKind.COMPILE,
    NodeKind.ARCHIVE,
    NodeKind.LINK,
    NodeKind.CUSTOM_RULE,
    NodeKind.DEPENDENCY_BUILD,
    NodeKind.FETCH,
})


class NodeStatus(str, Enum):
    """Strict state model for each build node."""

    PENDING = "pending"
    UP_TO_DATE = "up-to-date"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# Valid state transitions, enforced by the scheduler.
# Terminal states have no outgoing transitions.
VALID_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.PENDING: {
        NodeStatus.UP_TO_DATE,
        NodeStatus.RUNNING,
        NodeStatus.FAILED,  # flag-only units carrying a query failure
        NodeStatus.SKIPPED,
    },
    NodeStatus.RUNNING: {NodeStatus.SUCCEEDED, NodeStatus.FAILED},
    NodeStatus.UP_TO_DATE: set(),
    NodeStatus.SUCCEEDED: set(),
    NodeStatus.FAILED: set(),
    NodeStatus.SKIPPED: set(),
}

TERMINAL_STATES: frozenset[NodeStatus] = frozenset({
    NodeStatus.UP_TO_DATE,
    NodeStatus.SUCCEEDED,
    NodeStatus.FAILED,
    NodeStatus.SKIPPED,
})

SUCCESS_STATES: frozenset[NodeStatus] = frozenset({
    NodeStatus.UP_TO_DATE,
    NodeStatus.SUCCEEDED,
})


class CommandSpec(BaseModel):
    """What to run for a node: ordered argv steps inside one working directory."""

    model_config = ConfigDict(frozen=True)

    steps: tuple[tuple[str, ...], ...]
    workdir: Path

    def render(self) -> str:
        return " && ".join(shlex.join(step) for step in self.steps)


class FetchSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    version: str | None = None
    checkout: Path


class BuildUnit(BaseModel):
    """One schedulable node of the build graph.

    ``inputs`` and ``outputs`` are project-root-relative where possible so
    that fingerprints survive moving or re-cloning the project.
    """

    model_config = ConfigDict(frozen=True)

    node_id: str
    kind: NodeKind
    scope: str  # owning subproject, dependency or rule name
    owner: str | None = None  # set only for subproject-owned nodes (job caps)
    ordinal: int = 0
    inputs: tuple[Path, ...] = ()
    outputs: tuple[Path, ...] = ()
    command: CommandSpec | None = None
    predecessors: tuple[str, ...] = ()

    # flag-only contributions
    cflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()
    include_dirs: tuple[Path, ...] = ()
    error: str | None = None  # failure recorded while the graph was built

    # custom rules
    rule_name: str | None = None
    rebuild_rule: RebuildRule | None = None

    # fetch units
    fetch: FetchSpec | None = None

    @property
    def executes(self) -> bool:
        return self.kind in EXECUTABLE_KINDS
