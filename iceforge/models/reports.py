"""Build report models returned to callers of the engine."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from iceforge.core.errors import EXIT_BUILD_FAILED, EXIT_CANCELLED, EXIT_OK
from iceforge.models.graph import NodeKind


class NodeFailure(BaseModel):
    """Everything a user needs to act on one failed node."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    kind: NodeKind
    error_type: str  # CompileError, LinkError, FetchError, ...
    message: str
    command: str | None = None
    exit_code: int | None = None
    stderr_tail: str = ""


class BuildReport(BaseModel):
    """Outcome of one scheduler run.

    Node lists are in topological order, except ``executed`` which is in
    completion order.
    """

    model_config = ConfigDict(frozen=True)

    succeeded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    up_to_date: list[str] = Field(default_factory=list)
    executed: list[str] = Field(default_factory=list)
    failures: list[NodeFailure] = Field(default_factory=list)
    skip_reasons: dict[str, str] = Field(default_factory=dict)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    @property
    def executed_count(self) -> int:
        return len(self.executed)

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return EXIT_CANCELLED
        return EXIT_OK if not self.failed else EXIT_BUILD_FAILED

    def failure_for(self, node_id: str) -> NodeFailure | None:
        for failure in self.failures:
            if failure.node_id == node_id:
                return failure
        return None
