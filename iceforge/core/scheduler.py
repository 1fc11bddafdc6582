"""Scheduler: dispatches stale build units onto a bounded worker pool.

Enforces:
- A node is dispatched only after every predecessor is SUCCEEDED or UP_TO_DATE.
- Within a scope, at most ``cap`` nodes are in flight at once. Nodes owned by
  a subproject with its own job cap form that subproject's scope; every
  other node shares the global scope.
- A failed node skips all of its transitive dependents; independent branches
  keep going.
- Dispatch and completion are serialized under one condition variable, so a
  ready node can never be handed to two workers.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from iceforge.core.build_graph import BuildGraph
from iceforge.core.errors import (
    CompileError,
    CustomRuleError,
    DependencyBuildError,
    ExecutionError,
    FetchError,
    IceforgeError,
    LinkError,
)
from iceforge.core.executors import ProcessExecutor, VcsFetcher
from iceforge.core.fingerprint_store import FingerprintStore
from iceforge.core.staleness import StalenessEngine
from iceforge.models.graph import (
    SUCCESS_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    BuildUnit,
    NodeKind,
    NodeStatus,
)
from iceforge.models.reports import BuildReport, NodeFailure

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "*"

_ERROR_FOR_KIND: dict[NodeKind, type[IceforgeError]] = {
    NodeKind.COMPILE: CompileError,
    NodeKind.ARCHIVE: LinkError,
    NodeKind.LINK: LinkError,
    NodeKind.CUSTOM_RULE: CustomRuleError,
    NodeKind.DEPENDENCY_BUILD: DependencyBuildError,
    NodeKind.FETCH: FetchError,
    NodeKind.FLAG_ONLY: FetchError,
}

TransitionCallback = Callable[[str, NodeStatus], None]


class InvalidTransitionError(RuntimeError):
    """Raised when a node is moved along an edge the state machine forbids."""


class _Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: NodeStatus
    fingerprint: str | None = None
    failure: NodeFailure | None = None


def _tail(text: str, lines: int) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class Scheduler:
    """Runs one build graph to completion.

    Parameters
    ----------
    graph:
        The validated build graph.
    store:
        Fingerprint store; flushed when the run ends, however it ends.
    staleness:
        Staleness engine for this invocation.
    executor:
        Runs external commands.
    fetcher:
        Ensures remote checkouts for fetch units.
    root:
        Project root; command working directories resolve against it.
    job_cap:
        Concurrency limit of the global scope.
    scope_caps:
        Per-subproject job caps from overrides.
    timeout:
        Optional per-command timeout in seconds.
    on_transition:
        Called with ``(node_id, new_status)`` on every state change, while
        the scheduler lock is held. Must not block.
    """

    def __init__(
        self,
        graph: BuildGraph,
        store: FingerprintStore,
        staleness: StalenessEngine,
        executor: ProcessExecutor,
        fetcher: VcsFetcher,
        *,
        root: Path,
        job_cap: int,
        scope_caps: Mapping[str, int] | None = None,
        timeout: float | None = None,
        stderr_tail_lines: int = 20,
        on_transition: TransitionCallback | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        if job_cap < 1:
            raise ValueError(f"job cap must be >= 1, got {job_cap}")
        self._graph = graph
        self._store = store
        self._staleness = staleness
        self._executor = executor
        self._fetcher = fetcher
        self._root = Path(root)
        self._caps: dict[str, int] = {GLOBAL_SCOPE: job_cap, **(scope_caps or {})}
        self._timeout = timeout
        self._stderr_tail_lines = stderr_tail_lines
        self._on_transition = on_transition
        self._poll_interval = poll_interval

        self._cond = threading.Condition()
        self._cancelled = threading.Event()

        order = graph.node_ids
        self._rank = {nid: i for i, nid in enumerate(order)}
        self._states: dict[str, NodeStatus] = dict.fromkeys(order, NodeStatus.PENDING)
        self._remaining = {nid: len(graph.get_predecessors(nid)) for nid in order}
        self._fingerprints: dict[str, str] = {}
        self._ready: list[tuple[int, str]] = []
        self._running: dict[str, int] = dict.fromkeys(self._caps, 0)
        self._in_flight = 0
        self._executed: list[str] = []
        self._failures: list[NodeFailure] = []
        self._skip_reasons: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop dispatching; in-flight commands are allowed to finish."""
        self._cancelled.set()
        with self._cond:
            self._cond.notify_all()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self) -> BuildReport:
        """Execute the graph and return the report."""
        started = time.monotonic()
        logger.info(
            "Scheduling %d node(s); job caps %s",
            len(self._graph),
            ", ".join(f"{scope}={cap}" for scope, cap in self._caps.items()),
        )
        workers = sum(self._caps.values())
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="iceforge")
        try:
            with self._cond:
                for nid, remaining in self._remaining.items():
                    if remaining == 0:
                        heapq.heappush(self._ready, (self._rank[nid], nid))
                try:
                    self._loop(pool)
                except KeyboardInterrupt:
                    # Counters may be mid-update; the pool shutdown below waits instead.
                    logger.warning("Interrupted while dispatching; waiting for running commands")
                    self._cancelled.set()
                else:
                    self._drain()
        finally:
            pool.shutdown(wait=True)
            self._store.flush()
        with self._cond:
            self._skip_leftovers()

        report = self._report(time.monotonic() - started)
        logger.info(
            "Build finished in %.2fs: %d succeeded, %d up to date, %d failed, %d skipped%s",
            report.duration_seconds,
            len(report.succeeded),
            len(report.up_to_date),
            len(report.failed),
            len(report.skipped),
            " (cancelled)" if report.cancelled else "",
        )
        return report

    # ------------------------------------------------------------------
    # Dispatch loop (caller holds the condition)
    # ------------------------------------------------------------------

    def _loop(self, pool: ThreadPoolExecutor) -> None:
        while not self._cancelled.is_set():
            self._dispatch(pool)
            if not self._ready and self._in_flight == 0:
                return
            try:
                self._cond.wait(timeout=self._poll_interval)
            except KeyboardInterrupt:
                logger.warning("Interrupted; waiting for %d running command(s)", self._in_flight)
                self._cancelled.set()

    def _drain(self) -> None:
        while self._in_flight:
            try:
                self._cond.wait(timeout=self._poll_interval)
            except KeyboardInterrupt:
                logger.warning("Still waiting for %d running command(s)", self._in_flight)

    def _skip_leftovers(self) -> None:
        if not self._cancelled.is_set():
            return
        for nid, state in self._states.items():
            if state not in TERMINAL_STATES:
                self._set_state(nid, NodeStatus.SKIPPED)
                self._skip_reasons[nid] = "build cancelled"

    def _scope(self, unit: BuildUnit) -> str:
        return unit.owner if unit.owner in self._caps else GLOBAL_SCOPE

    def _dispatch(self, pool: ThreadPoolExecutor) -> None:
        deferred: list[tuple[int, str]] = []
        while self._ready and not self._cancelled.is_set():
            entry = heapq.heappop(self._ready)
            nid = entry[1]
            if self._states[nid] != NodeStatus.PENDING:
                continue
            unit = self._graph.node(nid)
            if not unit.executes:
                self._finish(unit, self._resolve_flags(unit), GLOBAL_SCOPE, occupied=False)
                continue
            scope = self._scope(unit)
            if self._running[scope] >= self._caps[scope]:
                deferred.append(entry)
                continue
            self._running[scope] += 1
            self._in_flight += 1
            pool.submit(self._work, unit, scope)
        for entry in deferred:
            heapq.heappush(self._ready, entry)

    # ------------------------------------------------------------------
    # State transitions (caller holds the condition)
    # ------------------------------------------------------------------

    def _set_state(self, node_id: str, new: NodeStatus) -> None:
        current = self._states[node_id]
        if new not in VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Node {node_id}: {current.value} -> {new.value} is not allowed"
            )
        self._states[node_id] = new
        if self._on_transition is not None:
            self._on_transition(node_id, new)

    def _finish(self, unit: BuildUnit, outcome: _Outcome, scope: str, *, occupied: bool = True) -> None:
        nid = unit.node_id
        if occupied:
            self._running[scope] -= 1
            self._in_flight -= 1
        if self._states[nid] == NodeStatus.RUNNING and unit.executes:
            self._executed.append(nid)
        self._set_state(nid, outcome.status)

        if outcome.status in SUCCESS_STATES:
            assert outcome.fingerprint is not None
            self._fingerprints[nid] = outcome.fingerprint
            for dep in self._graph.get_direct_dependents(nid):
                self._remaining[dep] -= 1
                if self._remaining[dep] == 0:
                    heapq.heappush(self._ready, (self._rank[dep], dep))
        elif outcome.status == NodeStatus.FAILED:
            if outcome.failure is not None:
                self._failures.append(outcome.failure)
            self._cascade(nid, f"predecessor {nid} failed")
        elif outcome.status == NodeStatus.SKIPPED:
            self._skip_reasons.setdefault(nid, "build cancelled")
            self._cascade(nid, "build cancelled")
        self._cond.notify_all()

    def _cascade(self, nid: str, reason: str) -> None:
        for skipped in self._graph.cascade_skip(nid, self._states):
            self._skip_reasons[skipped] = reason
            if self._on_transition is not None:
                self._on_transition(skipped, NodeStatus.SKIPPED)

    # ------------------------------------------------------------------
    # Node execution
    # ------------------------------------------------------------------

    def _resolve_flags(self, unit: BuildUnit) -> _Outcome:
        """Flag-only units never execute; they either carry flags or an error."""
        if unit.error is not None:
            logger.error("Dependency %s is unusable: %s", unit.scope, unit.error)
            return _Outcome(
                status=NodeStatus.FAILED,
                failure=NodeFailure(
                    node_id=unit.node_id,
                    kind=unit.kind,
                    error_type=FetchError.__name__,
                    message=unit.error,
                ),
            )
        fingerprint = self._staleness.fingerprint(unit, self._predecessor_fingerprints(unit))
        return _Outcome(status=NodeStatus.UP_TO_DATE, fingerprint=fingerprint)

    def _predecessor_fingerprints(self, unit: BuildUnit) -> dict[str, str]:
        return {p: self._fingerprints[p] for p in unit.predecessors}

    def _work(self, unit: BuildUnit, scope: str) -> None:
        """Worker-thread entry point. Always reports back to the loop."""
        try:
            outcome = self._process(unit)
        except Exception as exc:
            logger.exception("Unexpected error while building %s", unit.node_id)
            outcome = _Outcome(
                status=NodeStatus.FAILED,
                failure=NodeFailure(
                    node_id=unit.node_id,
                    kind=unit.kind,
                    error_type=type(exc).__name__,
                    message=str(exc),
                    command=unit.command.render() if unit.command else None,
                ),
            )
            self._store.invalidate(unit.node_id)
        with self._cond:
            self._finish(unit, outcome, scope)

    def _process(self, unit: BuildUnit) -> _Outcome:
        with self._cond:
            predecessors = self._predecessor_fingerprints(unit)
        fingerprint = self._staleness.fingerprint(unit, predecessors)
        verdict = self._staleness.assess(unit, fingerprint)
        if not verdict.stale:
            logger.debug("%s is up to date", unit.node_id)
            return _Outcome(status=NodeStatus.UP_TO_DATE, fingerprint=fingerprint)

        with self._cond:
            if self._cancelled.is_set():
                return _Outcome(status=NodeStatus.SKIPPED)
            self._set_state(unit.node_id, NodeStatus.RUNNING)
        logger.info("Running %s (%s)", unit.node_id, verdict.reason)

        failure = self._fetch(unit) if unit.kind == NodeKind.FETCH else self._execute(unit)
        if failure is not None:
            self._store.invalidate(unit.node_id)
            logger.error("%s failed: %s", unit.node_id, failure.message)
            return _Outcome(status=NodeStatus.FAILED, failure=failure)

        self._store.record(unit.node_id, fingerprint, unit.outputs)
        return _Outcome(status=NodeStatus.SUCCEEDED, fingerprint=fingerprint)

    def _fetch(self, unit: BuildUnit) -> NodeFailure | None:
        assert unit.fetch is not None
        try:
            self._fetcher.ensure_checkout(unit.fetch.source, unit.fetch.version)
        except FetchError as exc:
            return NodeFailure(
                node_id=unit.node_id,
                kind=unit.kind,
                error_type=FetchError.__name__,
                message=str(exc),
            )
        return None

    def _execute(self, unit: BuildUnit) -> NodeFailure | None:
        assert unit.command is not None
        for output in unit.outputs:
            target = output if output.is_absolute() else self._root / output
            target.parent.mkdir(parents=True, exist_ok=True)

        workdir = unit.command.workdir
        if not workdir.is_absolute():
            workdir = self._root / workdir
        for step in unit.command.steps:
            result = self._executor.execute(step, workdir, timeout=self._timeout)
            if result.ok:
                continue
            error_cls: type[IceforgeError] = _ERROR_FOR_KIND.get(unit.kind, ExecutionError)
            if result.timed_out:
                message = f"{step[0]} timed out after {self._timeout}s"
            else:
                message = f"{step[0]} exited with status {result.exit_code}"
            return NodeFailure(
                node_id=unit.node_id,
                kind=unit.kind,
                error_type=error_cls.__name__,
                message=message,
                command=unit.command.render(),
                exit_code=result.exit_code,
                stderr_tail=_tail(result.stderr, self._stderr_tail_lines),
            )
        return None

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _report(self, duration: float) -> BuildReport:
        order = self._graph.node_ids

        def having(status: NodeStatus) -> list[str]:
            return [nid for nid in order if self._states[nid] == status]

        failures = sorted(self._failures, key=lambda f: self._rank[f.node_id])
        return BuildReport(
            succeeded=having(NodeStatus.SUCCEEDED),
            failed=having(NodeStatus.FAILED),
            skipped=having(NodeStatus.SKIPPED),
            up_to_date=having(NodeStatus.UP_TO_DATE),
            executed=list(self._executed),
            failures=failures,
            skip_reasons=dict(self._skip_reasons),
            cancelled=self._cancelled.is_set(),
            duration_seconds=round(duration, 3),
        )
