"""Build engine: the entry point that wires resolver output to execution.

The BuildEngine wires together the DependencyOrchestrator, GraphBuilder,
StalenessEngine, FingerprintStore and Scheduler for one resolved project.
Collaborators (process executor, VCS fetcher, package query, store) default
to the real implementations and can be substituted by embedders and tests.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from iceforge.config import IceforgeSettings
from iceforge.core.build_graph import BuildGraph
from iceforge.core.dependencies import DependencyOrchestrator
from iceforge.core.errors import ResolutionError
from iceforge.core.executors import (
    GitFetcher,
    PackageQuery,
    PkgConfigQuery,
    ProcessExecutor,
    ProcessResult,
    SubprocessExecutor,
    VcsFetcher,
)
from iceforge.core.fingerprint_store import FingerprintStore
from iceforge.core.graph_builder import GraphBuilder
from iceforge.core.layout import BuildLayout
from iceforge.core.scheduler import Scheduler, TransitionCallback
from iceforge.core.staleness import StalenessEngine
from iceforge.models.graph import NodeKind
from iceforge.models.manifest import SubprojectType
from iceforge.models.project import BuildProfile, Project, Subproject
from iceforge.models.reports import BuildReport

logger = logging.getLogger(__name__)

# Node kinds whose outputs `clean` removes. Checkouts and dependency builds
# live under the deps directory and are only replaced by `refresh`.
_CLEANABLE_KINDS = frozenset({
    NodeKind.COMPILE,
    NodeKind.ARCHIVE,
    NodeKind.LINK,
    NodeKind.CUSTOM_RULE,
})


class PlanEntry(BaseModel):
    """One line of a dry-run plan."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    kind: NodeKind
    scope: str
    stale: bool
    reason: str
    command: str | None = None


class RunResult(BaseModel):
    """A binary's build report and, when the build succeeded, its process result."""

    model_config = ConfigDict(frozen=True)

    binary: str
    report: BuildReport
    process: ProcessResult | None = None

    @property
    def exit_code(self) -> int:
        if self.process is None:
            return self.report.exit_code
        return self.process.exit_code


class BuildEngine:
    """Builds, runs, refreshes and cleans one resolved project.

    Parameters
    ----------
    project:
        The resolved project.
    settings:
        Engine settings. Uses the environment-driven defaults if not provided.
    executor:
        Runs external commands. Defaults to ``SubprocessExecutor``.
    fetcher:
        VCS collaborator. Defaults to ``GitFetcher`` under ``deps_dir``.
    package_query:
        ``pkg-config`` collaborator. Defaults to ``PkgConfigQuery``.
    store:
        Fingerprint store. Defaults to ``<root>/<state_dir>/fingerprints.json``.
    """

    def __init__(
        self,
        project: Project,
        *,
        settings: IceforgeSettings | None = None,
        executor: ProcessExecutor | None = None,
        fetcher: VcsFetcher | None = None,
        package_query: PackageQuery | None = None,
        store: FingerprintStore | None = None,
    ) -> None:
        self.project = project
        self.settings = settings or IceforgeSettings()
        self.root = Path(project.root)
        self.executor = executor or SubprocessExecutor()
        self.fetcher = fetcher or GitFetcher(self.root / self.settings.deps_dir, self.executor)
        self.package_query = package_query or PkgConfigQuery(self.executor)
        self.store = store or FingerprintStore(self.root / self.settings.state_dir)

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def layout(self, profile: BuildProfile) -> BuildLayout:
        return BuildLayout(self.root, self.settings.build_dir, profile)

    def graph(
        self, profile: BuildProfile = BuildProfile.DEBUG, subproject_filter: str | None = None
    ) -> BuildGraph:
        """Build the graph for *profile*.

        Raises
        ------
        ResolutionError
            On cycles, unresolvable references or an unknown filter name.
        """
        layout = self.layout(profile)
        plan = DependencyOrchestrator(
            self.project, layout, self.fetcher, self.package_query
        ).orchestrate()
        return GraphBuilder(self.project, plan, layout, self.settings).build(subproject_filter)

    def _job_caps(self, job_cap: int | None) -> tuple[int, dict[str, int]]:
        global_cap = self.settings.resolve_job_cap(job_cap, self.project.settings.parallel_jobs)
        scope_caps = {
            sub.name: sub.parallel_jobs
            for sub in self.project.subprojects
            if sub.parallel_jobs is not None
        }
        return global_cap, scope_caps

    def _scheduler(
        self,
        graph: BuildGraph,
        staleness: StalenessEngine,
        job_cap: int | None,
        on_transition: TransitionCallback | None,
    ) -> Scheduler:
        global_cap, scope_caps = self._job_caps(job_cap)
        return Scheduler(
            graph,
            self.store,
            staleness,
            self.executor,
            self.fetcher,
            root=self.root,
            job_cap=global_cap,
            scope_caps=scope_caps,
            timeout=self.settings.node_timeout_seconds,
            stderr_tail_lines=self.settings.stderr_tail_lines,
            on_transition=on_transition,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def plan(
        self,
        profile: BuildProfile = BuildProfile.DEBUG,
        subproject_filter: str | None = None,
        *,
        triggers: Iterable[str] = (),
    ) -> list[PlanEntry]:
        """Dry run: every node in topological order with a staleness preview.

        A node whose predecessor is stale is reported stale as well, since
        its inputs will change once the predecessor runs.
        """
        graph = self.graph(profile, subproject_filter)
        self.store.load()
        staleness = StalenessEngine(
            self.root,
            self.store,
            triggers=triggers,
            header_extensions=self.settings.header_extensions,
        )
        fingerprints: dict[str, str] = {}
        stale: set[str] = set()
        entries: list[PlanEntry] = []
        for unit in graph.nodes:
            fingerprint = staleness.fingerprint(unit, fingerprints)
            fingerprints[unit.node_id] = fingerprint
            upstream = next((p for p in unit.predecessors if p in stale), None)
            if not unit.executes:
                is_stale = False
                reason = unit.error or "flags only"
            elif upstream is not None:
                is_stale, reason = True, f"{upstream} will rebuild"
            else:
                verdict = staleness.assess(unit, fingerprint)
                is_stale, reason = verdict.stale, verdict.reason
            if is_stale:
                stale.add(unit.node_id)
            entries.append(PlanEntry(
                node_id=unit.node_id,
                kind=unit.kind,
                scope=unit.scope,
                stale=is_stale,
                reason=reason,
                command=unit.command.render() if unit.command else None,
            ))
        return entries

    def build(
        self,
        profile: BuildProfile = BuildProfile.DEBUG,
        job_cap: int | None = None,
        subproject_filter: str | None = None,
        *,
        triggers: Iterable[str] = (),
        on_transition: TransitionCallback | None = None,
    ) -> BuildReport:
        """Bring every stale node of the (filtered) graph up to date.

        Raises
        ------
        ResolutionError
            Before anything runs, if the graph cannot be constructed.
        """
        triggers = tuple(triggers)
        unknown = [t for t in triggers if t not in {r.name for r in self.project.custom_rules}]
        if unknown:
            raise ResolutionError(f"unknown custom build rule(s): {', '.join(unknown)}")

        graph = self.graph(profile, subproject_filter)
        self.store.load()
        staleness = StalenessEngine(
            self.root,
            self.store,
            triggers=triggers,
            header_extensions=self.settings.header_extensions,
        )
        logger.info(
            "Building '%s' (%s)%s",
            self.project.name,
            profile.value,
            f" for subproject '{subproject_filter}'" if subproject_filter else "",
        )
        return self._scheduler(graph, staleness, job_cap, on_transition).run()

    def refresh(
        self,
        job_cap: int | None = None,
        *,
        on_transition: TransitionCallback | None = None,
    ) -> BuildReport:
        """Re-fetch every remote dependency regardless of recorded state."""
        graph = self.graph(BuildProfile.DEBUG)
        fetches = BuildGraph(u for u in graph.nodes if u.kind == NodeKind.FETCH)
        self.store.load()
        # A fresh checkout may carry new sources under an unchanged version.
        for unit in graph.nodes:
            if unit.kind == NodeKind.DEPENDENCY_BUILD:
                self.store.invalidate(unit.node_id)
        staleness = StalenessEngine(
            self.root,
            self.store,
            forced=fetches.node_ids,
            header_extensions=self.settings.header_extensions,
        )
        logger.info("Refreshing %d remote dependency checkout(s)", len(fetches))
        return self._scheduler(fetches, staleness, job_cap, on_transition).run()

    def clean(self, subproject: str | None = None) -> list[Path]:
        """Remove build outputs and forget their fingerprints.

        Covers both profiles. With *subproject*, only that subproject's own
        nodes are cleaned. Returns the paths that were removed.
        """
        if subproject is not None:
            try:
                self.project.subproject(subproject)
            except KeyError:
                raise ResolutionError(f"unknown subproject '{subproject}'") from None

        self.store.load()
        removed: list[Path] = []
        for profile in BuildProfile:
            for unit in self.graph(profile).nodes:
                if unit.kind not in _CLEANABLE_KINDS:
                    continue
                if subproject is not None and unit.owner != subproject:
                    continue
                for output in unit.outputs:
                    path = output if output.is_absolute() else self.root / output
                    if path.is_dir():
                        shutil.rmtree(path)
                        removed.append(path)
                    elif path.exists():
                        path.unlink()
                        removed.append(path)
                self.store.invalidate(unit.node_id)
        self.store.flush()
        logger.info("Removed %d build output(s)", len(removed))
        return removed

    def select_binary(self, name: str | None = None) -> Subproject:
        """The binary subproject called *name*, or the only one when omitted.

        Raises
        ------
        ResolutionError
            If *name* is not a binary subproject, or if it is omitted and the
            project has no binary or more than one.
        """
        binaries = [s for s in self.project.subprojects if s.kind == SubprojectType.BINARY]
        if name is not None:
            for sub in binaries:
                if sub.name == name:
                    return sub
            raise ResolutionError(f"'{name}' is not a binary subproject")
        if not binaries:
            raise ResolutionError("project has no binary subproject to run")
        if len(binaries) > 1:
            names = ", ".join(s.name for s in binaries)
            raise ResolutionError(f"project has several binaries ({names}); choose one with --binary")
        return binaries[0]

    def run(
        self,
        binary: str | None = None,
        profile: BuildProfile = BuildProfile.DEBUG,
        job_cap: int | None = None,
        *,
        args: Iterable[str] = (),
        on_transition: TransitionCallback | None = None,
    ) -> RunResult:
        """Build one binary and what it needs, then execute it from the project root.

        The binary is not started unless its build succeeded.
        """
        target = self.select_binary(binary)
        report = self.build(profile, job_cap, target.name, on_transition=on_transition)
        if not report.ok:
            return RunResult(binary=target.name, report=report)

        path = self.root / self.layout(profile).binary_path(target.output_name)
        logger.info("Running %s", path)
        process = self.executor.execute((str(path), *args), self.root)
        return RunResult(binary=target.name, report=report, process=process)


# ---------------------------------------------------------------------------
# Functional entry points
# ---------------------------------------------------------------------------


def build(
    project: Project,
    profile: BuildProfile = BuildProfile.DEBUG,
    job_cap: int | None = None,
    subproject_filter: str | None = None,
    *,
    triggers: Iterable[str] = (),
    settings: IceforgeSettings | None = None,
    executor: ProcessExecutor | None = None,
    fetcher: VcsFetcher | None = None,
    package_query: PackageQuery | None = None,
) -> BuildReport:
    """Build *project* with the default or given collaborators."""
    engine = BuildEngine(
        project,
        settings=settings,
        executor=executor,
        fetcher=fetcher,
        package_query=package_query,
    )
    return engine.build(profile, job_cap, subproject_filter, triggers=triggers)


def refresh(
    project: Project,
    *,
    settings: IceforgeSettings | None = None,
    executor: ProcessExecutor | None = None,
    fetcher: VcsFetcher | None = None,
    package_query: PackageQuery | None = None,
) -> BuildReport:
    """Force a re-fetch of every remote dependency of *project*."""
    engine = BuildEngine(
        project,
        settings=settings,
        executor=executor,
        fetcher=fetcher,
        package_query=package_query,
    )
    return engine.refresh()


def clean(
    project: Project,
    subproject: str | None = None,
    *,
    settings: IceforgeSettings | None = None,
    package_query: PackageQuery | None = None,
    fetcher: VcsFetcher | None = None,
) -> list[Path]:
    """Remove build outputs of *project* (or one subproject)."""
    engine = BuildEngine(
        project, settings=settings, fetcher=fetcher, package_query=package_query
    )
    return engine.clean(subproject)
