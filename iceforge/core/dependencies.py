"""Dependency orchestrator: turns dependency specs into graph contributions.

Each declared dependency becomes either flag-only units (manual, pkg-config,
header-only remote) or a fetch unit followed by a dependency-build unit
(cmake, meson and custom remotes). Dependents attach to the nodes named in
the dependency's ``DependencyContribution``. Units that publish include
directories carry them in ``include_dirs`` so their fingerprint covers the
headers found there.

Whether a remote is re-fetched is decided by the staleness engine: the fetch
unit's fingerprint covers only ``(source, version)``, so it goes stale when
the requested version differs from the last recorded one or when the
checkout has disappeared.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from iceforge.core.errors import FetchError, ResolutionError
from iceforge.core.executors import PackageQuery, VcsFetcher
from iceforge.core.layout import BuildLayout
from iceforge.models.graph import BuildUnit, CommandSpec, FetchSpec, NodeKind
from iceforge.models.manifest import RemoteBuildMethod
from iceforge.models.project import (
    BuildProfile,
    ManualSpec,
    PkgConfigSpec,
    Project,
    RemoteSpec,
)

logger = logging.getLogger(__name__)


def fetch_node_id(name: str) -> str:
    return f"fetch:{name}"


def flags_node_id(name: str) -> str:
    return f"flags:{name}"


def dependency_build_node_id(name: str) -> str:
    return f"dep-build:{name}"


class DependencyContribution(BaseModel):
    """What one dependency hands to the subprojects that reference it."""

    model_config = ConfigDict(frozen=True)

    name: str
    include_dirs: tuple[Path, ...] = ()
    cflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()
    link_artifacts: tuple[Path, ...] = ()
    compile_nodes: tuple[str, ...] = ()  # compile units wait on these
    link_nodes: tuple[str, ...] = ()  # link / archive units wait on these


class DependencyPlan(BaseModel):
    """All dependency units plus per-dependency contributions, by name."""

    model_config = ConfigDict(frozen=True)

    units: tuple[BuildUnit, ...] = ()
    contributions: dict[str, DependencyContribution] = {}

    def contribution(self, name: str) -> DependencyContribution:
        return self.contributions[name]


class DependencyOrchestrator:
    """Plans dependency units for one project.

    Parameters
    ----------
    project:
        The resolved project.
    layout:
        Build layout for the active profile.
    fetcher:
        VCS collaborator; only ``checkout_path`` is called while planning.
    package_query:
        ``pkg-config`` collaborator, queried at graph-build time.
    """

    def __init__(
        self,
        project: Project,
        layout: BuildLayout,
        fetcher: VcsFetcher,
        package_query: PackageQuery,
    ) -> None:
        self._project = project
        self._layout = layout
        self._fetcher = fetcher
        self._package_query = package_query

    def orchestrate(self) -> DependencyPlan:
        """Plan every declared dependency.

        Raises
        ------
        ResolutionError
            For custom remotes without a ``build_command`` and for any
            sub-component reference (``dep.unit``), which the manifest format
            does not define.
        """
        self._reject_unresolvable()

        units: list[BuildUnit] = []
        contributions: dict[str, DependencyContribution] = {}
        for ordinal, spec in enumerate(self._project.dependencies):
            if isinstance(spec, ManualSpec):
                new_units, contribution = self._plan_manual(spec, ordinal)
            elif isinstance(spec, PkgConfigSpec):
                new_units, contribution = self._plan_pkg_config(spec, ordinal)
            else:
                new_units, contribution = self._plan_remote(spec, ordinal)
            units.extend(new_units)
            contributions[spec.name] = contribution

        logger.debug(
            "Planned %d dependency unit(s) for %d dependencies",
            len(units),
            len(contributions),
        )
        return DependencyPlan(units=tuple(units), contributions=contributions)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _reject_unresolvable(self) -> None:
        problems: list[str] = []
        for spec in self._project.remote_dependencies:
            if spec.build_method == RemoteBuildMethod.CUSTOM and not spec.build_command:
                problems.append(
                    f"remote dependency '{spec.name}' uses build_method = 'custom' "
                    f"but has no build_command"
                )
        for sub in self._project.subprojects:
            for ref in sub.sub_components:
                base = self._project.resolve(ref.base)
                declared = ", ".join(getattr(base, "imports", ())) or "none"
                problems.append(
                    f"subproject '{sub.name}': cannot resolve sub-component reference "
                    f"'{ref.reference}' (unit '{ref.component}' inside remote '{base.name}'; "
                    f"declared imports: {declared}); the manifest format does not define "
                    f"sub-component addressing"
                )
        if problems:
            raise ResolutionError("; ".join(problems))

    # ------------------------------------------------------------------
    # Per-variant planning
    # ------------------------------------------------------------------

    def _plan_manual(
        self, spec: ManualSpec, ordinal: int
    ) -> tuple[list[BuildUnit], DependencyContribution]:
        node_id = flags_node_id(spec.name)
        unit = BuildUnit(
            node_id=node_id,
            kind=NodeKind.FLAG_ONLY,
            scope=spec.name,
            ordinal=ordinal,
            cflags=spec.cflags,
            ldflags=spec.ldflags,
        )
        return [unit], DependencyContribution(
            name=spec.name,
            cflags=spec.cflags,
            ldflags=spec.ldflags,
            compile_nodes=(node_id,),
            link_nodes=(node_id,),
        )

    def _plan_pkg_config(
        self, spec: PkgConfigSpec, ordinal: int
    ) -> tuple[list[BuildUnit], DependencyContribution]:
        node_id = flags_node_id(spec.name)
        cflags: tuple[str, ...] = ()
        ldflags: tuple[str, ...] = ()
        error: str | None = None
        try:
            cflags, ldflags = self._package_query.query(spec.query)
        except FetchError as exc:
            # Not fatal: only dependents of this package are affected.
            logger.warning("pkg-config query for '%s' failed: %s", spec.name, exc)
            error = str(exc)

        unit = BuildUnit(
            node_id=node_id,
            kind=NodeKind.FLAG_ONLY,
            scope=spec.name,
            ordinal=ordinal,
            cflags=cflags,
            ldflags=ldflags,
            error=error,
        )
        return [unit], DependencyContribution(
            name=spec.name,
            cflags=cflags,
            ldflags=ldflags,
            compile_nodes=(node_id,),
            link_nodes=(node_id,),
        )

    def _plan_remote(
        self, spec: RemoteSpec, ordinal: int
    ) -> tuple[list[BuildUnit], DependencyContribution]:
        checkout = self._layout.rel(self._fetcher.checkout_path(spec.source, spec.version))
        include_dirs = tuple(checkout / d for d in spec.include_dirs) or (checkout,)

        fetch_id = fetch_node_id(spec.name)
        fetch_unit = BuildUnit(
            node_id=fetch_id,
            kind=NodeKind.FETCH,
            scope=spec.name,
            ordinal=ordinal,
            outputs=(checkout,),
            fetch=FetchSpec(source=spec.source, version=spec.version, checkout=checkout),
        )

        if spec.build_method == RemoteBuildMethod.HEADER_ONLY:
            flags_id = flags_node_id(spec.name)
            flags_unit = BuildUnit(
                node_id=flags_id,
                kind=NodeKind.FLAG_ONLY,
                scope=spec.name,
                ordinal=ordinal,
                include_dirs=include_dirs,
                predecessors=(fetch_id,),
            )
            return [fetch_unit, flags_unit], DependencyContribution(
                name=spec.name,
                include_dirs=include_dirs,
                compile_nodes=(flags_id,),
                link_nodes=(flags_id,),
            )

        artifact = checkout / (spec.build_output or self._default_output(spec))
        build_id = dependency_build_node_id(spec.name)
        build_unit = BuildUnit(
            node_id=build_id,
            kind=NodeKind.DEPENDENCY_BUILD,
            scope=spec.name,
            ordinal=ordinal,
            outputs=(artifact,),
            include_dirs=include_dirs,
            command=CommandSpec(steps=self._build_steps(spec), workdir=checkout),
            predecessors=(fetch_id,),
        )
        return [fetch_unit, build_unit], DependencyContribution(
            name=spec.name,
            include_dirs=include_dirs,
            link_artifacts=(artifact,),
            # configure steps may generate headers
            compile_nodes=(build_id,),
            link_nodes=(build_id,),
        )

    @staticmethod
    def _default_output(spec: RemoteSpec) -> str:
        return f"build/lib{spec.include_name or spec.name}.a"

    def _build_steps(self, spec: RemoteSpec) -> tuple[tuple[str, ...], ...]:
        release = self._layout.profile == BuildProfile.RELEASE
        if spec.build_method == RemoteBuildMethod.CMAKE:
            build_type = "Release" if release else "Debug"
            return (
                ("cmake", "-S", ".", "-B", "build", f"-DCMAKE_BUILD_TYPE={build_type}"),
                ("cmake", "--build", "build"),
            )
        if spec.build_method == RemoteBuildMethod.MESON:
            build_type = "release" if release else "debug"
            return (
                ("meson", "setup", "--reconfigure", "build", f"--buildtype={build_type}"),
                ("meson", "compile", "-C", "build"),
            )
        assert spec.build_command is not None
        return (("sh", "-c", spec.build_command),)
