"""Build graph builder: expands subprojects and custom rules into units.

Per binary / library subproject: one compile unit per source file found under
``src_dir`` and one link (binary) or archive (library) unit that depends on
those compile units plus the transitive closure of everything the subproject
links against. Per custom build rule: one unit per matching source file.

Header tracking is conservative: every header under the subproject's source
and include directories, and under the include directories of the
subprojects it depends on, is an input of each of its compile units. A
header edit recompiles the whole subproject, a source edit recompiles only
that file.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from iceforge.config import IceforgeSettings
from iceforge.core.build_graph import BuildGraph
from iceforge.core.dependencies import DependencyPlan
from iceforge.core.errors import ResolutionError
from iceforge.core.layout import BuildLayout
from iceforge.models.graph import BuildUnit, CommandSpec, NodeKind
from iceforge.models.manifest import SubprojectType
from iceforge.models.project import EntityKind, Project, Subproject

logger = logging.getLogger(__name__)

_ROOT = Path(".")


def compile_node_id(subproject: str, source: Path) -> str:
    return f"compile:{subproject}:{source.as_posix()}"


def link_node_id(subproject: str) -> str:
    return f"link:{subproject}"


def archive_node_id(subproject: str) -> str:
    return f"archive:{subproject}"


def custom_node_id(rule: str, source: Path) -> str:
    return f"custom:{rule}:{source.as_posix()}"


class LinkClosure(BaseModel):
    """Everything a subproject inherits through its dependency references.

    ``link_artifacts`` and ``ldflags`` are in static-link order: a library
    always precedes the libraries it depends on.
    """

    model_config = ConfigDict(frozen=True)

    include_dirs: tuple[Path, ...] = ()
    header_dirs: tuple[Path, ...] = ()  # project-owned dirs whose headers are inputs
    cflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()
    link_artifacts: tuple[Path, ...] = ()
    compile_nodes: tuple[str, ...] = ()
    link_nodes: tuple[str, ...] = ()


def _dedupe_keep_last(items: Iterable) -> tuple:
    """Drop earlier duplicates so each item sits after everything needing it."""
    items = list(items)
    seen: set = set()
    kept = []
    for item in reversed(items):
        if item not in seen:
            seen.add(item)
            kept.append(item)
    return tuple(reversed(kept))


class GraphBuilder:
    """Expands a resolved project into a ``BuildGraph``.

    Parameters
    ----------
    project:
        The resolved project.
    plan:
        Dependency units and contributions from the orchestrator.
    layout:
        Output layout for the active profile.
    settings:
        Engine settings (source / header extensions, archiver).
    """

    def __init__(
        self,
        project: Project,
        plan: DependencyPlan,
        layout: BuildLayout,
        settings: IceforgeSettings,
    ) -> None:
        self._project = project
        self._plan = plan
        self._layout = layout
        self._settings = settings
        self._closures: dict[int, LinkClosure] = {}
        self._excluded = (
            layout.absolute(settings.build_dir),
            layout.absolute(settings.state_dir),
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def build(self, subproject_filter: str | None = None) -> BuildGraph:
        """Construct the graph, optionally restricted to one subproject.

        Raises
        ------
        ResolutionError
            On a subproject dependency cycle, an unknown filter name or two
            custom-rule units writing the same output.
        """
        self.check_cycles()

        units: list[BuildUnit] = list(self._plan.units)
        ordinal_base = len(self._project.dependencies)
        for index, sub in enumerate(self._project.subprojects):
            if sub.is_buildable:
                units.extend(self._subproject_units(index, sub, ordinal_base + sub.ordinal))
        ordinal_base += len(self._project.subprojects)
        units.extend(self._custom_rule_units(ordinal_base))

        graph = BuildGraph(units)
        if subproject_filter is not None:
            graph = graph.subgraph(self._filter_roots(subproject_filter, graph))
        logger.info("Build graph has %d node(s)", len(graph))
        return graph

    # ------------------------------------------------------------------
    # Cycle detection over subproject references
    # ------------------------------------------------------------------

    def check_cycles(self) -> None:
        """DFS over subproject -> subproject references.

        A back edge raises ``ResolutionError`` whose ``cycle`` is the ordered
        name sequence returning to its start, e.g. ``['a', 'b', 'a']``.
        """
        subs = self._project.subprojects
        state: dict[int, int] = {}  # 1 = on stack, 2 = done
        stack: list[int] = []

        def visit(index: int) -> None:
            state[index] = 1
            stack.append(index)
            for ref in subs[index].dependencies:
                if ref.kind != EntityKind.SUBPROJECT:
                    continue
                if state.get(ref.index) == 1:
                    start = stack.index(ref.index)
                    names = [subs[i].name for i in stack[start:]] + [subs[ref.index].name]
                    raise ResolutionError(
                        f"dependency cycle: {' -> '.join(names)}", cycle=names
                    )
                if ref.index not in state:
                    visit(ref.index)
            stack.pop()
            state[index] = 2

        for index in range(len(subs)):
            if index not in state:
                visit(index)

    # ------------------------------------------------------------------
    # Transitive link closure
    # ------------------------------------------------------------------

    def closure(self, index: int) -> LinkClosure:
        """Memoized closure of everything subproject *index* depends on."""
        cached = self._closures.get(index)
        if cached is not None:
            return cached

        parts: list[LinkClosure] = []
        for ref in self._project.subprojects[index].dependencies:
            if ref.kind == EntityKind.DEPENDENCY:
                c = self._plan.contribution(self._project.dependencies[ref.index].name)
                parts.append(LinkClosure(
                    include_dirs=c.include_dirs,
                    cflags=c.cflags,
                    ldflags=c.ldflags,
                    link_artifacts=c.link_artifacts,
                    compile_nodes=c.compile_nodes,
                    link_nodes=c.link_nodes,
                ))
                continue
            dep = self._project.subprojects[ref.index]
            own_dirs = dep.include_dirs + ((dep.src_dir,) if dep.kind == SubprojectType.HEADER_ONLY and dep.src_dir else ())
            own = LinkClosure(include_dirs=own_dirs, header_dirs=own_dirs)
            if dep.kind == SubprojectType.LIBRARY:
                own = own.model_copy(update={
                    "link_artifacts": (self._layout.library_path(dep.output_name),),
                    "link_nodes": (archive_node_id(dep.name),),
                })
            parts.append(own)
            parts.append(self.closure(ref.index))

        result = LinkClosure(
            include_dirs=tuple(dict.fromkeys(d for p in parts for d in p.include_dirs)),
            header_dirs=tuple(dict.fromkeys(d for p in parts for d in p.header_dirs)),
            cflags=tuple(dict.fromkeys(f for p in parts for f in p.cflags)),
            ldflags=_dedupe_keep_last(f for p in parts for f in p.ldflags),
            link_artifacts=_dedupe_keep_last(a for p in parts for a in p.link_artifacts),
            compile_nodes=tuple(dict.fromkeys(n for p in parts for n in p.compile_nodes)),
            link_nodes=tuple(dict.fromkeys(n for p in parts for n in p.link_nodes)),
        )
        self._closures[index] = result
        return result

    # ------------------------------------------------------------------
    # Subproject units
    # ------------------------------------------------------------------

    def _scan(self, directory: Path, extensions: Iterable[str]) -> list[Path]:
        """Recursively list files under *directory* with one of *extensions*,
        sorted and root-relative. Build and state directories are skipped."""
        base = self._layout.absolute(directory)
        if not base.is_dir():
            return []
        suffixes = {e if e.startswith(".") else f".{e}" for e in extensions}
        found = []
        for path in base.rglob("*"):
            if not path.is_file() or path.suffix not in suffixes:
                continue
            if any(path.is_relative_to(ex) for ex in self._excluded):
                continue
            found.append(self._layout.rel(path))
        return sorted(found)

    def _subproject_units(self, index: int, sub: Subproject, ordinal: int) -> list[BuildUnit]:
        assert sub.src_dir is not None
        closure = self.closure(index)
        profile = self._layout.profile
        headers = self._headers_for(sub, closure)

        include_dirs = tuple(dict.fromkeys((*sub.include_dirs, *closure.include_dirs)))
        compile_flags = (
            f"-std={sub.compile.c_standard}",
            *sub.compile.flags_for(profile),
            *closure.cflags,
            *(f"-I{d.as_posix()}" for d in include_dirs),
        )

        sources = self._scan(sub.src_dir, self._settings.source_extensions)
        if not sources:
            logger.warning("Subproject '%s' has no sources under %s", sub.name, sub.src_dir)

        units: list[BuildUnit] = []
        objects: list[Path] = []
        for source in sources:
            obj = self._layout.object_path(sub.name, source.relative_to(sub.src_dir))
            objects.append(obj)
            units.append(BuildUnit(
                node_id=compile_node_id(sub.name, source),
                kind=NodeKind.COMPILE,
                scope=sub.name,
                owner=sub.name,
                ordinal=ordinal,
                inputs=(source, *headers),
                outputs=(obj,),
                command=CommandSpec(
                    steps=((
                        sub.compile.compiler,
                        *compile_flags,
                        "-c",
                        source.as_posix(),
                        "-o",
                        obj.as_posix(),
                    ),),
                    workdir=_ROOT,
                ),
                predecessors=closure.compile_nodes,
            ))

        compile_ids = tuple(u.node_id for u in units)
        if sub.kind == SubprojectType.LIBRARY:
            out = self._layout.library_path(sub.output_name)
            units.append(BuildUnit(
                node_id=archive_node_id(sub.name),
                kind=NodeKind.ARCHIVE,
                scope=sub.name,
                owner=sub.name,
                ordinal=ordinal,
                outputs=(out,),
                command=CommandSpec(
                    steps=((self._settings.archiver, "rcs", out.as_posix(), *(o.as_posix() for o in objects)),),
                    workdir=_ROOT,
                ),
                predecessors=(*compile_ids, *closure.link_nodes),
            ))
        else:
            out = self._layout.binary_path(sub.output_name)
            units.append(BuildUnit(
                node_id=link_node_id(sub.name),
                kind=NodeKind.LINK,
                scope=sub.name,
                owner=sub.name,
                ordinal=ordinal,
                # prebuilt dependency libraries relink the binary when they change
                inputs=closure.link_artifacts,
                outputs=(out,),
                command=CommandSpec(
                    steps=((
                        sub.compile.compiler,
                        *(o.as_posix() for o in objects),
                        *(a.as_posix() for a in closure.link_artifacts),
                        *closure.ldflags,
                        "-o",
                        out.as_posix(),
                    ),),
                    workdir=_ROOT,
                ),
                predecessors=(*compile_ids, *closure.link_nodes),
            ))
        return units

    def _headers_for(self, sub: Subproject, closure: LinkClosure) -> tuple[Path, ...]:
        dirs = [sub.src_dir, *sub.include_dirs, *closure.header_dirs]
        headers: list[Path] = []
        for directory in dict.fromkeys(d for d in dirs if d is not None):
            headers.extend(self._scan(directory, self._settings.header_extensions))
        return tuple(dict.fromkeys(headers))

    # ------------------------------------------------------------------
    # Custom rules
    # ------------------------------------------------------------------

    def _custom_rule_units(self, ordinal_base: int) -> list[BuildUnit]:
        units: list[BuildUnit] = []
        writers: dict[Path, str] = {}
        for rule in self._project.custom_rules:
            for source in self._scan(rule.src_dir, rule.trigger_extensions):
                out = rule.output_dir / f"{source.name}.{rule.output_extension}"
                node_id = custom_node_id(rule.name, source)
                if out in writers:
                    raise ResolutionError(
                        f"custom rule outputs collide: '{writers[out]}' and '{node_id}' "
                        f"both write {out.as_posix()}"
                    )
                writers[out] = node_id
                units.append(BuildUnit(
                    node_id=node_id,
                    kind=NodeKind.CUSTOM_RULE,
                    scope=rule.name,
                    ordinal=ordinal_base + rule.ordinal,
                    inputs=(source,),
                    outputs=(out,),
                    command=CommandSpec(
                        steps=(rule.command.render(source.as_posix(), out.as_posix()),),
                        workdir=_ROOT,
                    ),
                    rule_name=rule.name,
                    rebuild_rule=rule.rebuild_rule,
                ))
        return units

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def _filter_roots(self, name: str, graph: BuildGraph) -> list[str]:
        try:
            sub = self._project.subproject(name)
        except KeyError:
            raise ResolutionError(f"unknown subproject '{name}'") from None
        if not sub.is_buildable:
            # Header-only: build what it needs so its headers are usable.
            index = self._project.subprojects.index(sub)
            roots = [*self.closure(index).compile_nodes, *self.closure(index).link_nodes]
        else:
            roots = [archive_node_id(name) if sub.kind == SubprojectType.LIBRARY else link_node_id(name)]
        return [r for r in roots if r in graph]
