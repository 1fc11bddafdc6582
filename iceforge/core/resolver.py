"""Manifest resolver: validation, name interning and override merging.

Turns the already-deserialized manifest tree into an immutable ``Project``.
Every violation found is collected and reported together in one
``ConfigError``, so a user sees all problems in a single pass.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from iceforge.core.errors import ConfigError
from iceforge.core.templating import TemplateError, parse_command_template
from iceforge.models.manifest import (
    BuildSettings,
    CustomBuildRuleEntry,
    ManualDependency,
    OverrideEntry,
    PkgConfigDependency,
    RemoteBuildMethod,
    RemoteDependency,
    SubprojectDependency,
    SubprojectEntry,
    SubprojectType,
)
from iceforge.models.project import (
    CompileSettings,
    CustomRule,
    EntityKind,
    EntityRef,
    ManualSpec,
    PkgConfigSpec,
    Project,
    RemoteSpec,
    SubComponentRef,
    Subproject,
)

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


def _split_flags(flags: str | None) -> tuple[str, ...]:
    return tuple(shlex.split(flags)) if flags else ()


class ManifestResolver:
    """Validates one raw manifest against a project root.

    Parameters
    ----------
    raw:
        The deserialized manifest (``[build]``, ``[dependencies]``,
        ``[[subprojects]]``, ``[[custom_build_rules]]``, ``[[overrides]]``).
    root:
        Project root; relative paths in the manifest resolve against it.
    check_paths:
        Verify that source and include directories exist.
    """

    def __init__(
        self, raw: Mapping[str, Any], root: Path, *, check_paths: bool = True
    ) -> None:
        self._raw = raw
        self._root = Path(root)
        self._check_paths = check_paths
        self._violations: list[str] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def resolve(self) -> Project:
        if not isinstance(self._raw, Mapping):
            raise ConfigError("manifest root must be a table")

        build = self._validate_build()
        deps = self._raw.get("dependencies") or {}
        if not isinstance(deps, Mapping):
            self._violations.append("dependencies: expected a table")
            deps = {}

        remotes = self._validate_section(RemoteDependency, deps.get("remote"), "dependencies.remote")
        pkgs = self._validate_section(PkgConfigDependency, deps.get("pkg_config"), "dependencies.pkg_config")
        manuals = self._validate_section(ManualDependency, deps.get("manual"), "dependencies.manual")
        subs = self._validate_section(SubprojectEntry, self._raw.get("subprojects"), "subprojects")
        rules = self._validate_section(CustomBuildRuleEntry, self._raw.get("custom_build_rules"), "custom_build_rules")
        overrides = self._validate_section(OverrideEntry, self._raw.get("overrides"), "overrides")

        self._check_namespace(remotes, pkgs, manuals, subs)
        self._check_remotes(remotes)
        dependencies = self._build_dependency_specs(remotes, pkgs, manuals)
        override_map = self._check_overrides(overrides, subs, dependencies)
        custom_rules = self._build_custom_rules(rules)
        subprojects = self._build_subprojects(subs, dependencies, override_map, build)

        if self._violations:
            logger.debug("Manifest rejected with %d violation(s)", len(self._violations))
            raise ConfigError(self._violations)

        assert build is not None
        project = Project(
            root=self._root,
            settings=build,
            dependencies=tuple(dependencies),
            subprojects=tuple(subprojects),
            custom_rules=tuple(custom_rules),
        )
        logger.info(
            "Resolved project '%s': %d subproject(s), %d dependencies, %d custom rule(s)",
            project.name,
            len(project.subprojects),
            len(project.dependencies),
            len(project.custom_rules),
        )
        return project

    # ------------------------------------------------------------------
    # Per-entity validation
    # ------------------------------------------------------------------

    def _record_validation_error(self, where: str, exc: ValidationError) -> None:
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            field = f".{loc}" if loc else ""
            self._violations.append(f"{where}{field}: {err['msg']}")

    def _validate_build(self) -> BuildSettings | None:
        section = self._raw.get("build")
        if section is None:
            self._violations.append("build: section is required")
            return None
        try:
            return BuildSettings.model_validate(section)
        except ValidationError as exc:
            self._record_validation_error("build", exc)
            return None

    def _validate_section(
        self, model: type[_M], section: Any, label: str
    ) -> list[tuple[str, _M]]:
        """Validate every entry of an array-of-tables section on its own.

        Returns ``(location, entry)`` pairs for the entries that validated.
        """
        if section is None:
            return []
        if not isinstance(section, Sequence) or isinstance(section, (str, bytes)):
            self._violations.append(f"{label}: expected an array of tables")
            return []

        valid: list[tuple[str, _M]] = []
        for i, entry in enumerate(section):
            where = f"{label}[{i}]"
            if isinstance(entry, Mapping) and isinstance(entry.get("name"), str):
                where = f"{where} ({entry['name']})"
            try:
                valid.append((where, model.model_validate(entry)))
            except ValidationError as exc:
                self._record_validation_error(where, exc)
        return valid

    # ------------------------------------------------------------------
    # Cross-entity checks
    # ------------------------------------------------------------------

    def _check_namespace(self, *sections: list[tuple[str, Any]]) -> None:
        """Dependency and subproject names share one namespace."""
        seen: dict[str, str] = {}
        for section in sections:
            for where, entry in section:
                if entry.name in seen:
                    self._violations.append(
                        f"{where}: name '{entry.name}' is already used by {seen[entry.name]}"
                    )
                else:
                    seen[entry.name] = where

    def _check_remotes(self, remotes: list[tuple[str, RemoteDependency]]) -> None:
        sources: dict[tuple[str, str | None], str] = {}
        include_names: dict[str, str] = {}
        for where, remote in remotes:
            key = (remote.source, remote.version)
            if key in sources:
                self._violations.append(
                    f"{where}: source '{remote.source}' at version "
                    f"{remote.version or '<default>'} is already declared by {sources[key]}"
                )
            else:
                sources[key] = where

            if remote.include_name:
                if remote.include_name in include_names:
                    self._violations.append(
                        f"{where}: include_name '{remote.include_name}' is already "
                        f"used by {include_names[remote.include_name]}"
                    )
                else:
                    include_names[remote.include_name] = where

            if remote.build_method != RemoteBuildMethod.CUSTOM and remote.build_command:
                self._violations.append(
                    f"{where}: build_command is only allowed with build_method = 'custom'"
                )
            if remote.build_method == RemoteBuildMethod.HEADER_ONLY and remote.build_output:
                self._violations.append(
                    f"{where}: build_output has no meaning for a header-only dependency"
                )

    def _build_dependency_specs(
        self,
        remotes: list[tuple[str, RemoteDependency]],
        pkgs: list[tuple[str, PkgConfigDependency]],
        manuals: list[tuple[str, ManualDependency]],
    ) -> list[RemoteSpec | PkgConfigSpec | ManualSpec]:
        specs: list[RemoteSpec | PkgConfigSpec | ManualSpec] = []
        for _, r in remotes:
            specs.append(RemoteSpec(
                name=r.name,
                version=r.version,
                source=r.source,
                include_name=r.include_name,
                include_dirs=tuple(r.include_dirs),
                build_method=r.build_method,
                build_command=r.build_command,
                build_output=r.build_output,
                imports=tuple(r.imports or ()),
            ))
        for _, p in pkgs:
            specs.append(PkgConfigSpec(name=p.name, query=p.pkg_config_query))
        for _, m in manuals:
            specs.append(ManualSpec(
                name=m.name,
                cflags=_split_flags(m.cflags),
                ldflags=_split_flags(m.ldflags),
            ))
        return specs

    def _check_overrides(
        self,
        overrides: list[tuple[str, OverrideEntry]],
        subs: list[tuple[str, SubprojectEntry]],
        dependencies: list[RemoteSpec | PkgConfigSpec | ManualSpec],
    ) -> dict[str, OverrideEntry]:
        """Each override targets exactly one existing subproject, at most once."""
        sub_names = {s.name for _, s in subs}
        dep_names = {d.name for d in dependencies}
        result: dict[str, OverrideEntry] = {}
        first_seen: dict[str, str] = {}
        for where, override in overrides:
            if override.name not in sub_names:
                if override.name in dep_names:
                    self._violations.append(
                        f"{where}: overrides apply to subprojects, '{override.name}' is a dependency"
                    )
                else:
                    self._violations.append(
                        f"{where}: target '{override.name}' does not name a subproject"
                    )
                continue
            if override.name in result:
                self._violations.append(
                    f"{where}: subproject '{override.name}' already has an override "
                    f"({first_seen[override.name]})"
                )
                continue
            result[override.name] = override
            first_seen[override.name] = where
        return result

    def _build_custom_rules(
        self, rules: list[tuple[str, CustomBuildRuleEntry]]
    ) -> list[CustomRule]:
        built: list[CustomRule] = []
        names: dict[str, str] = {}
        for ordinal, (where, rule) in enumerate(rules):
            if rule.name in names:
                self._violations.append(
                    f"{where}: custom build rule name '{rule.name}' is already used by {names[rule.name]}"
                )
                continue
            names[rule.name] = where

            try:
                template = parse_command_template(rule.command)
            except TemplateError as exc:
                self._violations.append(f"{where}.command: {exc}")
                continue

            extensions = tuple(ext.strip().lstrip(".") for ext in rule.trigger_extensions)
            if any(not ext for ext in extensions):
                self._violations.append(f"{where}.trigger_extensions: empty extension")
                continue

            src_dir = Path(rule.src_dir)
            self._require_dir(f"{where}.src_dir", src_dir)
            built.append(CustomRule(
                name=rule.name,
                description=rule.description,
                src_dir=src_dir,
                output_dir=Path(rule.output_dir),
                trigger_extensions=extensions,
                output_extension=rule.output_extension.lstrip("."),
                command=template,
                rebuild_rule=rule.rebuild_rule,
                ordinal=ordinal,
            ))
        return built

    def _build_subprojects(
        self,
        subs: list[tuple[str, SubprojectEntry]],
        dependencies: list[RemoteSpec | PkgConfigSpec | ManualSpec],
        override_map: dict[str, OverrideEntry],
        build: BuildSettings | None,
    ) -> list[Subproject]:
        # Name -> interned reference, first declaration wins for duplicates
        # (duplicates were already reported by _check_namespace).
        table: dict[str, EntityRef] = {}
        for i, dep in enumerate(dependencies):
            table.setdefault(dep.name, EntityRef(kind=EntityKind.DEPENDENCY, index=i))
        for i, (_, sub) in enumerate(subs):
            table.setdefault(sub.name, EntityRef(kind=EntityKind.SUBPROJECT, index=i))
        kinds = {sub.name: sub.kind for _, sub in subs}

        built: list[Subproject] = []
        for ordinal, (where, sub) in enumerate(subs):
            refs: list[EntityRef] = []
            components: list[SubComponentRef] = []
            for dep in sub.dependencies:
                name = dep.name if isinstance(dep, SubprojectDependency) else dep
                imports = dep.imports if isinstance(dep, SubprojectDependency) else None
                self._resolve_reference(
                    where, name, imports, table, kinds, dependencies, refs, components
                )

            if sub.src_dir:
                self._require_dir(f"{where}.src_dir", Path(sub.src_dir))
            for inc in sub.include_dirs:
                self._require_dir(f"{where}.include_dirs", Path(inc))

            if build is None:
                continue
            override = override_map.get(sub.name)
            built.append(Subproject(
                name=sub.name,
                kind=sub.kind,
                src_dir=Path(sub.src_dir) if sub.src_dir else None,
                include_dirs=tuple(Path(d) for d in sub.include_dirs),
                dependencies=tuple(refs),
                sub_components=tuple(components),
                output_name=sub.output_name or sub.name,
                compile=self._merge_compile_settings(build, override),
                parallel_jobs=override.parallel_jobs if override else None,
                ordinal=ordinal,
            ))
        return built

    def _resolve_reference(
        self,
        where: str,
        name: str,
        imports: list[str] | None,
        table: dict[str, EntityRef],
        kinds: dict[str, SubprojectType],
        dependencies: list[RemoteSpec | PkgConfigSpec | ManualSpec],
        refs: list[EntityRef],
        components: list[SubComponentRef],
    ) -> None:
        ref = table.get(name)
        if ref is None and "." in name:
            base_name, component = name.split(".", 1)
            base = table.get(base_name)
            if base is not None and base.kind == EntityKind.DEPENDENCY and isinstance(
                dependencies[base.index], RemoteSpec
            ):
                components.append(SubComponentRef(reference=name, base=base, component=component))
                return
        if ref is None:
            self._violations.append(
                f"{where}: dependency '{name}' does not name a declared dependency or subproject"
            )
            return

        if ref.kind == EntityKind.SUBPROJECT and kinds[name] == SubprojectType.BINARY:
            self._violations.append(f"{where}: cannot depend on binary subproject '{name}'")
            return

        if imports:
            if ref.kind == EntityKind.DEPENDENCY and isinstance(dependencies[ref.index], RemoteSpec):
                for component in imports:
                    components.append(SubComponentRef(
                        reference=f"{name}.{component}", base=ref, component=component
                    ))
            else:
                self._violations.append(
                    f"{where}: imports are only meaningful on remote dependencies, '{name}' is not one"
                )
        refs.append(ref)

    @staticmethod
    def _merge_compile_settings(
        build: BuildSettings, override: OverrideEntry | None
    ) -> CompileSettings:
        """Override cflags are appended; other override fields replace."""
        settings = CompileSettings(
            compiler=build.compiler,
            c_standard=build.c_standard,
            cflags=_split_flags(build.global_cflags),
            debug_flags=_split_flags(build.debug_flags),
            release_flags=_split_flags(build.release_flags),
        )
        if override is None:
            return settings
        updates: dict[str, Any] = {"extra_cflags": _split_flags(override.cflags)}
        if override.compiler:
            updates["compiler"] = override.compiler
        if override.c_standard:
            updates["c_standard"] = override.c_standard
        if override.debug_flags is not None:
            updates["debug_flags"] = _split_flags(override.debug_flags)
        if override.release_flags is not None:
            updates["release_flags"] = _split_flags(override.release_flags)
        return settings.model_copy(update=updates)

    def _require_dir(self, where: str, path: Path) -> None:
        if not self._check_paths:
            return
        if not (self._root / path).is_dir():
            self._violations.append(f"{where}: directory '{path}' does not exist")


def resolve_manifest(
    raw: Mapping[str, Any], root: Path, *, check_paths: bool = True
) -> Project:
    """Validate *raw* and return the resolved, immutable ``Project``.

    Raises
    ------
    ConfigError
        Listing every violation found.
    """
    return ManifestResolver(raw, root, check_paths=check_paths).resolve()
