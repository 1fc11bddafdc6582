"""Resolved project model: the immutable output of the manifest resolver.

Cross-entity references are interned: a subproject's dependency list holds
``EntityRef`` indexes into the project's dependency and subproject arenas, so
nothing downstream of the resolver performs string lookups or can observe a
dangling reference.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from iceforge.core.templating import CommandTemplate
from iceforge.models.manifest import (
    BuildSettings,
    RebuildRule,
    RemoteBuildMethod,
    SubprojectType,
)


class BuildProfile(str, Enum):
    DEBUG = "debug"
    RELEASE = "release"


class EntityKind(str, Enum):
    DEPENDENCY = "dependency"
    SUBPROJECT = "subproject"


class EntityRef(BaseModel):
    """Index of a dependency spec or subproject inside the project arenas."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    index: int


class SubComponentRef(BaseModel):
    """A reference to a named unit *inside* a remote dependency.

    The manifest format has no schema for these yet, so they are carried
    through resolution unchanged and rejected by the dependency orchestrator.
    """

    model_config = ConfigDict(frozen=True)

    reference: str
    base: EntityRef
    component: str


# ---------------------------------------------------------------------------
# Dependency specs
# ---------------------------------------------------------------------------


class RemoteSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    name: str
    version: str | None = None
    source: str
    include_name: str | None = None
    include_dirs: tuple[str, ...] = ()
    build_method: RemoteBuildMethod = RemoteBuildMethod.HEADER_ONLY
    build_command: str | None = None
    build_output: str | None = None
    imports: tuple[str, ...] = ()


class PkgConfigSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pkg-config"] = "pkg-config"
    name: str
    query: str


class ManualSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["manual"] = "manual"
    name: str
    cflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()


DependencySpec = Annotated[
    Union[RemoteSpec, PkgConfigSpec, ManualSpec], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Subprojects and rules
# ---------------------------------------------------------------------------


class CompileSettings(BaseModel):
    """Effective compiler settings for one subproject, overrides merged in."""

    model_config = ConfigDict(frozen=True)

    compiler: str
    c_standard: str
    cflags: tuple[str, ...] = ()
    debug_flags: tuple[str, ...] = ()
    release_flags: tuple[str, ...] = ()
    extra_cflags: tuple[str, ...] = ()  # appended from the subproject's override

    def flags_for(self, profile: BuildProfile) -> tuple[str, ...]:
        """Global flags, then profile flags, then override additions."""
        profile_flags = self.debug_flags if profile == BuildProfile.DEBUG else self.release_flags
        return (*self.cflags, *profile_flags, *self.extra_cflags)


class Subproject(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: SubprojectType
    src_dir: Path | None = None
    include_dirs: tuple[Path, ...] = ()
    dependencies: tuple[EntityRef, ...] = ()
    sub_components: tuple[SubComponentRef, ...] = ()
    output_name: str
    compile: CompileSettings
    parallel_jobs: int | None = None  # override cap; None -> global cap
    ordinal: int = 0

    @property
    def is_buildable(self) -> bool:
        return self.kind != SubprojectType.HEADER_ONLY


class CustomRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    src_dir: Path
    output_dir: Path
    trigger_extensions: tuple[str, ...]
    output_extension: str
    command: CommandTemplate
    rebuild_rule: RebuildRule
    ordinal: int = 0


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class Project(BaseModel):
    """Root aggregate. Created once per invocation and never mutated."""

    model_config = ConfigDict(frozen=True)

    root: Path
    settings: BuildSettings
    dependencies: tuple[DependencySpec, ...] = ()
    subprojects: tuple[Subproject, ...] = ()
    custom_rules: tuple[CustomRule, ...] = ()

    @property
    def name(self) -> str:
        return self.root.name

    def resolve(self, ref: EntityRef) -> RemoteSpec | PkgConfigSpec | ManualSpec | Subproject:
        """Return the entity an interned reference points at."""
        if ref.kind == EntityKind.DEPENDENCY:
            return self.dependencies[ref.index]
        return self.subprojects[ref.index]

    def subproject(self, name: str) -> Subproject:
        for sub in self.subprojects:
            if sub.name == name:
                return sub
        raise KeyError(name)

    @property
    def remote_dependencies(self) -> list[RemoteSpec]:
        return [d for d in self.dependencies if isinstance(d, RemoteSpec)]
