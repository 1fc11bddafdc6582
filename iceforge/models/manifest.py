"""Raw manifest entity models.

One model per repeatable manifest table. The resolver validates each entry on
its own so that a malformed entity never hides problems in its siblings.
Unknown keys are ignored for forward compatibility.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

_ENTRY_CONFIG = ConfigDict(
    frozen=True,
    extra="ignore",
    str_strip_whitespace=True,
    populate_by_name=True,
)


class RemoteBuildMethod(str, Enum):
    """How a fetched remote dependency turns into something linkable."""

    HEADER_ONLY = "header-only"
    CMAKE = "cmake"
    MESON = "meson"
    CUSTOM = "custom"


class SubprojectType(str, Enum):
    BINARY = "binary"
    LIBRARY = "library"
    HEADER_ONLY = "header-only"


class RebuildRule(str, Enum):
    """When a custom build rule re-executes."""

    IF_CHANGED = "if-changed"
    ALWAYS = "always"
    ON_TRIGGER = "on-trigger"


class BuildSettings(BaseModel):
    """The ``[build]`` table."""

    model_config = _ENTRY_CONFIG

    version: str
    c_standard: str = Field(min_length=1)
    compiler: str = Field(min_length=1)
    global_cflags: str | None = None
    debug_flags: str | None = None
    release_flags: str | None = None
    parallel_jobs: int | None = Field(default=None, ge=1)


class RemoteDependency(BaseModel):
    """A ``[[dependencies.remote]]`` entry: fetched from a VCS source."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    version: str | None = None
    source: str = Field(min_length=1)
    include_name: str | None = None
    include_dirs: list[str] = Field(default_factory=list)
    build_method: RemoteBuildMethod = RemoteBuildMethod.HEADER_ONLY
    build_command: str | None = None
    build_output: str | None = None
    imports: list[str] | None = None


class PkgConfigDependency(BaseModel):
    """A ``[[dependencies.pkg_config]]`` entry."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    pkg_config_query: str = Field(min_length=1)


class ManualDependency(BaseModel):
    """A ``[[dependencies.manual]]`` entry: literal flags only."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    cflags: str | None = None
    ldflags: str | None = None


class SubprojectDependency(BaseModel):
    """Table form of a subproject dependency: ``{name = "x", imports = [...]}``."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    imports: list[str] | None = None


class SubprojectEntry(BaseModel):
    """A ``[[subprojects]]`` entry."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    kind: SubprojectType = Field(alias="type")
    src_dir: str | None = None
    include_dirs: list[str] = Field(default_factory=list)
    dependencies: list[str | SubprojectDependency] = Field(default_factory=list)
    output_name: str | None = None

    @model_validator(mode="after")
    def _src_dir_required(self) -> SubprojectEntry:
        if self.kind != SubprojectType.HEADER_ONLY and not self.src_dir:
            raise ValueError(f"src_dir is required for {self.kind.value} subprojects")
        return self


class CustomBuildRuleEntry(BaseModel):
    """A ``[[custom_build_rules]]`` entry, e.g. shader compilation."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    description: str | None = None
    src_dir: str = Field(min_length=1)
    output_dir: str = Field(min_length=1)
    trigger_extensions: list[str] = Field(min_length=1)
    output_extension: str = Field(min_length=1)
    command: str = Field(min_length=1)
    rebuild_rule: RebuildRule


class OverrideEntry(BaseModel):
    """An ``[[overrides]]`` entry targeting exactly one subproject."""

    model_config = _ENTRY_CONFIG

    name: str = Field(min_length=1)
    c_standard: str | None = None
    compiler: str | None = None
    cflags: str | None = None
    debug_flags: str | None = None
    release_flags: str | None = None
    parallel_jobs: int | None = Field(default=None, ge=1)
