"""Iceforge data models: all Pydantic v2, all frozen (immutable)."""

from iceforge.models.fingerprint import FingerprintCache, FingerprintRecord
from iceforge.models.graph import (
    SUCCESS_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    BuildUnit,
    CommandSpec,
    FetchSpec,
    NodeKind,
    NodeStatus,
)
from iceforge.models.manifest import (
    BuildSettings,
    RebuildRule,
    RemoteBuildMethod,
    SubprojectType,
)
from iceforge.models.project import (
    BuildProfile,
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
from iceforge.models.reports import BuildReport, NodeFailure

__all__ = [
    "BuildProfile",
    "BuildReport",
    "BuildSettings",
    "BuildUnit",
    "CommandSpec",
    "CompileSettings",
    "CustomRule",
    "EntityKind",
    "EntityRef",
    "FetchSpec",
    "FingerprintCache",
    "FingerprintRecord",
    "ManualSpec",
    "NodeFailure",
    "NodeKind",
    "NodeStatus",
    "PkgConfigSpec",
    "Project",
    "RebuildRule",
    "RemoteBuildMethod",
    "RemoteSpec",
    "SUCCESS_STATES",
    "SubComponentRef",
    "Subproject",
    "SubprojectType",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
]
