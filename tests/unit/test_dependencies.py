"""Tests for the DependencyOrchestrator: per-variant planning."""

from __future__ import annotations

from pathlib import Path

import pytest

from iceforge.core.dependencies import (
    DependencyOrchestrator,
    dependency_build_node_id,
    fetch_node_id,
    flags_node_id,
)
from iceforge.core.errors import ResolutionError
from iceforge.core.layout import BuildLayout
from iceforge.core.resolver import resolve_manifest
from iceforge.models.graph import NodeKind
from iceforge.models.project import BuildProfile


@pytest.fixture
def plan_for(tmp_dir, fetcher, package_query):
    def _plan(dependencies: dict, profile: BuildProfile = BuildProfile.DEBUG, subprojects=None):
        raw = {
            "build": {"version": "1", "c_standard": "c11", "compiler": "cc"},
            "dependencies": dependencies,
            "subprojects": subprojects or [],
        }
        project = resolve_manifest(raw, tmp_dir, check_paths=False)
        layout = BuildLayout(tmp_dir, Path("build"), profile)
        return DependencyOrchestrator(project, layout, fetcher, package_query).orchestrate()

    return _plan


class TestFlagOnlyDependencies:
    def test_manual_dependency_is_flag_only(self, plan_for):
        plan = plan_for({"manual": [{"name": "m", "cflags": "-DM", "ldflags": "-lm"}]})
        (unit,) = plan.units
        assert unit.node_id == flags_node_id("m")
        assert unit.kind == NodeKind.FLAG_ONLY
        assert not unit.executes
        contribution = plan.contribution("m")
        assert contribution.cflags == ("-DM",)
        assert contribution.ldflags == ("-lm",)
        assert contribution.compile_nodes == contribution.link_nodes == (unit.node_id,)

    def test_pkg_config_flags_come_from_query(self, plan_for, package_query):
        plan = plan_for({"pkg_config": [{"name": "sdl", "pkg_config_query": "sdl2"}]})
        (unit,) = plan.units
        assert unit.error is None
        assert plan.contribution("sdl").cflags == ("-I/usr/include/SDL2",)
        assert plan.contribution("sdl").ldflags == ("-lSDL2",)
        assert package_query.queries == ["sdl2"]

    def test_unknown_pkg_config_package_is_recorded_not_raised(self, plan_for):
        plan = plan_for({"pkg_config": [{"name": "gtk", "pkg_config_query": "gtk4"}]})
        (unit,) = plan.units
        assert unit.error is not None
        assert "gtk4" in unit.error


class TestRemoteDependencies:
    def test_header_only_remote(self, plan_for, fetcher, tmp_dir):
        plan = plan_for({"remote": [{
            "name": "stb",
            "source": "https://github.com/nothings/stb.git",
            "version": "abc123",
        }]})
        fetch, flags = plan.units
        assert fetch.node_id == fetch_node_id("stb")
        assert fetch.kind == NodeKind.FETCH
        assert fetch.fetch is not None and fetch.fetch.version == "abc123"
        checkout = Path(".iceforge/deps/stb@abc123")
        assert fetch.outputs == (checkout,)
        assert flags.predecessors == (fetch.node_id,)
        contribution = plan.contribution("stb")
        assert contribution.include_dirs == (checkout,)
        assert contribution.compile_nodes == (flags.node_id,)
        # Nothing is fetched while planning.
        assert fetcher.fetched == []

    def test_include_dirs_are_relative_to_checkout(self, plan_for):
        plan = plan_for({"remote": [{
            "name": "lib", "source": "https://x/lib.git", "include_dirs": ["include", "gen"],
        }]})
        assert plan.contribution("lib").include_dirs == (
            Path(".iceforge/deps/lib/include"),
            Path(".iceforge/deps/lib/gen"),
        )

    def test_cmake_remote_builds_after_fetch(self, plan_for):
        plan = plan_for({"remote": [{
            "name": "glfw", "source": "https://x/glfw.git", "build_method": "cmake",
            "include_name": "glfw3",
        }]}, profile=BuildProfile.RELEASE)
        fetch, build = plan.units
        assert build.node_id == dependency_build_node_id("glfw")
        assert build.kind == NodeKind.DEPENDENCY_BUILD
        assert build.predecessors == (fetch.node_id,)
        assert build.command is not None
        assert build.command.workdir == Path(".iceforge/deps/glfw")
        assert build.command.steps[0][-1] == "-DCMAKE_BUILD_TYPE=Release"
        artifact = Path(".iceforge/deps/glfw/build/libglfw3.a")
        assert build.outputs == (artifact,)
        contribution = plan.contribution("glfw")
        assert contribution.link_artifacts == (artifact,)
        assert build.include_dirs == (Path(".iceforge/deps/glfw"),)
        assert contribution.compile_nodes == (build.node_id,)
        assert contribution.link_nodes == (build.node_id,)

    def test_meson_remote_uses_profile_buildtype(self, plan_for):
        plan = plan_for({"remote": [{
            "name": "m", "source": "https://x/m.git", "build_method": "meson",
        }]})
        build = plan.units[1]
        assert "--buildtype=debug" in build.command.steps[0]
        assert build.command.steps[1] == ("meson", "compile", "-C", "build")

    def test_custom_remote_runs_build_command(self, plan_for):
        plan = plan_for({"remote": [{
            "name": "lua",
            "source": "https://x/lua.git",
            "build_method": "custom",
            "build_command": "make liblua.a",
            "build_output": "src/liblua.a",
        }]})
        build = plan.units[1]
        assert build.command.steps == (("sh", "-c", "make liblua.a"),)
        assert build.outputs == (Path(".iceforge/deps/lua/src/liblua.a"),)

    def test_custom_remote_without_command_is_unresolvable(self, plan_for):
        with pytest.raises(ResolutionError, match="has no build_command"):
            plan_for({"remote": [{
                "name": "lua", "source": "https://x/lua.git", "build_method": "custom",
            }]})

    def test_sub_component_reference_is_unresolvable(self, plan_for):
        with pytest.raises(ResolutionError, match="engine.audio"):
            plan_for(
                {"remote": [{"name": "engine", "source": "https://x/engine.git", "imports": ["audio"]}]},
                subprojects=[{
                    "name": "app", "type": "binary", "src_dir": "app",
                    "dependencies": ["engine.audio"],
                }],
            )
