"""Tests for manifest loading and the toolchain probe."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

from iceforge.core.errors import ConfigError
from iceforge.core.executors import ProcessResult
from iceforge.core.manifest_loader import load_project, read_manifest
from iceforge.core.toolchain import probe_compiler, probe_toolchain


class RejectingExecutor:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def execute(self, command: Sequence[str], workdir: Path, timeout: float | None = None) -> ProcessResult:
        self.calls.append(list(command))
        return ProcessResult(exit_code=1, stderr="error: invalid value 'c99x' in '-std=c99x'")


class TestManifestLoader:
    def test_reads_toml(self, tmp_dir):
        path = tmp_dir / "iceforge.toml"
        path.write_text('[build]\nversion = "1.0"\n')
        assert read_manifest(path) == {"build": {"version": "1.0"}}

    def test_missing_file(self, tmp_dir):
        with pytest.raises(ConfigError, match="does not exist"):
            read_manifest(tmp_dir / "iceforge.toml")

    def test_invalid_toml(self, tmp_dir):
        path = tmp_dir / "iceforge.toml"
        path.write_text("[build\n")
        with pytest.raises(ConfigError, match="not valid TOML"):
            read_manifest(path)

    def test_manifest_directory_is_the_root(self, tmp_dir):
        (tmp_dir / "proj" / "src").mkdir(parents=True)
        path = tmp_dir / "proj" / "iceforge.toml"
        path.write_text(
            '[build]\nversion = "1"\nc_standard = "c11"\ncompiler = "cc"\n\n'
            '[[subprojects]]\nname = "app"\ntype = "binary"\nsrc_dir = "src"\n'
        )
        project = load_project(path)
        assert project.root == (tmp_dir / "proj").resolve()
        assert project.subproject("app").src_dir == Path("src")

    def test_validation_errors_surface(self, tmp_dir):
        path = tmp_dir / "iceforge.toml"
        path.write_text('[build]\nversion = "1"\n')
        with pytest.raises(ConfigError):
            load_project(path)


class TestToolchainProbe:
    def test_missing_compiler(self):
        problems = probe_compiler("definitely-not-a-compiler-xyz", "c11")
        assert problems == ["build.compiler: 'definitely-not-a-compiler-xyz' was not found on PATH"]

    def test_rejected_standard(self):
        executor = RejectingExecutor()
        # Any binary on PATH passes the lookup; the executor decides the rest.
        problems = probe_compiler(sys.executable, "c99x", executor)
        assert problems == [f"build.c_standard: '{sys.executable}' does not accept -std=c99x"]
        assert executor.calls[0][1] == "-std=c99x"

    def test_probe_toolchain_raises_config_error(self, core_game):
        with pytest.raises(ConfigError) as excinfo:
            probe_toolchain(core_game, RejectingExecutor())
        assert excinfo.value.violations
