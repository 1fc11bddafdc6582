"""Tests for engine settings: env-driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from iceforge.config import IceforgeSettings


class TestIceforgeSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ICEFORGE_LOG_LEVEL", raising=False)
        config = IceforgeSettings(_env_file=None)
        assert config.log_level == "INFO"
        assert config.state_dir == Path(".iceforge")
        assert config.build_dir == Path("build")
        assert config.deps_dir == Path(".iceforge/deps")
        assert config.archiver == "ar"
        assert config.stderr_tail_lines == 20

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("ICEFORGE_DEFAULT_PARALLEL_JOBS", "3")
        monkeypatch.setenv("ICEFORGE_BUILD_DIR", "out")
        config = IceforgeSettings(_env_file=None)
        assert config.default_parallel_jobs == 3
        assert config.build_dir == Path("out")

    def test_dotenv_file(self, tmp_dir, monkeypatch):
        monkeypatch.delenv("ICEFORGE_ARCHIVER", raising=False)
        env = tmp_dir / ".env"
        env.write_text("ICEFORGE_ARCHIVER=llvm-ar\n")
        assert IceforgeSettings(_env_file=env).archiver == "llvm-ar"

    def test_rejects_zero_jobs(self):
        with pytest.raises(ValidationError):
            IceforgeSettings(_env_file=None, default_parallel_jobs=0)


class TestResolveJobCap:
    def test_caller_wins(self):
        config = IceforgeSettings(_env_file=None, default_parallel_jobs=2)
        assert config.resolve_job_cap(7, 5) == 7

    def test_manifest_before_environment(self):
        config = IceforgeSettings(_env_file=None, default_parallel_jobs=2)
        assert config.resolve_job_cap(None, 5) == 5

    def test_environment_before_cpu_count(self):
        config = IceforgeSettings(_env_file=None, default_parallel_jobs=2)
        assert config.resolve_job_cap(None, None) == 2

    def test_cpu_count_fallback(self, monkeypatch):
        monkeypatch.setattr("iceforge.config.os.cpu_count", lambda: None)
        config = IceforgeSettings(_env_file=None, default_parallel_jobs=None)
        assert config.resolve_job_cap(None, None) == 1

    def test_invalid_request(self):
        config = IceforgeSettings(_env_file=None)
        with pytest.raises(ValueError, match=">= 1"):
            config.resolve_job_cap(0, None)
