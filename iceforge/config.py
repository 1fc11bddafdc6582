"""Engine configuration: env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
ICEFORGE_* environment variables. Paths are relative to the project root.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IceforgeSettings(BaseSettings):
    """Engine settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ICEFORGE_LOG_LEVEL=DEBUG
        export ICEFORGE_DEFAULT_PARALLEL_JOBS=4
        export ICEFORGE_NODE_TIMEOUT_SECONDS=600

    Or via .env file::

        ICEFORGE_BUILD_DIR=out
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ICEFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Layout, relative to the project root
    state_dir: Path = Path(".iceforge")
    build_dir: Path = Path("build")
    deps_dir: Path = Path(".iceforge/deps")

    # Scheduling
    default_parallel_jobs: int | None = Field(default=None, ge=1)
    node_timeout_seconds: float | None = Field(default=None, gt=0)

    # Toolchain conventions
    archiver: str = "ar"
    source_extensions: tuple[str, ...] = (".c",)
    header_extensions: tuple[str, ...] = (".h",)

    # Reporting
    stderr_tail_lines: int = Field(default=20, ge=1)

    def resolve_job_cap(self, requested: int | None, manifest_jobs: int | None) -> int:
        """Pick the global job cap: caller, then manifest, then env, then CPUs."""
        for candidate in (requested, manifest_jobs, self.default_parallel_jobs):
            if candidate is not None:
                if candidate < 1:
                    raise ValueError(f"parallel job cap must be >= 1, got {candidate}")
                return candidate
        return os.cpu_count() or 1


# Module-level singleton, import as `from iceforge.config import settings`
settings = IceforgeSettings()
