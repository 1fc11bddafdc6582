"""Shared test fixtures for Iceforge."""

from __future__ import annotations

import re
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

import pytest

from iceforge.config import IceforgeSettings
from iceforge.core.engine import BuildEngine
from iceforge.core.errors import FetchError
from iceforge.core.executors import ProcessResult
from iceforge.core.resolver import resolve_manifest
from iceforge.models.project import Project

_OWNER_PATTERNS = (
    re.compile(r"/obj/([^/]+)/"),
    re.compile(r"/lib/lib([^/]+)\.a$"),
    re.compile(r"/bin/([^/]+)$"),
)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeExecutor:
    """Records commands and writes the outputs a real toolchain would.

    Output detection: the argument after ``-o``, the archive of ``ar rcs``,
    or the last argument of ``cp``. Any command whose text contains one of
    ``fail_on`` exits 1 without writing anything.
    """

    def __init__(self, *, delay: float = 0.0, fail_on: Iterable[str] = ()) -> None:
        self.delay = delay
        self.fail_on = set(fail_on)
        self.calls: list[tuple[tuple[str, ...], Path]] = []
        self.max_concurrency = 0
        self.max_by_owner: dict[str, int] = defaultdict(int)
        self._running = 0
        self._running_by_owner: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    @staticmethod
    def output_of(argv: Sequence[str]) -> str | None:
        if "-o" in argv:
            return argv[argv.index("-o") + 1]
        if argv and argv[0] == "ar" and len(argv) > 2:
            return argv[2]
        if argv and argv[0] == "cp":
            return argv[-1]
        return None

    @classmethod
    def owner_of(cls, argv: Sequence[str]) -> str | None:
        out = cls.output_of(argv)
        if out is None:
            return None
        for pattern in _OWNER_PATTERNS:
            match = pattern.search("/" + out)
            if match:
                return match.group(1)
        return None

    @property
    def commands(self) -> list[tuple[str, ...]]:
        with self._lock:
            return [argv for argv, _ in self.calls]

    def reset(self) -> None:
        with self._lock:
            self.calls.clear()
            self.max_concurrency = 0
            self.max_by_owner.clear()

    def execute(
        self,
        command: Sequence[str],
        workdir: Path,
        timeout: float | None = None,
    ) -> ProcessResult:
        argv = tuple(command)
        owner = self.owner_of(argv)
        with self._lock:
            self.calls.append((argv, Path(workdir)))
            self._running += 1
            self.max_concurrency = max(self.max_concurrency, self._running)
            if owner is not None:
                self._running_by_owner[owner] += 1
                self.max_by_owner[owner] = max(
                    self.max_by_owner[owner], self._running_by_owner[owner]
                )
        try:
            if self.delay:
                time.sleep(self.delay)
            text = " ".join(argv)
            if any(pattern in text for pattern in self.fail_on):
                return ProcessResult(exit_code=1, stderr="warning: first\nerror: boom\n")
            out = self.output_of(argv)
            if out is not None:
                target = Path(out) if Path(out).is_absolute() else Path(workdir) / out
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(text, encoding="utf-8")
            return ProcessResult(exit_code=0)
        finally:
            with self._lock:
                self._running -= 1
                if owner is not None:
                    self._running_by_owner[owner] -= 1


class FakeFetcher:
    """Creates an empty checkout directory per (source, version)."""

    def __init__(self, root: Path, *, fail_for: Iterable[str] = ()) -> None:
        self.root = Path(root)
        self.fail_for = set(fail_for)
        self.fetched: list[tuple[str, str | None]] = []
        self._lock = threading.Lock()

    def checkout_path(self, source_url: str, version: str | None) -> Path:
        stem = source_url.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git")
        return self.root / (f"{stem}@{version}" if version else stem)

    def ensure_checkout(self, source_url: str, version: str | None) -> Path:
        with self._lock:
            self.fetched.append((source_url, version))
        if source_url in self.fail_for:
            raise FetchError(f"cannot reach {source_url}")
        path = self.checkout_path(source_url, version)
        path.mkdir(parents=True, exist_ok=True)
        return path


class FakePackageQuery:
    """Answers ``pkg-config`` queries from a fixed table."""

    def __init__(self, packages: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] | None = None) -> None:
        self.packages = packages or {}
        self.queries: list[str] = []

    def query(self, query: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
        self.queries.append(query)
        if query not in self.packages:
            raise FetchError(f"pkg-config does not know '{query}'")
        return self.packages[query]


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------


def build_section(**overrides: Any) -> dict[str, Any]:
    section = {
        "version": "0.1.0",
        "c_standard": "c11",
        "compiler": "cc",
        "global_cflags": "-Wall",
        "debug_flags": "-g -O0",
        "release_flags": "-O2",
    }
    section.update(overrides)
    return section


def core_game_manifest() -> dict[str, Any]:
    """A library ``core`` (two sources) used by a binary ``game`` (one source)."""
    return {
        "build": build_section(),
        "subprojects": [
            {
                "name": "core",
                "type": "library",
                "src_dir": "core/src",
                "include_dirs": ["core/include"],
            },
            {
                "name": "game",
                "type": "binary",
                "src_dir": "game/src",
                "dependencies": ["core"],
            },
        ],
    }


CORE_GAME_FILES = {
    "core/src/a.c": "int a(void) { return 1; }\n",
    "core/src/b.c": "int b(void) { return 2; }\n",
    "core/include/core.h": "int a(void);\nint b(void);\n",
    "game/src/main.c": '#include "core.h"\nint main(void) { return a() + b(); }\n',
}


def write_files(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary project root."""
    return tmp_path


@pytest.fixture
def settings() -> IceforgeSettings:
    """Engine settings independent of the developer's environment."""
    return IceforgeSettings(_env_file=None, default_parallel_jobs=4)


@pytest.fixture
def make_project(tmp_dir: Path) -> Callable[..., Project]:
    """Factory fixture: write *files* under the root and resolve *raw*."""

    def _factory(raw: dict[str, Any], files: dict[str, str] | None = None, **kwargs: Any) -> Project:
        write_files(tmp_dir, files or {})
        return resolve_manifest(raw, tmp_dir, **kwargs)

    return _factory


@pytest.fixture
def core_game(make_project: Callable[..., Project]) -> Project:
    return make_project(core_game_manifest(), CORE_GAME_FILES)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def fetcher(tmp_dir: Path) -> FakeFetcher:
    return FakeFetcher(tmp_dir / ".iceforge" / "deps")


@pytest.fixture
def package_query() -> FakePackageQuery:
    return FakePackageQuery({"sdl2": (("-I/usr/include/SDL2",), ("-lSDL2",))})


@pytest.fixture
def make_engine(
    settings: IceforgeSettings,
    executor: FakeExecutor,
    fetcher: FakeFetcher,
    package_query: FakePackageQuery,
) -> Callable[..., BuildEngine]:
    """Factory fixture: an engine wired to the fake collaborators."""

    def _factory(project: Project, **overrides: Any) -> BuildEngine:
        kwargs: dict[str, Any] = {
            "settings": settings,
            "executor": executor,
            "fetcher": fetcher,
            "package_query": package_query,
        }
        kwargs.update(overrides)
        return BuildEngine(project, **kwargs)

    return _factory


@pytest.fixture
def core_game_raw() -> dict[str, Any]:
    return core_game_manifest()


@pytest.fixture
def core_game_files() -> dict[str, str]:
    return dict(CORE_GAME_FILES)


@pytest.fixture
def build_table() -> Callable[..., dict[str, Any]]:
    """Factory fixture: a valid ``[build]`` table with overrides applied."""
    return build_section


@pytest.fixture
def make_executor() -> Callable[..., FakeExecutor]:
    """Factory fixture: a FakeExecutor with custom delay or failures."""
    return FakeExecutor


@pytest.fixture
def make_fetcher(tmp_dir: Path) -> Callable[..., FakeFetcher]:
    """Factory fixture: a FakeFetcher rooted at the default deps dir."""

    def _factory(**kwargs: Any) -> FakeFetcher:
        return FakeFetcher(tmp_dir / ".iceforge" / "deps", **kwargs)

    return _factory
