"""Tests for the StalenessEngine: fingerprints and verdicts."""

from __future__ import annotations

from pathlib import Path

import pytest

from iceforge.core.fingerprint_store import FingerprintStore
from iceforge.core.hasher import sha256_hex
from iceforge.core.staleness import MISSING_DIGEST, StalenessEngine
from iceforge.models.graph import BuildUnit, CommandSpec, FetchSpec, NodeKind
from iceforge.models.manifest import RebuildRule


@pytest.fixture
def store(tmp_dir: Path) -> FingerprintStore:
    return FingerprintStore(tmp_dir / ".iceforge")


@pytest.fixture
def source(tmp_dir: Path) -> Path:
    (tmp_dir / "src").mkdir()
    (tmp_dir / "src" / "a.c").write_text("int a;\n")
    return Path("src/a.c")


def _compile(source: Path, *, flags: tuple[str, ...] = ("-O0",), preds: tuple[str, ...] = ()) -> BuildUnit:
    return BuildUnit(
        node_id=f"compile:x:{source.as_posix()}",
        kind=NodeKind.COMPILE,
        scope="x",
        inputs=(source,),
        outputs=(Path("build/a.o"),),
        command=CommandSpec(steps=(("cc", *flags, "-c", str(source), "-o", "build/a.o"),), workdir=Path(".")),
        predecessors=preds,
    )


def _custom(rule: RebuildRule) -> BuildUnit:
    return BuildUnit(
        node_id="custom:gen:gen/x.in",
        kind=NodeKind.CUSTOM_RULE,
        scope="gen",
        outputs=(Path("out/x.in.c"),),
        rule_name="gen",
        rebuild_rule=rule,
    )


class TestFingerprint:
    def test_deterministic(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        unit = _compile(source)
        assert engine.fingerprint(unit, {}) == engine.fingerprint(unit, {})

    def test_content_change_changes_fingerprint(self, tmp_dir, store, source):
        unit = _compile(source)
        before = StalenessEngine(tmp_dir, store).fingerprint(unit, {})
        (tmp_dir / source).write_text("int a = 2;\n")
        after = StalenessEngine(tmp_dir, store).fingerprint(unit, {})
        assert before != after

    def test_command_change_changes_fingerprint(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        assert engine.fingerprint(_compile(source), {}) != engine.fingerprint(
            _compile(source, flags=("-O2",)), {}
        )

    def test_dependency_headers_are_digested(self, tmp_dir, store):
        unit = BuildUnit(
            node_id="flags:stb",
            kind=NodeKind.FLAG_ONLY,
            scope="stb",
            include_dirs=(Path(".iceforge/deps/stb"),),
        )
        empty = StalenessEngine(tmp_dir, store).fingerprint(unit, {})
        checkout = tmp_dir / ".iceforge/deps/stb"
        checkout.mkdir(parents=True)
        (checkout / "README").write_text("not a header")
        assert StalenessEngine(tmp_dir, store).fingerprint(unit, {}) == empty

        (checkout / "stb.h").write_text("int v1;\n")
        engine = StalenessEngine(tmp_dir, store)
        assert engine.header_digests(unit.include_dirs) == {
            ".iceforge/deps/stb/stb.h": sha256_hex(b"int v1;\n"),
        }
        first = engine.fingerprint(unit, {})
        (checkout / "stb.h").write_text("int v2;\n")
        assert first != empty
        assert StalenessEngine(tmp_dir, store).fingerprint(unit, {}) != first

    def test_predecessor_fingerprints_feed_forward(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        unit = _compile(source, preds=("flags:m",))
        assert engine.fingerprint(unit, {"flags:m": "one"}) != engine.fingerprint(
            unit, {"flags:m": "two"}
        )

    def test_input_digest_is_content_hash(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        assert engine.input_digest(source) == sha256_hex(b"int a;\n")

    def test_missing_input_has_sentinel_digest(self, tmp_dir, store):
        engine = StalenessEngine(tmp_dir, store)
        assert engine.input_digest(Path("nope.c")) == MISSING_DIGEST

    def test_fetch_fingerprint_ignores_checkout_contents(self, tmp_dir, store):
        engine = StalenessEngine(tmp_dir, store)

        def fetch(version: str) -> BuildUnit:
            checkout = Path(".iceforge/deps/lib")
            return BuildUnit(
                node_id="fetch:lib",
                kind=NodeKind.FETCH,
                scope="lib",
                outputs=(checkout,),
                fetch=FetchSpec(source="https://x/lib.git", version=version, checkout=checkout),
            )

        assert engine.fingerprint(fetch("v1"), {}) == engine.fingerprint(fetch("v1"), {})
        assert engine.fingerprint(fetch("v1"), {}) != engine.fingerprint(fetch("v2"), {})


class TestAssess:
    def test_never_built_is_stale(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        unit = _compile(source)
        verdict = engine.assess(unit, engine.fingerprint(unit, {}))
        assert verdict.stale and verdict.reason == "never built"

    def test_recorded_with_outputs_is_up_to_date(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        unit = _compile(source)
        fp = engine.fingerprint(unit, {})
        (tmp_dir / "build").mkdir()
        (tmp_dir / "build" / "a.o").write_text("obj")
        store.record(unit.node_id, fp, unit.outputs)
        assert not engine.assess(unit, fp).stale

    def test_missing_output_is_stale(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        unit = _compile(source)
        fp = engine.fingerprint(unit, {})
        store.record(unit.node_id, fp, unit.outputs)
        verdict = engine.assess(unit, fp)
        assert verdict.stale and "missing" in verdict.reason

    def test_different_fingerprint_is_stale(self, tmp_dir, store, source):
        engine = StalenessEngine(tmp_dir, store)
        unit = _compile(source)
        store.record(unit.node_id, "older")
        assert engine.assess(unit, engine.fingerprint(unit, {})).reason == "inputs changed"

    def test_forced_is_stale(self, tmp_dir, store, source):
        unit = _compile(source)
        engine = StalenessEngine(tmp_dir, store, forced=[unit.node_id])
        assert engine.assess(unit, "fp").reason == "forced"

    def test_always_rule_is_always_stale(self, tmp_dir, store):
        engine = StalenessEngine(tmp_dir, store)
        unit = _custom(RebuildRule.ALWAYS)
        store.record(unit.node_id, "fp")
        assert engine.assess(unit, "fp").stale

    def test_on_trigger_rule_idle_without_trigger(self, tmp_dir, store):
        engine = StalenessEngine(tmp_dir, store)
        unit = _custom(RebuildRule.ON_TRIGGER)
        assert not engine.assess(unit, "fp").stale

    def test_on_trigger_rule_runs_when_triggered(self, tmp_dir, store):
        engine = StalenessEngine(tmp_dir, store, triggers=["gen"])
        unit = _custom(RebuildRule.ON_TRIGGER)
        store.record(unit.node_id, "fp")
        assert engine.assess(unit, "fp").reason == "triggered"

    def test_if_changed_rule_follows_generic_rule(self, tmp_dir, store):
        engine = StalenessEngine(tmp_dir, store)
        unit = _custom(RebuildRule.IF_CHANGED)
        assert engine.assess(unit, "fp").stale
        (tmp_dir / "out").mkdir()
        (tmp_dir / "out" / "x.in.c").write_text("")
        store.record(unit.node_id, "fp")
        assert not engine.assess(unit, "fp").stale
