"""Tests for canonical hashing helpers."""

from __future__ import annotations

import hashlib
from pathlib import Path

from iceforge.core.hasher import (
    canonical_json_bytes,
    compute_fingerprint,
    file_digest,
    sha256_hex,
)


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert canonical_json_bytes({"b": 1, "a": 2}) == canonical_json_bytes({"a": 2, "b": 1})

    def test_compact(self):
        assert canonical_json_bytes({"a": [1, 2]}) == b'{"a":[1,2]}'

    def test_paths_serialize_as_strings(self):
        assert canonical_json_bytes({"p": Path("x/y")}) == b'{"p":"x/y"}'


class TestDigests:
    def test_sha256_hex(self):
        assert sha256_hex(b"abc") == hashlib.sha256(b"abc").hexdigest()

    def test_file_digest_matches_bytes(self, tmp_dir: Path):
        path = tmp_dir / "big.bin"
        data = b"x" * 200_000
        path.write_bytes(data)
        assert file_digest(path) == sha256_hex(data)

    def test_fingerprint_depends_on_node_id(self):
        assert compute_fingerprint("a", {"k": 1}) != compute_fingerprint("b", {"k": 1})
        assert compute_fingerprint("a", {"k": 1}) == compute_fingerprint("a", {"k": 1})
