"""Fingerprint store: persisted record of what each node last produced.

One JSON file per project root (``<state_dir>/fingerprints.json``). The file
is rewritten atomically: serialized to a temporary file in the same directory
and moved into place with ``os.replace``, so an interrupted build never
leaves a truncated cache behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from iceforge.models.fingerprint import (
    FINGERPRINT_SCHEMA_VERSION,
    FingerprintCache,
    FingerprintRecord,
)

logger = logging.getLogger(__name__)

FINGERPRINT_FILENAME = "fingerprints.json"


class FingerprintStore:
    """Thread-safe, lazily loaded fingerprint cache.

    Parameters
    ----------
    state_dir:
        Directory holding ``fingerprints.json``. Created on first flush.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)
        self._path = self._state_dir / FINGERPRINT_FILENAME
        self._lock = threading.Lock()
        self._nodes: dict[str, FingerprintRecord] | None = None
        self._dirty = False

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Read the cache from disk, discarding it if unreadable."""
        with self._lock:
            self._nodes = self._read()
            self._dirty = False

    def _read(self) -> dict[str, FingerprintRecord]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            cache = FingerprintCache.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "Fingerprint cache %s is unreadable (%s); every node will rebuild",
                self._path,
                exc,
            )
            return {}
        if cache.schema_version != FINGERPRINT_SCHEMA_VERSION:
            logger.warning(
                "Fingerprint cache schema %d is not %d; starting fresh",
                cache.schema_version,
                FINGERPRINT_SCHEMA_VERSION,
            )
            return {}
        return dict(cache.nodes)

    def _ensure_loaded(self) -> dict[str, FingerprintRecord]:
        # Caller holds the lock.
        if self._nodes is None:
            self._nodes = self._read()
        return self._nodes

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, node_id: str) -> FingerprintRecord | None:
        with self._lock:
            return self._ensure_loaded().get(node_id)

    def node_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._ensure_loaded())

    def record(self, node_id: str, digest: str, outputs: Iterable[Path | str] = ()) -> None:
        """Remember that *node_id* succeeded with fingerprint *digest*."""
        entry = FingerprintRecord(digest=digest, outputs=[Path(o).as_posix() for o in outputs])
        with self._lock:
            self._ensure_loaded()[node_id] = entry
            self._dirty = True

    def invalidate(self, node_id: str) -> bool:
        """Forget *node_id*. Returns whether a record existed."""
        with self._lock:
            removed = self._ensure_loaded().pop(node_id, None) is not None
            self._dirty = self._dirty or removed
            return removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> bool:
        """Write the cache if anything changed since the last load / flush.

        Returns ``True`` when the file was rewritten.
        """
        with self._lock:
            if not self._dirty or self._nodes is None:
                return False
            cache = FingerprintCache(nodes=self._nodes)
            payload = cache.model_dump_json(indent=2)
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".fingerprints-", suffix=".tmp", dir=self._state_dir
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            self._dirty = False
            logger.debug("Wrote %d fingerprint(s) to %s", len(self._nodes), self._path)
            return True
