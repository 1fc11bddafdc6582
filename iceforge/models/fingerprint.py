"""Persisted fingerprint cache models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

FINGERPRINT_SCHEMA_VERSION = 1


class FingerprintRecord(BaseModel):
    """What the store remembers about one node after it last succeeded."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    digest: str
    outputs: list[str] = Field(default_factory=list)
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class FingerprintCache(BaseModel):
    """On-disk layout of ``fingerprints.json``. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = FINGERPRINT_SCHEMA_VERSION
    nodes: dict[str, FingerprintRecord] = Field(default_factory=dict)
