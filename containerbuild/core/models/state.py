"""
BuildState: record of the last build.

Serialized to ``<log_dir>/build-state.json``. Disposable: deleting it
only loses history, the next build writes a fresh one.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class FeatureRecord(BaseModel):
    """Outcome of one feature in the last build."""

    name: str
    status: str = ""                 # ok, failed, skipped
    version: str = ""
    duration_ms: int = 0
    errors: int = 0
    warnings: int = 0
    verification_tier: str | None = None
    error: str | None = None
    finished_at: str | None = None


class BuildRecord(BaseModel):
    """Summary of the last build run."""

    build_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""                 # ok, partial, failed
    features_total: int = 0
    features_succeeded: int = 0
    features_failed: int = 0


class BuildState(BaseModel):
    """Root state model."""

    schema_version: int = 1

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    features: dict[str, FeatureRecord] = Field(default_factory=dict)
    last_build: BuildRecord = Field(default_factory=BuildRecord)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_feature(self, name: str, **kwargs: Any) -> None:
        """Update or create a feature record."""
        if name in self.features:
            for key, value in kwargs.items():
                setattr(self.features[name], key, value)
        else:
            self.features[name] = FeatureRecord(name=name, **kwargs)
