"""
Structured build events: one JSONL file per feature.

Enabled with ``ENABLE_JSON_LOGGING=true`` (or ``json_logging: true`` in
build.yml). Every event carries the build's correlation id so events
from different features can be joined. Append-only.
"""

from __future__ import annotations

import json
import logging
import random
import string
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from containerbuild.core.observability.scrub import scrub_secrets

logger = logging.getLogger(__name__)


def _now_iso_ms() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def generate_correlation_id() -> str:
    """``build-<epoch>-<6 random chars>``"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"build-{int(time.time())}-{suffix}"


class BuildEvent(BaseModel):
    """A single JSONL event."""

    timestamp: str = Field(default_factory=_now_iso_ms)
    level: str = "INFO"
    correlation_id: str = ""
    event_type: str = ""           # feature_start, command, error, warning, feature_end
    feature: str = "unknown"
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class JsonEventLog:
    """Append-only JSONL writer for one build.

    ``enabled=False`` turns every call into a no-op, so callers never
    need to check the setting themselves.
    """

    def __init__(self, directory: Path, correlation_id: str | None = None, enabled: bool = True):
        self._dir = directory
        self.correlation_id = correlation_id or generate_correlation_id()
        self.enabled = enabled
        if self.enabled:
            try:
                self._dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("Cannot create JSON log directory at %s: %s", self._dir, e)
                self.enabled = False

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, safe_name: str) -> Path:
        return self._dir / f"{safe_name}.jsonl"

    def event(
        self,
        safe_name: str,
        feature: str,
        event_type: str,
        message: str,
        level: str = "INFO",
        **metadata: Any,
    ) -> BuildEvent | None:
        """Append one event to the feature's JSONL file."""
        if not self.enabled:
            return None

        entry = BuildEvent(
            level=level,
            correlation_id=self.correlation_id,
            event_type=event_type,
            feature=feature,
            message=scrub_secrets(message),
            metadata=metadata,
        )
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            with self.path_for(safe_name).open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write JSON event: %s", e)
        return entry

    def read(self, safe_name: str) -> list[BuildEvent]:
        """Read back a feature's events, skipping corrupt lines."""
        path = self.path_for(safe_name)
        if not path.is_file():
            return []
        events = []
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(BuildEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Skipping corrupt event at %s:%d: %s", path, line_num, e)
        return events
