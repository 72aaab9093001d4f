"""
Pinned checksum database.

A git-tracked JSON file of reviewed digests:

    {
      "languages": {"python": {"versions": {"3.13.7": {"sha256": "..."}}}},
      "tools":     {"kubectl": {"versions": {"1.33.0": {"sha256": "..."}}}}
    }

Entries still holding the template placeholder count as missing.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PLACEHOLDER = "placeholder_actual_checksum_needed"

_SECTIONS = {"language": "languages", "tool": "tools"}


class ChecksumDatabase:
    """Read-only view over ``checksums.json``."""

    def __init__(self, data: dict[str, Any] | None = None, path: Path | None = None):
        self._data = data or {}
        self.path = path

    @classmethod
    def load(cls, path: Path) -> ChecksumDatabase:
        """Load the database; a missing or corrupt file gives an empty one."""
        if not path.is_file():
            logger.debug("No pinned checksum database at %s", path)
            return cls({}, path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Cannot read pinned checksums from %s: %s", path, e)
            return cls({}, path)
        if not isinstance(data, dict):
            logger.warning("Pinned checksum database %s is not a JSON object", path)
            return cls({}, path)
        return cls(data, path)

    def lookup(self, category: str, name: str, version: str) -> str | None:
        """Pinned SHA-256 for ``name`` ``version``, or None."""
        section = _SECTIONS.get(category)
        if section is None:
            return None
        try:
            value = self._data[section][name]["versions"][version]["sha256"]
        except (KeyError, TypeError):
            return None
        if not isinstance(value, str) or not value or value == PLACEHOLDER:
            return None
        return value

    def versions(self, category: str, name: str) -> list[str]:
        section = _SECTIONS.get(category, "")
        try:
            return list(self._data[section][name]["versions"])
        except (KeyError, TypeError):
            return []


def lookup_pinned_checksum(path: Path, category: str, name: str, version: str) -> str | None:
    return ChecksumDatabase.load(path).lookup(category, name, version)
