"""
enabled-features.conf: build-time feature flags visible at runtime.

Flat ``KEY=value`` file. Written once at the end of the build so that
runtime scripts (startup hooks, ``claude-setup``) know which toolchains
exist in the image without probing for them.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

HEADER = "# Auto-generated at build time - DO NOT EDIT"


def _format_value(value: bool | str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if any(ch in text for ch in " \t\"'$;&|") or text == "":
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def render_enabled_features(flags: Mapping[str, bool | str]) -> str:
    """Render flags as the file's text content."""
    lines = [HEADER, "# Sourced by runtime scripts to see which features are installed", ""]
    for key, value in flags.items():
        lines.append(f"{key}={_format_value(value)}")
    return "\n".join(lines) + "\n"


def write_enabled_features(path: Path, flags: Mapping[str, bool | str]) -> Path:
    """Write the flags file atomically with mode 0644."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = render_enabled_features(flags)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".features_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.chmod(0o644)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("Wrote %d feature flags to %s", len(flags), path)
    return path


def read_enabled_features(path: Path) -> dict[str, str]:
    """Read the flags file. Missing file → empty dict."""
    if not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        values[key.strip()] = value
    return values


def is_enabled(flags: Mapping[str, str], key: str) -> bool:
    """Whether a flag read from the file is set to ``true``."""
    return flags.get(key, "false").strip().lower() == "true"
