"""
State file persistence: atomic read/write for BuildState.

Writes go to a temp file in the same directory and are renamed into
place, so a crashed build never leaves a half-written state file.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from containerbuild.core.models.state import BuildState

logger = logging.getLogger(__name__)


def load_state(path: Path) -> BuildState:
    """Load build state. Missing or unreadable files give a fresh state."""
    if not path.is_file():
        logger.info("No state file at %s, starting fresh", path)
        return BuildState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = BuildState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s, starting fresh", path, e)
        return BuildState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s, starting fresh", path, e)
        return BuildState()


def save_state(state: BuildState, path: Path) -> None:
    """Save build state (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    _fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(_fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except Exception as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
