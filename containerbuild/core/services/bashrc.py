"""
bashrc.d fragment writer.

Fragments in ``/etc/bashrc.d`` are sourced by every interactive shell.
Each generated block is wrapped in markers so that re-running a feature
never duplicates it:

    # BEGIN_GENERATED_CONTENT: Go_environment
    ...
    # END_GENERATED_CONTENT: Go_environment
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

SAFETY_HEADER = """\
# Bashrc safety: never break the user's shell
set +u  # Don't error on unset variables
set +e  # Don't exit on errors

# Only run in interactive shells
if [[ $- != *i* ]]; then
    return 0
fi

_check_command() {
    command -v "$1" >/dev/null 2>&1
}
"""

SAFETY_FOOTER = """\
# Clean up helper functions
unset -f _check_command 2>/dev/null || true
"""


def safety_header() -> str:
    return SAFETY_HEADER


def safety_footer() -> str:
    return SAFETY_FOOTER


def content_id_for(description: str) -> str:
    """``"Go environment"`` → ``"Go_environment"``"""
    return re.sub(r"[^A-Za-z0-9_-]", "", description.replace(" ", "_"))


def _markers(content_id: str) -> tuple[str, str]:
    return (
        f"# BEGIN_GENERATED_CONTENT: {content_id}",
        f"# END_GENERATED_CONTENT: {content_id}",
    )


def _block(content: str, content_id: str) -> str:
    start, end = _markers(content_id)
    body = content if content.endswith("\n") else content + "\n"
    return f"{start}\n{body}{end}\n\n"


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        tmp.chmod(0o755)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


def has_block(path: Path, content_id: str) -> bool:
    if not path.is_file():
        return False
    start, _ = _markers(content_id)
    return start in path.read_text(encoding="utf-8").splitlines()


def write_bashrc_content(
    path: Path,
    description: str,
    content: str,
    content_id: str | None = None,
) -> bool:
    """Add a marked block to a fragment unless it is already there.

    New files are written atomically. Existing files are appended to.
    Either way the fragment ends up mode 0755.

    Returns:
        True if the file changed.
    """
    content_id = content_id or content_id_for(description)
    path.parent.mkdir(parents=True, exist_ok=True)

    if has_block(path, content_id):
        logger.info("✓ Content '%s' already exists in %s (skipping)", description, path)
        return False
    if not content.strip():
        logger.warning("⚠ No content provided for %s", path)
        return False

    block = _block(content, content_id)
    if not path.exists():
        _atomic_write(path, block)
        logger.info("✓ Created %s at %s", description, path)
    else:
        with path.open("a", encoding="utf-8") as f:
            f.write(block)
        path.chmod(0o755)
        logger.info("✓ Appended %s to %s", description, path)
    return True


def update_bashrc_content(
    path: Path,
    description: str,
    content: str,
    content_id: str | None = None,
) -> bool:
    """Replace a marked block in place, or add it if missing."""
    content_id = content_id or content_id_for(description)
    if not has_block(path, content_id):
        return write_bashrc_content(path, description, content, content_id)

    start, end = _markers(content_id)
    out: list[str] = []
    skipping = False
    for line in path.read_text(encoding="utf-8").splitlines(keepends=True):
        stripped = line.rstrip("\n")
        if stripped == start:
            out.append(_block(content, content_id))
            skipping = True
            continue
        if skipping:
            if stripped == end:
                skipping = False
            continue
        out.append(line)

    text = "".join(out)
    # the replaced block carries its own trailing blank line
    text = re.sub(r"\n{3,}", "\n\n", text)
    _atomic_write(path, text)
    logger.info("✓ Updated %s in %s", description, path)
    return True


def write_fragment(path: Path, description: str, body: str, content_id: str | None = None) -> bool:
    """Write a guarded fragment: safety header, body, safety footer."""
    return write_bashrc_content(
        path,
        description,
        safety_header() + "\n" + body.rstrip("\n") + "\n\n" + safety_footer(),
        content_id,
    )
