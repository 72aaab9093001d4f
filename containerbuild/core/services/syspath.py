"""
PATH handling and symlinks.

``/etc/environment`` holds the PATH for non-login contexts (cron,
``docker exec`` without a shell). Features append their bin
directories here in addition to their bashrc.d fragment.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/local/sbin:/usr/sbin:/sbin"


def _split(path_value: str) -> list[str]:
    return [p for p in path_value.split(":") if p]


def read_system_path(environment_file: Path) -> str | None:
    """The PATH value from ``/etc/environment``, or None if unset."""
    if not environment_file.is_file():
        return None
    for line in environment_file.read_text(encoding="utf-8").splitlines():
        if line.startswith("PATH="):
            return line[len("PATH="):].strip().strip('"')
    return None


def add_to_system_path(new_path: str, environment_file: Path, base_path: str | None = None) -> str:
    """Append ``new_path`` to the ``PATH=`` line of ``environment_file``.

    Starts from the existing PATH line, else ``base_path``, else the
    default system PATH. Existing entries are never duplicated and every
    other line of the file is kept.

    Returns:
        The PATH value now in the file.
    """
    if not new_path:
        raise ValueError("add_to_system_path requires a path argument")

    existing = read_system_path(environment_file)
    entries = _split(existing if existing is not None else (base_path or DEFAULT_SYSTEM_PATH))
    if new_path not in entries:
        entries.append(new_path)
    updated = ":".join(entries)

    other_lines = []
    if environment_file.is_file():
        other_lines = [
            line
            for line in environment_file.read_text(encoding="utf-8").splitlines()
            if not line.startswith("PATH=")
        ]
    environment_file.parent.mkdir(parents=True, exist_ok=True)
    environment_file.write_text(
        "\n".join([*other_lines, f'PATH="{updated}"']) + "\n",
        encoding="utf-8",
    )
    logger.info("Writing updated PATH to %s (added: %s)", environment_file, new_path)
    return updated


def safe_add_to_path(directory: Path, path_value: str) -> str:
    """Prepend ``directory`` to ``path_value`` if it is safe to do so.

    Refuses directories that are missing, world-writable or owned by
    someone other than root or the current user. Returns ``path_value``
    unchanged in that case.
    """
    if not directory.is_dir():
        logger.warning("safe_add_to_path: Directory does not exist: %s", directory)
        return path_value

    st = directory.stat()
    if st.st_mode & stat.S_IWOTH:
        logger.warning("safe_add_to_path: Directory is world-writable (security risk): %s", directory)
        logger.warning("  Permissions: %o", stat.S_IMODE(st.st_mode))
        return path_value
    if st.st_uid not in (0, os.geteuid()):
        logger.warning("safe_add_to_path: Directory not owned by root or current user: %s", directory)
        logger.warning("  Owner uid: %d", st.st_uid)
        return path_value

    if str(directory) in _split(path_value):
        return path_value
    logger.info("Added to PATH: %s", directory)
    return f"{directory}:{path_value}" if path_value else str(directory)


def create_symlink(target: Path, link: Path, description: str = "symlink") -> Path:
    """``ln -sf target link``; makes a file target executable."""
    link.parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target)

    if target.is_file():
        target.chmod(target.stat().st_mode | 0o111)
        logger.info("✓ Created %s: %s -> %s", description, link, target)
    elif target.exists():
        logger.info("✓ Created %s: %s -> %s", description, link, target)
    else:
        logger.warning("Symlink target does not exist: %s", target)
    return link
