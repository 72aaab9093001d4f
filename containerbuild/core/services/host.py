"""
Host detection: architecture and OS release.

Architecture is always expressed in dpkg terms (amd64, arm64, armhf,
i386). Each vendor names things differently, so installers keep a small
table mapping dpkg names to theirs and call ``map_arch``.
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
from collections.abc import Mapping
from pathlib import Path

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.errors import UnsupportedArchitectureError, UnsupportedOSError

logger = logging.getLogger(__name__)

_MACHINE_TO_DPKG = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv6l": "armhf",
    "i386": "i386",
    "i686": "i386",
}

_DEBIAN_CODENAMES = {"trixie": 13, "bookworm": 12, "bullseye": 11}


def detect_arch() -> str:
    """Return the dpkg architecture of this machine."""
    if shutil.which("dpkg"):
        try:
            out = subprocess.run(
                ["dpkg", "--print-architecture"],
                capture_output=True,
                text=True,
                timeout=10,
                check=True,
            ).stdout.strip()
            if out:
                return out
        except (subprocess.SubprocessError, OSError) as e:
            logger.debug("dpkg --print-architecture failed: %s", e)
    machine = platform.machine().lower()
    return _MACHINE_TO_DPKG.get(machine, machine)


def map_arch(arch: str, table: Mapping[str, str], tool: str = "") -> str:
    """Translate a dpkg arch into a vendor's naming.

    Raises:
        UnsupportedArchitectureError: If the arch has no entry.
    """
    try:
        return table[arch]
    except KeyError:
        raise UnsupportedArchitectureError(arch, tool) from None


# ── OS release ──────────────────────────────────────────────────


def read_os_release(path: Path) -> dict[str, str]:
    """Parse ``/etc/os-release`` into a dict (quotes stripped)."""
    values: dict[str, str] = {}
    if not path.is_file():
        return values
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def _major(version_id: str) -> int | None:
    head = version_id.split(".", 1)[0]
    return int(head) if head.isdigit() else None


def check_supported_os(paths: SystemPaths) -> dict[str, str]:
    """Require Debian 12+ or Ubuntu 22.04+ (or another Debian derivative).

    Returns:
        The parsed os-release values.

    Raises:
        UnsupportedOSError: On a missing os-release or an unsupported release.
    """
    if not paths.os_release_file.is_file():
        raise UnsupportedOSError(
            f"Cannot determine OS version - {paths.os_release_file} not found"
        )

    info = read_os_release(paths.os_release_file)
    os_id = info.get("ID", "")
    id_like = info.get("ID_LIKE", "").split()
    version_id = info.get("VERSION_ID", "")

    if os_id != "debian" and "debian" not in id_like:
        raise UnsupportedOSError(
            f"A Debian-based system is required (current OS: {os_id} {version_id})"
        )

    major = _major(version_id)
    if os_id == "debian" and major is not None and major < 12:
        raise UnsupportedOSError(
            f"Debian 12 (bookworm) or newer is required "
            f"(current: Debian {version_id} ({info.get('VERSION_CODENAME', 'unknown')}))"
        )
    if os_id == "ubuntu" and major is not None and major < 22:
        raise UnsupportedOSError(f"Ubuntu 22.04 or newer is required (current: Ubuntu {version_id})")

    return info


def os_codename(paths: SystemPaths) -> str:
    return read_os_release(paths.os_release_file).get("VERSION_CODENAME", "")


def get_debian_major_version(paths: SystemPaths) -> int | None:
    """Major Debian version from ``/etc/debian_version``.

    Handles both ``12.5`` and testing codenames like ``trixie/sid``.
    """
    path = paths.debian_version_file
    if not path.is_file():
        return None
    raw = path.read_text(encoding="utf-8").strip()
    major = _major(raw)
    if major is not None:
        return major
    for codename, number in _DEBIAN_CODENAMES.items():
        if codename in raw:
            return number
    return None
