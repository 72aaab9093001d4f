"""
Version validation and partial-version resolution.

Users may write ``GO_VERSION=1.25`` (or ``PYTHON_VERSION=3.13``,
``RUBY_VERSION=3.4``) and get the newest patch release. Each
language has its own accepted shape and its own listing to resolve
against.
"""

from __future__ import annotations

import logging
import re

from containerbuild.core.errors import VersionError
from containerbuild.core.services import net

logger = logging.getLogger(__name__)

# ── Accepted shapes ─────────────────────────────────────────────

_SEMVER = re.compile(r"^\d+\.\d+\.\d+$")
_MAJOR_MINOR_PATCH_OPT = re.compile(r"^\d+\.\d+(\.\d+)?$")
_MAJOR_OPT_REST = re.compile(r"^\d+(\.\d+(\.\d+)?)?$")

VERSION_FORMATS: dict[str, tuple[re.Pattern[str], str]] = {
    "python": (_MAJOR_MINOR_PATCH_OPT, "X.Y or X.Y.Z (e.g., 3.13 or 3.13.5)"),
    "r": (_SEMVER, "X.Y.Z (e.g., 4.5.1)"),
    "rust": (_SEMVER, "X.Y.Z (e.g., 1.90.0)"),
    "ruby": (_MAJOR_MINOR_PATCH_OPT, "X.Y or X.Y.Z (e.g., 3.4 or 3.4.7)"),
    "mojo": (_SEMVER, "X.Y.Z"),
    "kotlin": (_SEMVER, "X.Y.Z (e.g., 2.2.21)"),
    "go": (_MAJOR_MINOR_PATCH_OPT, "X.Y or X.Y.Z (e.g., 1.25 or 1.25.3)"),
    "node": (_MAJOR_OPT_REST, "X, X.Y, or X.Y.Z (e.g., 22, 20.18, or 20.18.1)"),
    "java": (_MAJOR_OPT_REST, "X, X.Y, or X.Y.Z (e.g., 21, 11.0, or 11.0.21)"),
}

# Oldest release still receiving security fixes
MINIMUM_SUPPORTED = {
    "go": (1, 22),
}


def version_tuple(version: str) -> tuple[int, ...]:
    """``"1.25.3"`` → ``(1, 25, 3)``; non-numeric parts are dropped."""
    return tuple(int(part) for part in version.split(".") if part.isdigit())


def is_full_version(version: str) -> bool:
    return bool(_SEMVER.match(version))


def validate_version(kind: str, version: str, variable: str = "") -> str:
    """Check ``version`` has the shape accepted for ``kind``.

    Returns:
        The version, stripped.

    Raises:
        VersionError: If empty or malformed.
    """
    variable = variable or f"{kind.upper()}_VERSION"
    version = (version or "").strip()
    if not version:
        raise VersionError(f"Empty {variable} provided")

    rule = VERSION_FORMATS.get(kind)
    if rule is None:
        return version
    pattern, expected = rule
    if not pattern.match(version):
        raise VersionError(
            f"Invalid {variable} format: {version}. Expected format: {expected}; "
            "only digits and dots allowed"
        )
    return version


def warn_if_outdated(kind: str, version: str) -> bool:
    """Log a warning for versions below the supported floor."""
    floor = MINIMUM_SUPPORTED.get(kind)
    if floor is None:
        return False
    if version_tuple(version)[: len(floor)] < floor:
        logger.warning(
            "%s %s is out of support; %s or newer is recommended",
            kind,
            version,
            ".".join(str(p) for p in floor),
        )
        return True
    return False


# ── Resolution ──────────────────────────────────────────────────


def _newest_with_prefix(candidates: list[str], prefix: str) -> str | None:
    wanted = f"{prefix}."
    matching = [v for v in candidates if v.startswith(wanted) and is_full_version(v)]
    if not matching:
        return None
    return max(matching, key=version_tuple)


def _go_candidates() -> list[str]:
    releases = net.fetch_json("https://go.dev/dl/?mode=json&include=all")
    return [r.get("version", "").removeprefix("go") for r in releases if isinstance(r, dict)]


def _python_candidates() -> list[str]:
    page = net.fetch_text("https://www.python.org/ftp/python/")
    return re.findall(r">(\d+\.\d+\.\d+)/", page)


def _ruby_candidates() -> list[str]:
    page = net.fetch_text("https://www.ruby-lang.org/en/downloads/releases/")
    return re.findall(r"Ruby (\d+\.\d+\.\d+)", page)


_RESOLVERS = {
    "go": _go_candidates,
    "python": _python_candidates,
    "ruby": _ruby_candidates,
}


def resolve_version(kind: str, version: str) -> str:
    """Expand a partial version (``1.25``) to the newest full release.

    Full versions and kinds without a resolver are returned unchanged.

    Raises:
        VersionError: If the listing cannot be fetched or has no match.
    """
    if is_full_version(version) or kind not in _RESOLVERS:
        return version

    try:
        candidates = _RESOLVERS[kind]()
    except Exception as e:
        raise VersionError(f"Failed to fetch {kind} version list: {e}") from e

    resolved = _newest_with_prefix(candidates, version)
    if resolved is None:
        raise VersionError(f"Failed to resolve {kind} version: {version}")
    logger.info("Resolved %s %s → %s", kind, version, resolved)
    return resolved
