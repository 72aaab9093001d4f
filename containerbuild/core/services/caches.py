"""
Cache directories under ``/cache``.

Package managers (go, pip, gem, gradle, ...) write their caches into
``/cache/<name>`` so a single volume can persist them across container
rebuilds. The build user must own them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.errors import FeatureError
from containerbuild.core.models.build import UserInfo

logger = logging.getLogger(__name__)


def create_cache_directories(directories: list[Path], uid: int, gid: int) -> list[Path]:
    """``install -d -m 0755 -o uid -g gid`` for every directory.

    Ownership is only changed when running as root.
    """
    if not directories:
        raise FeatureError("At least one cache path must be provided")

    as_root = os.geteuid() == 0
    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)
        directory.chmod(0o755)
        if as_root:
            os.chown(directory, uid, gid)
    logger.info("Created cache directories: %s", " ".join(str(d) for d in directories))
    return directories


def create_language_caches(paths: SystemPaths, user: UserInfo, *names: str) -> list[Path]:
    """Create ``/cache/<name>`` for each name, owned by the build user."""
    return create_cache_directories([paths.cache(n) for n in names], user.uid, user.gid)
