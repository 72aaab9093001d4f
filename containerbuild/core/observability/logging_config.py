"""
Logging setup for builds.

Every record is stamped with the feature being installed and passed
through the secret scrubber before any handler writes it. A line logged
by ``services.apt`` while Go is installing reads:

    12:04:31 [golang] Installing packages: git curl

``feature_scope()`` sets the stamp; the executor wraps each feature in
it. Outside a feature the stamp is ``-``.

Console output goes to stderr at the requested level. A build log with
every feature's records can also be written to a file: ``CB_LOG_FILE``,
or ``<BUILD_LOG_DIR>/build.log``. The file defaults to DEBUG, so it
keeps what the console hides.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from containerbuild.core.observability.scrub import ScrubFilter

BUILD_LOG = "build.log"
NO_FEATURE = "-"

_current_feature: contextvars.ContextVar[str] = contextvars.ContextVar("cb_feature", default=NO_FEATURE)

_CONSOLE_DEBUG = "%(asctime)s %(levelname)-7s [%(feature)s] %(name)s: %(message)s"
_CONSOLE_INFO = "%(asctime)s [%(feature)s] %(message)s"
_CONSOLE_QUIET = "%(levelname)s: %(message)s"
_CLOCK = "%H:%M:%S"

_FILE_FORMAT = "%(asctime)s %(levelname)-7s [%(feature)s] %(name)s:%(lineno)d: %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


# ── Feature stamping ────────────────────────────────────────────


class FeatureFilter(logging.Filter):
    """Add ``record.feature``: the id of the feature being installed."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.feature = _current_feature.get()
        return True


@contextmanager
def feature_scope(feature_id: str) -> Iterator[None]:
    """Stamp every record logged inside the block with ``feature_id``."""
    token = _current_feature.set(feature_id)
    try:
        yield
    finally:
        _current_feature.reset(token)


def current_feature() -> str:
    return _current_feature.get()


# ── Setup ───────────────────────────────────────────────────────


def parse_level(level: str | None, default: int = logging.INFO) -> int:
    """Level name → numeric level; unknown names give ``default``."""
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else default


def _prepare(handler: logging.Handler, level: int, fmt: str, datefmt: str | None) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    # Stamp before scrubbing so the formatter always finds ``feature``
    handler.addFilter(FeatureFilter())
    handler.addFilter(ScrubFilter())
    return handler


def build_log_path(log_file: str | None, build_log_dir: str | Path | None) -> Path | None:
    """An explicit log file wins over ``<build_log_dir>/build.log``."""
    if log_file:
        return Path(log_file)
    if build_log_dir:
        return Path(build_log_dir) / BUILD_LOG
    return None


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str | None = None,
    build_log_dir: str | Path | None = None,
) -> Path | None:
    """Configure the root logger for a build process.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.

    Args:
        level: Console level name.
        log_file: Explicit build log path.
        log_file_level: Level for the build log (default DEBUG).
        build_log_dir: Directory for ``build.log`` when ``log_file`` is unset.

    Returns:
        The build log path, or ``None`` when logging to the console only.
    """
    console_level = parse_level(level)
    if console_level <= logging.DEBUG:
        fmt, datefmt = _CONSOLE_DEBUG, _CLOCK
    elif console_level <= logging.INFO:
        fmt, datefmt = _CONSOLE_INFO, _CLOCK
    else:
        fmt, datefmt = _CONSOLE_QUIET, None

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_prepare(logging.StreamHandler(sys.stderr), console_level, fmt, datefmt))
    root_level = console_level

    target = build_log_path(log_file, build_log_dir)
    if target is not None:
        file_level = parse_level(log_file_level, logging.DEBUG)
        target.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(
            _prepare(logging.FileHandler(target, encoding="utf-8"), file_level, _FILE_FORMAT, _FILE_DATEFMT)
        )
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    return target
