"""
Container startup: run first-startup hooks once, then startup hooks.

Only regular ``*.sh`` files that really live in the hook directory are
run: symlinks and anything resolving elsewhere are skipped with a
warning. Scripts run as the build user (through ``su`` when the
entrypoint is root) in name order. A failing script aborts startup and
leaves the first-run marker unwritten, so the next start retries.

The elapsed time is written as a Prometheus text-format gauge:

    container_startup_seconds 3
"""

from __future__ import annotations

import logging
import os
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.models.build import UserInfo
from containerbuild.core.services.command import CommandRunner

logger = logging.getLogger(__name__)

FIRST_RUN_MARKER = ".container-initialized"
METRICS_FILE = "startup-metrics.txt"


@dataclass
class StartupReport:
    """What one startup did."""

    first_run: bool = False
    ran: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    duration: int = 0


def runnable_scripts(directory: Path) -> tuple[list[Path], list[Path]]:
    """Split ``directory/*.sh`` into (runnable, skipped)."""
    if not directory.is_dir():
        return [], []
    base = directory.resolve()
    runnable: list[Path] = []
    skipped: list[Path] = []
    for script in sorted(directory.glob("*.sh")):
        if script.is_symlink():
            skipped.append(script)
            continue
        if not script.is_file():
            continue
        real = script.resolve()
        if real.parent != base or ".." in script.name:
            skipped.append(script)
            continue
        runnable.append(script)
    for script in skipped:
        logger.warning("⚠️  WARNING: Skipping script outside expected directory: %s", script)
    return runnable, skipped


def _run_script(runner: CommandRunner, user: UserInfo, script: Path) -> None:
    result = runner.run_as(user.username, f"bash {shlex.quote(str(script))}", description=f"Running {script.name}")
    for line in result.output.splitlines():
        logger.info("  %s", line)


def write_startup_metric(paths: SystemPaths, seconds: int) -> Path:
    paths.metrics_dir.mkdir(parents=True, exist_ok=True)
    path = paths.metrics_dir / METRICS_FILE
    path.write_text(
        "# HELP container_startup_seconds Time taken for container initialization in seconds\n"
        "# TYPE container_startup_seconds gauge\n"
        f"container_startup_seconds {seconds}\n",
        encoding="utf-8",
    )
    return path


def run_startup(
    paths: SystemPaths,
    user: UserInfo,
    runner: CommandRunner,
    first_run_marker: Path | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> StartupReport:
    """Run the container's startup hooks.

    Args:
        first_run_marker: Default ``~/.container-initialized``.

    Raises:
        CommandError: A hook script failed.
    """
    started = clock()
    report = StartupReport()
    marker = first_run_marker or paths.home(user.username) / FIRST_RUN_MARKER

    if not marker.exists():
        report.first_run = True
        logger.info("=== Running first-time setup scripts ===")
        scripts, skipped = runnable_scripts(paths.first_startup_dir)
        report.skipped += [s.name for s in skipped]
        for script in scripts:
            logger.info("Running first-startup script: %s", script.name)
            _run_script(runner, user, script)
            report.ran.append(script.name)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()
        if os.geteuid() == 0:
            os.chown(marker, user.uid, user.gid)

    if paths.startup_dir.is_dir():
        logger.info("=== Running startup scripts ===")
        scripts, skipped = runnable_scripts(paths.startup_dir)
        report.skipped += [s.name for s in skipped]
        for script in scripts:
            logger.info("Running startup script: %s", script.name)
            _run_script(runner, user, script)
            report.ran.append(script.name)

    report.duration = int(clock() - started)
    write_startup_metric(paths, report.duration)
    logger.info("✓ Container initialized in %ds", report.duration)
    return report
