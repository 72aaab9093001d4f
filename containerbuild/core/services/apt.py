"""
apt-get wrapper with timeouts and retries.

Mirrors can be flaky during image builds. Every apt-get call gets a
timeout, network options, and exponential backoff between attempts.
Exit code 100 usually means a fetch failure: ``update`` waits twice as
long and starts from empty lists, ``install`` refreshes the lists before
the next attempt.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.errors import CommandError, FeatureError
from containerbuild.core.models.build import AptSettings
from containerbuild.core.services import net
from containerbuild.core.services.command import CommandRunner, CommandResult
from containerbuild.core.services.host import get_debian_major_version

logger = logging.getLogger(__name__)

NETWORK_OPTIONS = [
    "-o", "Acquire::http::Timeout=30",
    "-o", "Acquire::https::Timeout=30",
    "-o", "Acquire::ftp::Timeout=30",
    "-o", "Acquire::Retries=3",
]

RETRIES_CONF = """\
Acquire::http::Timeout "30";
Acquire::https::Timeout "30";
Acquire::ftp::Timeout "30";
Acquire::Retries "3";
Acquire::Queue-Mode "host";
APT::Update::Error-Mode "any";
Acquire::Languages "none";
"""

EXIT_NETWORK = 100


class Apt:
    """apt-get operations for one build.

    Args:
        runner: Executes apt-get and dpkg.
        paths: Where ``/etc/apt`` and ``/var/lib/apt/lists`` live.
        settings: Retries, base delay and per-call timeout.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        runner: CommandRunner,
        paths: SystemPaths,
        settings: AptSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.paths = paths
        self.settings = settings or AptSettings()
        self._sleep = sleep

    @property
    def _lists_dir(self) -> Path:
        return self.paths.root / "var/lib/apt/lists"

    def _clear_lists(self) -> None:
        self.runner.run(["apt-get", "clean"], description="Cleaning apt cache", check=False)
        if self._lists_dir.is_dir() and not self.runner.dry_run:
            shutil.rmtree(self._lists_dir, ignore_errors=True)

    def _log_diagnostics(self) -> None:
        logger.error("=== Diagnostic Information ===")
        sources = self.paths.root / "etc/apt/sources.list"
        if sources.is_file():
            logger.error("Current apt sources:\n%s", sources.read_text(encoding="utf-8").strip())
        else:
            logger.error("No sources.list found")
        extra = sorted(self.paths.apt_sources_dir.glob("*.list")) if self.paths.apt_sources_dir.is_dir() else []
        for path in extra:
            logger.error("  %s", path)
        if not extra:
            logger.error("No additional sources")

    # ── Operations ──────────────────────────────────────────────

    def update(self) -> CommandResult:
        """``apt-get update`` with retries.

        Raises:
            CommandError: After the last failed attempt.
        """
        delay = self.settings.retry_delay
        cmd = ["apt-get", "update", *NETWORK_OPTIONS, "-o", "APT::Update::Error-Mode=any"]
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            logger.info("Updating package lists (attempt %d/%d)...", attempt, attempts)
            result = self.runner.run(
                cmd,
                description="Updating package lists",
                check=False,
                timeout=self.settings.timeout,
            )
            if result.ok:
                logger.info("✓ Package lists updated successfully")
                return result
            if attempt == attempts:
                logger.error("✗ apt-get update failed after %d attempts", attempts)
                self._log_diagnostics()
                raise CommandError(result.cmd, result.returncode, result.stderr, result.stdout)

            logger.warning(
                "⚠ apt-get update failed (exit code: %d), retrying in %.0fs...",
                result.returncode,
                delay,
            )
            if result.returncode == EXIT_NETWORK:
                logger.warning("  Network connectivity issue detected, waiting longer...")
                delay *= 2
            self._sleep(delay)
            delay *= 2
            self._clear_lists()
        raise AssertionError("unreachable")  # pragma: no cover

    def install(self, *packages: str) -> CommandResult:
        """``apt-get install -y --no-install-recommends`` with retries.

        Raises:
            FeatureError: No packages given.
            CommandError: After the last failed attempt.
        """
        if not packages:
            raise FeatureError("apt install requires at least one package name")

        names = " ".join(packages)
        cmd = [
            "apt-get", "install", "-y", "--no-install-recommends",
            *NETWORK_OPTIONS,
            "-o", "Dpkg::Options::=--force-confdef",
            "-o", "Dpkg::Options::=--force-confold",
            *packages,
        ]
        delay = self.settings.retry_delay
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            logger.info("Installing packages: %s (attempt %d/%d)...", names, attempt, attempts)
            result = self.runner.run(
                cmd,
                description=f"Installing {names}",
                check=False,
                timeout=self.settings.timeout,
                env={"DEBIAN_FRONTEND": "noninteractive"},
            )
            if result.ok:
                logger.info("✓ Packages installed successfully: %s", names)
                return result
            if attempt == attempts:
                logger.error("✗ Package installation failed after %d attempts", attempts)
                logger.error("  Failed packages: %s", names)
                raise CommandError(result.cmd, result.returncode, result.stderr, result.stdout)

            logger.warning(
                "⚠ Package installation failed (exit code: %d), retrying in %.0fs...",
                result.returncode,
                delay,
            )
            if result.returncode == EXIT_NETWORK:
                logger.warning("  Network connectivity issue detected, refreshing package lists")
                self.runner.run(
                    ["apt-get", "update", "-qq"],
                    description="Refreshing package lists",
                    check=False,
                    timeout=self.settings.timeout,
                )
            self._sleep(delay)
            delay *= 2
        raise AssertionError("unreachable")  # pragma: no cover

    def install_conditional(self, min_version: int, max_version: int, *packages: str) -> bool:
        """Install ``packages`` only on Debian ``min_version``..``max_version``.

        Returns:
            True if the packages were installed.
        """
        current = get_debian_major_version(self.paths)
        names = " ".join(packages)
        if current is None:
            logger.warning("Could not determine Debian version, skipping conditional packages: %s", names)
            return False
        if min_version <= current <= max_version:
            logger.info("Installing version-specific packages for Debian %d: %s", current, names)
            self.install(*packages)
            return True
        logger.info("Skipping packages (not needed for Debian %d): %s", current, names)
        return False

    def cleanup(self) -> None:
        logger.info("Cleaning up apt cache...")
        self._clear_lists()
        logger.info("✓ apt cache cleaned")

    def configure_retries(self) -> Path:
        """Write ``/etc/apt/apt.conf.d/99-retries``."""
        conf = self.paths.apt_conf_dir / "99-retries"
        conf.parent.mkdir(parents=True, exist_ok=True)
        conf.write_text(RETRIES_CONF, encoding="utf-8")
        logger.info("✓ apt configured with timeout and retry settings")
        return conf

    def add_repository(
        self,
        name: str,
        key_url: str,
        repo_url: str,
        suite: str,
        components: str = "main",
        arch: str | None = None,
    ) -> Path:
        """Add a signed third-party apt source.

        The key is fetched, dearmored into ``/usr/share/keyrings/<name>.gpg``
        and referenced by ``signed-by`` from ``sources.list.d/<name>.list``.

        Raises:
            DownloadError: The key could not be fetched.
            CommandError: gpg could not dearmor the key.
        """
        keyring = self.paths.keyrings_dir / f"{name}-archive-keyring.gpg"
        keyring.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Adding %s repository signing key", name)
        key = net.fetch_bytes(key_url, timeout=60)
        if key.lstrip().startswith(b"-----BEGIN PGP"):
            armored = keyring.with_suffix(".asc")
            armored.write_bytes(key)
            try:
                self.runner.run(
                    ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring), str(armored)],
                    description=f"Dearmoring {name} signing key",
                )
            finally:
                armored.unlink(missing_ok=True)
        else:
            keyring.write_bytes(key)

        options = [f"signed-by={self._system_path(keyring)}"]
        if arch:
            options.insert(0, f"arch={arch}")
        line = f"deb [{' '.join(options)}] {repo_url} {suite} {components}".rstrip() + "\n"

        source = self.paths.apt_sources_dir / f"{name}.list"
        source.parent.mkdir(parents=True, exist_ok=True)
        source.write_text(line, encoding="utf-8")
        logger.info("✓ Added apt repository %s", name)
        return source

    def _system_path(self, path: Path) -> str:
        """Path as seen from inside the image (strip a staging root)."""
        try:
            return "/" + str(path.relative_to(self.paths.root))
        except ValueError:
            return str(path)
