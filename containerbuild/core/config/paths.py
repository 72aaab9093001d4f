"""
System paths: every location a build writes to, relative to a root.

A build normally runs against ``/``. Tests and staged builds pass a
different root so the whole tree lands in a scratch directory.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_LOG_DIR = "var/log/container-build"
FALLBACK_LOG_DIR = "tmp/container-build"


@dataclass(frozen=True)
class SystemPaths:
    """Filesystem layout of the image being built."""

    root: Path = Path("/")
    log_dir_override: Path | None = None

    def _p(self, rel: str) -> Path:
        return self.root / rel

    # ── Shell environment ───────────────────────────────────────

    @property
    def bashrc_dir(self) -> Path:
        return self._p("etc/bashrc.d")

    @property
    def environment_file(self) -> Path:
        return self._p("etc/environment")

    # ── Container runtime hooks ─────────────────────────────────

    @property
    def container_dir(self) -> Path:
        return self._p("etc/container")

    @property
    def first_startup_dir(self) -> Path:
        return self._p("etc/container/first-startup")

    @property
    def startup_dir(self) -> Path:
        return self._p("etc/container/startup")

    @property
    def config_dir(self) -> Path:
        return self._p("etc/container/config")

    @property
    def enabled_features_file(self) -> Path:
        return self.config_dir / "enabled-features.conf"

    # ── Install targets ─────────────────────────────────────────

    @property
    def usr_local(self) -> Path:
        return self._p("usr/local")

    @property
    def bin_dir(self) -> Path:
        return self._p("usr/local/bin")

    @property
    def opt_dir(self) -> Path:
        return self._p("opt")

    @property
    def cache_root(self) -> Path:
        return self._p("cache")

    # ── apt ─────────────────────────────────────────────────────

    @property
    def apt_conf_dir(self) -> Path:
        return self._p("etc/apt/apt.conf.d")

    @property
    def apt_sources_dir(self) -> Path:
        return self._p("etc/apt/sources.list.d")

    @property
    def keyrings_dir(self) -> Path:
        return self._p("usr/share/keyrings")

    # ── Build inputs ────────────────────────────────────────────

    @property
    def build_scripts_dir(self) -> Path:
        return self._p("tmp/build-scripts")

    @property
    def checksums_db(self) -> Path:
        return self.build_scripts_dir / "checksums.json"

    @property
    def gpg_keys_dir(self) -> Path:
        return self.build_scripts_dir / "gpg-keys"

    @property
    def build_env_file(self) -> Path:
        return self._p("tmp/build-env")

    @property
    def os_release_file(self) -> Path:
        return self._p("etc/os-release")

    @property
    def debian_version_file(self) -> Path:
        return self._p("etc/debian_version")

    # ── Logs and state ──────────────────────────────────────────

    @property
    def log_dir(self) -> Path:
        if self.log_dir_override is not None:
            return self.log_dir_override
        return self._p(DEFAULT_LOG_DIR)

    @property
    def state_file(self) -> Path:
        return self.log_dir / "build-state.json"

    @property
    def metrics_dir(self) -> Path:
        return self._p("var/run/container-metrics")

    # ── Helpers ─────────────────────────────────────────────────

    def home(self, username: str) -> Path:
        if username == "root":
            return self._p("root")
        return self._p(f"home/{username}")

    def cache(self, name: str) -> Path:
        return self.cache_root / name

    def bashrc_fragment(self, order: int, name: str) -> Path:
        """``/etc/bashrc.d/NN-name.sh``"""
        return self.bashrc_dir / f"{order:02d}-{name}.sh"

    def first_startup_script(self, order: int, name: str) -> Path:
        return self.first_startup_dir / f"{order:02d}-{name}.sh"

    def startup_script(self, order: int, name: str) -> Path:
        return self.startup_dir / f"{order:02d}-{name}.sh"

    def test_script(self, tool: str) -> Path:
        return self.bin_dir / f"test-{tool}"
