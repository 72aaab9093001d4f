"""
Feature installer base: abstract interface for one tool or ecosystem.

Every feature follows the same outline:

    detect arch → download → verify → install → bashrc.d fragment
        → first-startup hook → test-<tool> script → summary

The engine owns the lifecycle (logs, state, ordering). A feature only
implements ``install()`` against the ``FeatureContext`` it is handed,
raising ``FeatureError`` to abort and using ``ctx.optional()`` around
steps whose failure should only produce a warning.
"""

from __future__ import annotations

import logging
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from containerbuild.core.config.loader import env_flag
from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.errors import BuildError
from containerbuild.core.models.build import BuildConfig, UserInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.models.verification import VerificationResult
from containerbuild.core.observability.feature_log import FeatureLog
from containerbuild.core.reliability.retry import RetryPolicy
from containerbuild.core.services import bashrc
from containerbuild.core.services.apt import Apt
from containerbuild.core.services.checksums.tiers import DownloadVerifier, ensure_verified
from containerbuild.core.services.command import CommandRunner
from containerbuild.core.services.versions import resolve_version, validate_version, warn_if_outdated

logger = logging.getLogger(__name__)


# ── Data Models ─────────────────────────────────────────────────


@dataclass(frozen=True)
class FeatureInfo:
    """Static metadata about a feature."""

    id: str                             # "golang"
    label: str                          # "Golang" (log file names derive from it)
    flag: str                           # "INCLUDE_GOLANG"
    description: str = ""
    version_var: str = ""               # "GO_VERSION"
    default_version: str = ""
    version_kind: str = ""              # key into VERSION_FORMATS, default: id
    bashrc_order: int = 50              # /etc/bashrc.d/NN-<id>.sh
    requires: tuple[str, ...] = ()      # features that must be installed first


@dataclass
class FeatureContext:
    """Everything a feature may touch while installing."""

    paths: SystemPaths
    config: BuildConfig
    user: UserInfo
    runner: CommandRunner
    verifier: DownloadVerifier
    apt: Apt
    log: FeatureLog | None = None
    environ: Mapping[str, str] = field(default_factory=dict)
    arch: str = "amd64"
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    verification_tier: str | None = None

    # ── Settings ────────────────────────────────────────────────

    def setting(self, name: str, default: str = "") -> str:
        """Environment first, then ``build.yml`` env, then ``default``."""
        value = self.environ.get(name)
        if value:
            return value
        value = self.config.env.get(name)
        if value:
            return value
        return default

    def flag(self, name: str, default: bool = False) -> bool:
        if name in self.environ:
            return env_flag(self.environ, name, default)
        return env_flag(self.config.env, name, default)

    # ── Logging ─────────────────────────────────────────────────

    def message(self, text: str) -> None:
        if self.log is not None:
            self.log.message(text)
        else:
            logger.info("%s", text)

    def warning(self, text: str) -> None:
        if self.log is not None:
            self.log.warning(text)
        else:
            logger.warning("%s", text)

    @contextmanager
    def optional(self, description: str) -> Iterator[None]:
        """Run a step whose failure is only a warning."""
        try:
            yield
        except (BuildError, OSError) as e:
            self.warning(f"{description} failed: {e}")

    # ── Downloads ───────────────────────────────────────────────

    def verify_download(
        self,
        category: str,
        name: str,
        version: str,
        file: Path,
        arch: str | None = None,
    ) -> VerificationResult:
        """Run the tier chain; abort the feature unless the file is accepted.

        Raises:
            VerificationError: No tier accepted the file.
        """
        result = ensure_verified(self.verifier.verify(category, name, version, file, arch=arch or self.arch))
        if result.tier is not None:
            self.verification_tier = result.tier.label
        return result

    @contextmanager
    def temp_dir(self, prefix: str = "cb-build-") -> Iterator[Path]:
        with tempfile.TemporaryDirectory(prefix=prefix) as scratch:
            yield Path(scratch)

    # ── Output helpers ──────────────────────────────────────────

    def bashrc_fragment(
        self,
        order: int,
        name: str,
        description: str,
        body: str,
        guarded: bool = True,
    ) -> Path:
        """Write a block into ``/etc/bashrc.d/NN-name.sh``.

        The first block of a fragment should be ``guarded`` (safety header
        and footer); blocks appended after it need not repeat them.
        """
        path = self.paths.bashrc_fragment(order, name)
        if guarded:
            bashrc.write_fragment(path, description, body)
        else:
            bashrc.write_bashrc_content(path, description, body)
        return path

    def system_path(self, path: Path) -> str:
        """``path`` as seen inside the image (without a staging root)."""
        try:
            return "/" + str(path.relative_to(self.paths.root))
        except ValueError:
            return str(path)


# ── Abstract Feature ────────────────────────────────────────────


class Feature(ABC):
    """Abstract base for feature installers.

    Features must implement:
      - info()     : metadata (id, flag, version variable, dependencies)
      - install()  : do the work, return the summary

    Features MAY override:
      - resolve_version() : custom version handling
    """

    @abstractmethod
    def info(self) -> FeatureInfo:
        """Return feature metadata."""

    def resolve_version(self, ctx: FeatureContext) -> str:
        """Read, validate and resolve the requested version.

        Raises:
            VersionError: Malformed or unresolvable version.
        """
        info = self.info()
        if not info.version_var:
            return ""
        kind = info.version_kind or info.id
        requested = validate_version(kind, ctx.setting(info.version_var, info.default_version), info.version_var)
        version = resolve_version(kind, requested)
        if version != requested:
            ctx.message(f"📍 Version Resolution: {requested} → {version}")
        warn_if_outdated(kind, version)
        return version

    @abstractmethod
    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        """Install the feature into ``ctx.paths``.

        Raises:
            FeatureError: The feature cannot be installed.
        """
