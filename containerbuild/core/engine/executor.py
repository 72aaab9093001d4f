"""
Build executor: runs the enabled features in order.

Flow:
    config → enabled ids → dependency order → enabled-features.conf
        → per feature: log start → version → install → summary → log end
        → build state

A failing feature is recorded and the build moves on to the next one;
the report's status tells the caller whether everything succeeded.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from containerbuild.core.config.feature_flags import write_enabled_features
from containerbuild.core.config.loader import env_flag, resolve_user
from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.errors import BuildError
from containerbuild.core.features import Feature, FeatureContext, flag_names, list_features, resolve_order
from containerbuild.core.models.build import BuildConfig
from containerbuild.core.models.feature import FeatureResult
from containerbuild.core.observability.feature_log import FeatureLog
from containerbuild.core.observability.json_log import JsonEventLog
from containerbuild.core.observability.logging_config import feature_scope
from containerbuild.core.persistence.state_file import load_state, save_state
from containerbuild.core.reliability.retry import RetryPolicy
from containerbuild.core.services.apt import Apt
from containerbuild.core.services.checksums.pinned import ChecksumDatabase
from containerbuild.core.services.checksums.tiers import DownloadVerifier
from containerbuild.core.services.command import CommandRunner
from containerbuild.core.services.host import check_supported_os, detect_arch

logger = logging.getLogger(__name__)

# Written into enabled-features.conf next to the INCLUDE_* flags
_PASSTHROUGH_SETTINGS = {
    "CLAUDE_EXTRA_PLUGINS_DEFAULT": "CLAUDE_EXTRA_PLUGINS",
    "CLAUDE_EXTRA_MCPS_DEFAULT": "CLAUDE_EXTRA_MCPS",
}


@dataclass
class BuildReport:
    """Result of one build."""

    build_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    results: list[FeatureResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "build_id": self.build_id,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "features": [r.model_dump(mode="json", exclude={"summary"}) for r in self.results],
        }


def generate_build_id() -> str:
    """Generate a unique build ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"build-{now}-{short}"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# ── Setup ───────────────────────────────────────────────────────


def paths_for(config: BuildConfig) -> SystemPaths:
    return SystemPaths(root=config.root, log_dir_override=config.log_dir)


def enabled_feature_ids(config: BuildConfig, environ: Mapping[str, str]) -> list[str]:
    """Feature ids switched on by ``INCLUDE_*`` flags or listed in ``build.yml``.

    A flag set in the environment wins over the same flag in ``build.yml``
    env, and ``features:`` entries are always enabled.
    """
    enabled: list[str] = []
    for flag, fid in flag_names().items():
        source = environ if flag in environ else config.env
        if env_flag(source, flag):
            enabled.append(fid)
    for fid in config.features:
        if fid not in enabled:
            enabled.append(fid)
    return enabled


def feature_flag_values(
    config: BuildConfig,
    environ: Mapping[str, str],
    installed: list[str],
) -> dict[str, bool | str]:
    """Contents of ``enabled-features.conf`` for a build of ``installed``."""
    flags: dict[str, bool | str] = {info.flag: info.id in installed for info in list_features()}
    for key, setting in _PASSTHROUGH_SETTINGS.items():
        flags[key] = environ.get(setting) or config.env.get(setting, "")
    return flags


def build_context(
    config: BuildConfig,
    environ: Mapping[str, str],
    runner: CommandRunner | None = None,
    paths: SystemPaths | None = None,
    arch: str | None = None,
) -> FeatureContext:
    """Assemble the shared services every feature works with."""
    paths = paths or paths_for(config)
    runner = runner or CommandRunner(dry_run=config.dry_run)
    verifier = DownloadVerifier(
        ChecksumDatabase.load(paths.checksums_db),
        runner,
        gpg_keys_dir=paths.gpg_keys_dir,
        require_verified=config.require_verified_downloads,
    )
    return FeatureContext(
        paths=paths,
        config=config,
        user=resolve_user(paths, config.user),
        runner=runner,
        verifier=verifier,
        apt=Apt(runner, paths, config.apt),
        environ=environ,
        arch=arch or detect_arch(),
        policy=RetryPolicy.from_settings(config.retry),
    )


# ── Execution ───────────────────────────────────────────────────


def run_feature(feature: Feature, ctx: FeatureContext, events: JsonEventLog | None = None) -> FeatureResult:
    """Install one feature with its own logs.

    Never raises for installer failures: a ``BuildError`` (or a file
    system error) ends the feature as ``failed`` and is recorded in its
    error log.
    """
    with feature_scope(feature.info().id):
        return _run_feature(feature, ctx, events)


def _run_feature(feature: Feature, ctx: FeatureContext, events: JsonEventLog | None) -> FeatureResult:
    info = feature.info()
    started = time.monotonic()
    result = FeatureResult(name=info.id)
    failure: Exception | None = None

    ctx.verification_tier = None
    try:
        result.version = feature.resolve_version(ctx)
    except BuildError as e:
        failure = e

    log = FeatureLog(ctx.paths.log_dir, info.label, result.version, events=events)
    log.start()
    ctx.log = log
    ctx.runner.log = log
    try:
        if failure is None:
            try:
                summary = feature.install(ctx, result.version)
                result.summary = summary
                result.version = summary.version or result.version
                log.write_feature_summary(summary)
            except (BuildError, OSError) as e:
                failure = e
        if failure is not None:
            log.error(f"{info.label} installation failed: {failure}")
            result.status = "failed"
            result.error = str(failure)
        log.end()
    finally:
        ctx.log = None
        ctx.runner.log = None

    result.duration_ms = int((time.monotonic() - started) * 1000)
    result.errors = log.error_count
    result.warnings = log.warning_count
    result.verification_tier = ctx.verification_tier

    marker = "✓" if result.ok else "✗"
    logger.info("%s %s → %s", marker, info.id, result.status)
    return result


def run_build(
    config: BuildConfig,
    environ: Mapping[str, str] | None = None,
    runner: CommandRunner | None = None,
    arch: str | None = None,
    only: list[str] | None = None,
) -> BuildReport:
    """Run a build.

    Args:
        config: Loaded build configuration.
        environ: Environment overlay (default: ``os.environ``).
        runner: Command runner; defaults to one honouring ``config.dry_run``.
        arch: Architecture override (default: detected).
        only: Install exactly these features (plus dependencies) instead
            of the ones enabled by flags.

    Raises:
        UnsupportedOSError: The target is not Debian or Ubuntu.
        FeatureError: An unknown feature id was requested.
    """
    environ = os.environ if environ is None else environ
    if config.github_token and not os.environ.get("GITHUB_TOKEN"):
        os.environ["GITHUB_TOKEN"] = config.github_token

    ctx = build_context(config, environ, runner=runner, arch=arch)
    paths = ctx.paths
    check_supported_os(paths)

    requested = only if only is not None else enabled_feature_ids(config, environ)
    features = resolve_order(requested)
    ids = [f.info().id for f in features]
    logger.info("Features to install: %s", ", ".join(ids) or "(none)")

    report = BuildReport(build_id=generate_build_id(), started_at=_now_iso())
    events = JsonEventLog(paths.log_dir / "json", correlation_id=report.build_id, enabled=config.json_logging)

    if features:
        ctx.apt.configure_retries()
    write_enabled_features(paths.enabled_features_file, feature_flag_values(config, environ, ids))

    state = load_state(paths.state_file)
    for feature in features:
        result = run_feature(feature, ctx, events)
        report.results.append(result)
        state.set_feature(
            result.name,
            status=result.status,
            version=result.version,
            duration_ms=result.duration_ms,
            errors=result.errors,
            warnings=result.warnings,
            verification_tier=result.verification_tier,
            error=result.error,
            finished_at=_now_iso(),
        )

    report.ended_at = _now_iso()
    state.last_build.build_id = report.build_id
    state.last_build.started_at = report.started_at
    state.last_build.ended_at = report.ended_at
    state.last_build.status = report.status
    state.last_build.features_total = report.total
    state.last_build.features_succeeded = report.succeeded
    state.last_build.features_failed = report.failed
    save_state(state, paths.state_file)

    logger.info(
        "Build %s finished: %s (%d/%d features ok)",
        report.build_id,
        report.status,
        report.succeeded,
        report.total,
    )
    return report
