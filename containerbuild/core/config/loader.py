"""
Configuration loader: reads build.yml and the build environment.

``build.yml`` is optional: without it the build is driven entirely by
environment variables (``INCLUDE_*`` flags, ``GO_VERSION`` and friends),
which is how image builds normally invoke it.
"""

from __future__ import annotations

import logging
import os
import pwd
import shlex
from collections.abc import Mapping
from pathlib import Path

import yaml

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.models.build import BuildConfig, UserInfo

logger = logging.getLogger(__name__)

BUILD_CONFIG_FILE = "build.yml"

_TRUE = {"1", "true", "yes", "on"}


class ConfigError(Exception):
    """Raised when build configuration is invalid."""


def env_flag(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    """Interpret an environment variable as a boolean flag."""
    value = environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE


def find_build_file(start_dir: Path | None = None) -> Path | None:
    """Search for build.yml starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / BUILD_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_build_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BuildConfig:
    """Load and validate the build configuration.

    Args:
        path: Explicit path to build.yml. If None, searches upward and
            falls back to an empty configuration.
        environ: Environment to overlay (default: ``os.environ``).

    Returns:
        Validated BuildConfig.

    Raises:
        ConfigError: If an explicit file is missing or any file is invalid.
    """
    environ = os.environ if environ is None else environ

    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path is None:
        path = find_build_file()

    data: dict = {}
    if path is not None:
        logger.debug("Loading build config from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")
        data = loaded.get("build", loaded) if "build" in loaded else loaded

    # ── Environment overlay for top-level knobs ─────────────────
    if environ.get("BUILD_LOG_DIR"):
        data["log_dir"] = environ["BUILD_LOG_DIR"]
    if "REQUIRE_VERIFIED_DOWNLOADS" in environ or "PRODUCTION_MODE" in environ:
        production = env_flag(environ, "PRODUCTION_MODE")
        data["require_verified_downloads"] = env_flag(
            environ, "REQUIRE_VERIFIED_DOWNLOADS", default=production
        )
    if "ENABLE_JSON_LOGGING" in environ:
        data["json_logging"] = env_flag(environ, "ENABLE_JSON_LOGGING")
    if environ.get("GITHUB_TOKEN"):
        data["github_token"] = environ["GITHUB_TOKEN"]

    retry = dict(data.get("retry") or {})
    for key, var in (
        ("max_attempts", "RETRY_MAX_ATTEMPTS"),
        ("initial_delay", "RETRY_INITIAL_DELAY"),
        ("max_delay", "RETRY_MAX_DELAY"),
    ):
        if environ.get(var):
            retry[key] = environ[var]
    data["retry"] = retry

    apt = dict(data.get("apt") or {})
    for key, var in (
        ("max_retries", "APT_MAX_RETRIES"),
        ("retry_delay", "APT_RETRY_DELAY"),
        ("timeout", "APT_TIMEOUT"),
    ):
        if environ.get(var):
            apt[key] = environ[var]
    data["apt"] = apt

    try:
        config = BuildConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid build configuration: {e}") from e

    logger.info(
        "Loaded build config (root=%s, %d features from file)",
        config.root,
        len(config.features),
    )
    return config


# ── Build user ──────────────────────────────────────────────────


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a shell ``KEY=value`` file (``export`` prefixes and quotes allowed)."""
    values: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, _, value = line.partition("=")
        key = key.strip()
        if not key.replace("_", "").isalnum():
            continue
        try:
            parts = shlex.split(value, comments=True)
        except ValueError:
            parts = [value.strip()]
        values[key] = parts[0] if parts else ""
    return values


def resolve_user(paths: SystemPaths, configured: UserInfo | None = None) -> UserInfo:
    """Determine the build user.

    Order: explicit configuration, the ``build-env`` file written by the
    image build, an existing account under ``/home``, then defaults.
    """
    if configured is not None:
        return configured

    if paths.build_env_file.is_file():
        values = parse_env_file(paths.build_env_file)
        try:
            user = UserInfo(
                username=values.get("USERNAME") or "developer",
                uid=int(values.get("ACTUAL_UID") or 1000),
                gid=int(values.get("ACTUAL_GID") or 1000),
                working_dir=values.get("WORKING_DIR") or "/workspace/project",
            )
        except ValueError as e:
            raise ConfigError(f"Invalid build-env file {paths.build_env_file}: {e}") from e
        logger.info("Using values from build-env: %s (%d:%d)", user.username, user.uid, user.gid)
        return user

    logger.warning("%s not found, attempting to detect existing user", paths.build_env_file)
    home_root = paths.root / "home"
    if home_root.is_dir():
        for home in sorted(home_root.iterdir()):
            if not home.is_dir():
                continue
            try:
                entry = pwd.getpwnam(home.name)
            except KeyError:
                continue
            logger.info("Detected existing user: %s (%d:%d)", home.name, entry.pw_uid, entry.pw_gid)
            return UserInfo(username=home.name, uid=entry.pw_uid, gid=entry.pw_gid)

    user = UserInfo()
    logger.info("No existing user detected, using defaults: %s", user.username)
    return user
