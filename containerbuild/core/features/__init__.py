"""
Feature installers: one per tool or ecosystem.

Registry of all available features, in the fixed order a build runs
them. Import this module to get access to the feature registry.
"""

from __future__ import annotations

from containerbuild.core.errors import FeatureError

from .android import AndroidFeature
from .aws import AwsFeature
from .base import Feature, FeatureContext, FeatureInfo
from .claude_code import ClaudeCodeFeature
from .golang import GolangFeature
from .java import JavaFeature
from .kotlin import KotlinFeature
from .op_cli import OpCliFeature
from .python import PythonFeature
from .r import RFeature
from .ruby import RubyFeature

# ── Feature registry ────────────────────────────────────────────────

_FEATURES: dict[str, Feature] = {}

# Build order; dependencies always come before their dependents
BUILD_ORDER = (
    PythonFeature,
    RubyFeature,
    RFeature,
    GolangFeature,
    JavaFeature,
    KotlinFeature,
    AndroidFeature,
    OpCliFeature,
    AwsFeature,
    ClaudeCodeFeature,
)


def _register_defaults() -> None:
    """Register all built-in features."""
    for cls in BUILD_ORDER:
        feature = cls()
        _FEATURES[feature.info().id] = feature


def _registry() -> dict[str, Feature]:
    if not _FEATURES:
        _register_defaults()
    return _FEATURES


def normalize_id(name: str) -> str:
    """``"claude-code"`` / ``"Claude_Code"`` → ``"claude_code"``."""
    return name.strip().lower().replace("-", "_")


def get_feature(name: str) -> Feature | None:
    """Get a feature by id (dashes and case are ignored)."""
    return _registry().get(normalize_id(name))


def list_features() -> list[FeatureInfo]:
    """Metadata of every feature, in build order."""
    return [feature.info() for feature in _registry().values()]


def flag_names() -> dict[str, str]:
    """``INCLUDE_*`` flag → feature id."""
    return {feature.info().flag: fid for fid, feature in _registry().items()}


def resolve_order(names: list[str]) -> list[Feature]:
    """Expand ``names`` with their dependencies and sort into build order.

    Raises:
        FeatureError: Unknown feature id.
    """
    registry = _registry()
    wanted: set[str] = set()
    pending = [normalize_id(n) for n in names]
    while pending:
        fid = pending.pop()
        if fid in wanted:
            continue
        feature = registry.get(fid)
        if feature is None:
            known = ", ".join(registry)
            raise FeatureError(f"Unknown feature '{fid}' (known: {known})")
        wanted.add(fid)
        pending.extend(feature.info().requires)
    return [feature for fid, feature in registry.items() if fid in wanted]


__all__ = [
    "BUILD_ORDER",
    "Feature",
    "FeatureContext",
    "FeatureInfo",
    "flag_names",
    "get_feature",
    "list_features",
    "normalize_id",
    "resolve_order",
]
