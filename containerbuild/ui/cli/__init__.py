"""
Helpers shared by the CLI command modules.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from containerbuild.core.config.loader import ConfigError, load_build_config
from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.models.build import BuildConfig


def load_config(ctx: click.Context) -> BuildConfig:
    """Load ``build.yml`` and apply the global ``--root`` / ``--dry-run`` options.

    Exits with status 1 on an invalid configuration.
    """
    cached = ctx.obj.get("build_config")
    if cached is not None:
        return cached

    try:
        config = load_build_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    updates: dict = {}
    root: Path | None = ctx.obj.get("root")
    if root is not None:
        updates["root"] = root
    if ctx.obj.get("dry_run"):
        updates["dry_run"] = True
    if updates:
        config = config.model_copy(update=updates)

    ctx.obj["build_config"] = config
    return config


def system_paths(ctx: click.Context) -> SystemPaths:
    config = load_config(ctx)
    return SystemPaths(root=config.root, log_dir_override=config.log_dir)
