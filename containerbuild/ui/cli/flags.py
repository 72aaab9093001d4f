"""
CLI commands for the runtime feature flags file.

Usage::

    containerbuild flags show
    containerbuild flags show --json
    containerbuild flags write
"""

from __future__ import annotations

import json
import os
import sys

import click

from containerbuild.ui.cli import load_config, system_paths


@click.group()
def flags() -> None:
    """Feature flags: what was installed, as seen at runtime."""


@flags.command("show")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, as_json: bool) -> None:
    """Print enabled-features.conf."""
    from containerbuild.core.config.feature_flags import is_enabled, read_enabled_features

    path = system_paths(ctx).enabled_features_file
    values = read_enabled_features(path)

    if as_json:
        click.echo(json.dumps(values, indent=2))
        return

    if not values:
        click.secho(f"⚠️  No feature flags at {path}", fg="yellow")
        return

    click.secho(f"\n🚩 {path}\n", fg="cyan", bold=True)
    for key, value in values.items():
        if key.startswith("INCLUDE_"):
            marker = click.style("✓", fg="green") if is_enabled(values, key) else click.style("✗", fg="red")
            click.echo(f"   {marker} {key}")
        else:
            click.echo(f"     {key}={value}")
    click.echo()


@flags.command("write")
@click.pass_context
def write(ctx: click.Context) -> None:
    """Write enabled-features.conf from the current INCLUDE_* flags."""
    from containerbuild.core.config.feature_flags import write_enabled_features
    from containerbuild.core.engine.executor import enabled_feature_ids, feature_flag_values
    from containerbuild.core.errors import FeatureError
    from containerbuild.core.features import resolve_order

    config = load_config(ctx)
    try:
        ids = [f.info().id for f in resolve_order(enabled_feature_ids(config, os.environ))]
    except FeatureError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    path = write_enabled_features(
        system_paths(ctx).enabled_features_file,
        feature_flag_values(config, os.environ, ids),
    )
    click.secho(f"✅ Wrote {path}", fg="green")
