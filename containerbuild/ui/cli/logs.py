"""
CLI command for reading build logs and the last build's state.

Usage::

    containerbuild logs                 # master summary + last build
    containerbuild logs golang          # golang-summary.log
    containerbuild logs golang --errors
"""

from __future__ import annotations

import json
import sys

import click

from containerbuild.ui.cli import system_paths


def _feature_log_name(feature: str) -> str:
    """Feature id or label → log file prefix."""
    from containerbuild.core.features import get_feature
    from containerbuild.core.observability.feature_log import safe_feature_name

    found = get_feature(feature)
    return safe_feature_name(found.info().label if found else feature)


@click.command()
@click.argument("feature", required=False)
@click.option("--errors", is_flag=True, help="Show the feature's errors log.")
@click.option("--full", is_flag=True, help="Show the feature's full install log.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the build state as JSON.")
@click.pass_context
def logs(ctx: click.Context, feature: str | None, errors: bool, full: bool, as_json: bool) -> None:
    """Show build summaries."""
    from containerbuild.core.observability.feature_log import read_master_summary
    from containerbuild.core.persistence.state_file import load_state

    paths = system_paths(ctx)

    if feature is None:
        state = load_state(paths.state_file)
        if as_json:
            click.echo(json.dumps(state.model_dump(mode="json"), indent=2))
            return

        lines = read_master_summary(paths.log_dir)
        if not lines and not state.last_build.build_id:
            click.secho(f"⚠️  No build logs in {paths.log_dir}", fg="yellow")
            return

        build = state.last_build
        if build.build_id:
            status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(build.status, "white")
            click.echo(f"\n   Last build {build.build_id}: ", nl=False)
            click.secho(build.status, fg=status_color, bold=True)
            click.echo(f"   {build.features_succeeded}/{build.features_total} features, ended {build.ended_at}")
            for record in state.features.values():
                tier = f" [{record.verification_tier}]" if record.verification_tier else ""
                click.echo(f"     • {record.name} {record.version}: {record.status}{tier}")
        if lines:
            click.secho("\n   Master summary:", fg="white", bold=True)
            for line in lines:
                click.echo(f"     {line}")
        click.echo()
        return

    name = _feature_log_name(feature)
    suffix = "errors" if errors else "install" if full else "summary"
    path = paths.log_dir / f"{name}-{suffix}.log"
    if not path.is_file():
        click.secho(f"❌ No log at {path}", fg="red", err=True)
        sys.exit(1)
    click.echo(path.read_text(encoding="utf-8"), nl=False)
