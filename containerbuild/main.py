"""
containerbuild: CLI entrypoint.

Usage:
    containerbuild --help
    containerbuild list
    containerbuild build
    containerbuild install golang kotlin
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from containerbuild import __version__
from containerbuild.core.observability.logging_config import setup_logging
from containerbuild.ui.cli import load_config, system_paths


@click.group()
@click.version_option(version=__version__, prog_name="containerbuild")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to build.yml (default: auto-detect).",
)
@click.option(
    "--root",
    type=click.Path(file_okay=False),
    default=None,
    help="Filesystem root to install into (default: from build.yml, else /).",
)
@click.option("--dry-run", is_flag=True, help="Log commands instead of running them.")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    root: str | None,
    dry_run: bool,
) -> None:
    """containerbuild: install language toolchains and CLIs into container images."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["root"] = Path(root) if root else None
    ctx.obj["dry_run"] = dry_run

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("CB_LOG_LEVEL", "INFO")

    setup_logging(
        level=level,
        log_file=os.environ.get("CB_LOG_FILE"),
        log_file_level=os.environ.get("CB_LOG_FILE_LEVEL"),
        build_log_dir=os.environ.get("BUILD_LOG_DIR"),
    )


def _print_report(report, quiet: bool) -> None:
    status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(report.status, "white")
    if not quiet:
        click.echo()
        for result in report.results:
            if result.ok:
                marker, color = "✓", "green"
            else:
                marker, color = "✗", "red"
            version = f" {result.version}" if result.version else ""
            tier = f" [{result.verification_tier}]" if result.verification_tier else ""
            click.secho(f"   {marker} {result.name}{version}{tier}", fg=color)
            if result.error:
                click.echo(f"       {result.error}")
        click.echo()
    click.echo(f"   Build {report.build_id}: ", nl=False)
    click.secho(report.status, fg=status_color, bold=True)
    click.echo(f"   {report.succeeded}/{report.total} features installed")


def _run(ctx: click.Context, only: list[str] | None, arch: str | None, as_json: bool) -> None:
    from containerbuild.core.engine.executor import run_build
    from containerbuild.core.errors import BuildError

    config = load_config(ctx)
    try:
        report = run_build(config, arch=arch, only=only)
    except BuildError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report, ctx.obj.get("quiet", False))

    if not report.all_ok:
        sys.exit(1)


@cli.command()
@click.option("--arch", default=None, help="Target architecture (default: detected).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def build(ctx: click.Context, arch: str | None, as_json: bool) -> None:
    """Install every feature enabled by INCLUDE_* flags or build.yml."""
    _run(ctx, None, arch, as_json)


@cli.command()
@click.argument("features", nargs=-1, required=True)
@click.option("--arch", default=None, help="Target architecture (default: detected).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(ctx: click.Context, features: tuple[str, ...], arch: str | None, as_json: bool) -> None:
    """Install the named features (and what they require)."""
    _run(ctx, list(features), arch, as_json)


@cli.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List available features in build order."""
    from containerbuild.core.engine.executor import enabled_feature_ids
    from containerbuild.core.features import list_features

    config = load_config(ctx)
    enabled = set(enabled_feature_ids(config, os.environ))
    infos = list_features()

    if as_json:
        items = []
        for info in infos:
            items.append({
                "id": info.id,
                "label": info.label,
                "flag": info.flag,
                "description": info.description,
                "version_var": info.version_var,
                "default_version": info.default_version,
                "requires": list(info.requires),
                "enabled": info.id in enabled,
            })
        click.echo(json.dumps(items, indent=2))
        return

    click.secho(f"\n🧩 Features ({len(infos)}):\n", fg="cyan", bold=True)
    for info in infos:
        marker = click.style("✓", fg="green") if info.id in enabled else " "
        version = f"  {info.version_var}={info.default_version}" if info.version_var else ""
        requires = f"  (requires {', '.join(info.requires)})" if info.requires else ""
        click.echo(f"   {marker} {info.id:<12} {info.flag:<22}{version}{requires}")
    click.echo()


@cli.command()
@click.pass_context
def paths(ctx: click.Context) -> None:
    """Show where a build writes its outputs."""
    sp = system_paths(ctx)
    for label, path in (
        ("bashrc.d", sp.bashrc_dir),
        ("first-startup", sp.first_startup_dir),
        ("startup", sp.startup_dir),
        ("feature flags", sp.enabled_features_file),
        ("binaries", sp.bin_dir),
        ("caches", sp.cache_root),
        ("logs", sp.log_dir),
        ("checksums", sp.checksums_db),
    ):
        click.echo(f"   {label:<14} {path}")


# ── Sub-command groups ──────────────────────────────────────────

from containerbuild.ui.cli.checksum import checksum, verify  # noqa: E402
from containerbuild.ui.cli.flags import flags  # noqa: E402
from containerbuild.ui.cli.logs import logs  # noqa: E402
from containerbuild.ui.cli.runtime import auth_watch, startup  # noqa: E402

cli.add_command(flags)
cli.add_command(verify)
cli.add_command(checksum)
cli.add_command(startup)
cli.add_command(auth_watch)
cli.add_command(logs)


if __name__ == "__main__":
    cli()
