"""
CLI commands run inside the container rather than at build time.

Usage::

    containerbuild startup
    containerbuild auth-watch --timeout 600
"""

from __future__ import annotations

import os
import sys

import click

from containerbuild.ui.cli import load_config, system_paths


@click.command()
@click.pass_context
def startup(ctx: click.Context) -> None:
    """Run first-startup hooks (once) and startup hooks."""
    from containerbuild.core.config.loader import ConfigError, resolve_user
    from containerbuild.core.errors import CommandError
    from containerbuild.core.services.command import CommandRunner
    from containerbuild.core.services.startup import run_startup

    config = load_config(ctx)
    paths = system_paths(ctx)
    try:
        user = resolve_user(paths, config.user)
        report = run_startup(paths, user, CommandRunner(dry_run=config.dry_run))
    except (ConfigError, CommandError) as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if not ctx.obj.get("quiet"):
        label = "first start" if report.first_run else "start"
        click.secho(f"✅ Container {label}: {len(report.ran)} scripts in {report.duration}s", fg="green")
        for name in report.skipped:
            click.secho(f"   ⚠️  skipped {name}", fg="yellow")


@click.command("auth-watch")
@click.option("--timeout", type=int, default=None, help="Seconds to wait (default: CLAUDE_AUTH_WATCHER_TIMEOUT or 3600).")
@click.option("--poll-interval", type=float, default=None, help="Seconds between checks without inotify.")
def auth_watch(timeout: int | None, poll_interval: float | None) -> None:
    """Wait for Claude authentication, then run claude-setup once.

    Exit status is 0 unless the setup command itself failed.
    """
    from containerbuild.core.services.auth_watcher import SETUP_FAILED, AuthWatcher, AuthWatcherConfig
    from containerbuild.core.services.command import CommandRunner

    config = AuthWatcherConfig.from_env(os.environ)
    if timeout is not None:
        config.timeout = timeout
    if poll_interval is not None:
        config.poll_interval = poll_interval

    outcome = AuthWatcher(config, CommandRunner()).run()
    click.echo(outcome)
    if outcome == SETUP_FAILED:
        sys.exit(1)
