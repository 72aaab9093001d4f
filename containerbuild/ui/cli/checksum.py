"""
CLI commands for download verification.

Usage::

    containerbuild verify go1.25.3.linux-amd64.tar.gz --name golang --version 1.25.3
    containerbuild checksum fetch language python 3.13.7
    containerbuild checksum compute ./Python-3.13.7.tar.xz
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from containerbuild.ui.cli import load_config, system_paths

_CATEGORIES = click.Choice(["language", "tool"])


def _verifier(ctx: click.Context):
    from containerbuild.core.services.checksums import ChecksumDatabase, DownloadVerifier
    from containerbuild.core.services.command import CommandRunner

    # Importing the registry registers the tool checksum fetchers
    import containerbuild.core.features  # noqa: F401

    config = load_config(ctx)
    paths = system_paths(ctx)
    return DownloadVerifier(
        ChecksumDatabase.load(paths.checksums_db),
        CommandRunner(),
        gpg_keys_dir=paths.gpg_keys_dir,
        require_verified=config.require_verified_downloads,
    )


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--category", type=_CATEGORIES, default="tool", show_default=True)
@click.option("--name", required=True, help="Name in the checksum database (e.g. golang).")
@click.option("--version", "version", required=True, help="Version the file claims to be.")
@click.option("--arch", default="amd64", show_default=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(
    ctx: click.Context,
    file: Path,
    category: str,
    name: str,
    version: str,
    arch: str,
    as_json: bool,
) -> None:
    """Verify FILE through the checksum tiers."""
    result = _verifier(ctx).verify(category, name, version, file, arch=arch)

    if as_json:
        data = result.model_dump(mode="json")
        data["tier_label"] = result.tier.label if result.tier is not None else None
        data["trusted"] = result.trusted
        click.echo(json.dumps(data, indent=2))
    elif result.verified:
        color = "green" if result.trusted else "yellow"
        click.secho(f"✅ {name} {version}: {result.tier.label} ({result.message})", fg=color)
        click.echo(f"   sha256: {result.checksum}")
    else:
        click.secho(f"❌ {name} {version}: {result.message}", fg="red")

    if not result.verified:
        sys.exit(1)


@click.group()
def checksum() -> None:
    """Checksums: look up published digests or hash local files."""


@checksum.command("fetch")
@click.argument("category", type=_CATEGORIES)
@click.argument("name")
@click.argument("version")
@click.option("--arch", default="amd64", show_default=True)
@click.pass_context
def fetch_cmd(ctx: click.Context, category: str, name: str, version: str, arch: str) -> None:
    """Print the pinned or published checksum for NAME VERSION."""
    digest = _verifier(ctx).published_checksum(category, name, version, arch)
    if not digest:
        click.secho(f"❌ No checksum available for {name} {version}", fg="red", err=True)
        sys.exit(1)
    click.echo(digest)


@checksum.command("compute")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--algo", type=click.Choice(["sha256", "sha512"]), default="sha256", show_default=True)
def compute_cmd(file: Path, algo: str) -> None:
    """Hash FILE."""
    from containerbuild.core.services.checksums import compute_checksum

    click.echo(f"{compute_checksum(file, algo)}  {file.name}")
