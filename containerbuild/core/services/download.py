"""
Verified downloads and archive extraction.

``download_and_verify`` never leaves an unverified file at the target
path: bytes land in ``<dest>.tmp`` and are moved into place only after
the digest matches.
"""

from __future__ import annotations

import gzip
import logging
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path

from containerbuild.core.errors import ChecksumMismatchError, DownloadError, FeatureError
from containerbuild.core.reliability.retry import RetryPolicy
from containerbuild.core.services import net
from containerbuild.core.services.checksums import fetch
from containerbuild.core.services.checksums.digest import (
    require_checksum,
    validate_checksum_format,
)
from containerbuild.core.services.command import CommandRunner

logger = logging.getLogger(__name__)

CHECKSUM_TYPES = ("checksums_txt", "sha512", "calculate")


def download_and_verify(
    url: str,
    expected: str,
    dest: Path,
    policy: RetryPolicy | None = None,
) -> Path:
    """Download ``url`` to ``dest`` only if its digest equals ``expected``.

    Raises:
        DownloadError: The download failed.
        ChecksumMismatchError: The digest did not match; nothing is kept.
    """
    tmp = dest.with_name(dest.name + ".tmp")
    logger.info("→ Downloading: %s", dest.name)
    try:
        net.download_file(url, tmp, policy=policy)
    except DownloadError:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("→ Verifying checksum...")
    try:
        require_checksum(tmp, expected)
    except (ChecksumMismatchError, ValueError) as e:
        tmp.unlink(missing_ok=True)
        logger.error("✗ Checksum verification failed: %s", e)
        raise
    tmp.replace(dest)
    logger.info("✓ Download verified successfully")
    return dest


# ── Archives ────────────────────────────────────────────────────


def _extract_zip(archive: Path, dest: Path, members: list[str] | None) -> None:
    dest_resolved = dest.resolve()
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            if members is not None and info.filename not in members:
                continue
            target = (dest / info.filename).resolve()
            if not target.is_relative_to(dest_resolved):
                raise FeatureError(f"Refusing to extract {info.filename} outside {dest}")
            zf.extract(info, dest)
            # zipfile drops permission bits; restore them from the unix attrs
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                target.chmod(mode)


def extract_archive(archive: Path, dest: Path, members: list[str] | None = None) -> Path:
    """Extract a .tar.gz/.tgz/.tar.xz/.zip archive into ``dest``.

    Raises:
        FeatureError: Unknown format, a corrupt archive, or a member
            escaping ``dest``.
    """
    dest.mkdir(parents=True, exist_ok=True)
    name = archive.name
    logger.info("→ Extracting %s to %s", name, dest)
    if zipfile.is_zipfile(archive):
        try:
            _extract_zip(archive, dest, members)
        except zipfile.BadZipFile as e:
            raise FeatureError(f"Corrupt archive {name}: {e}") from e
    elif tarfile.is_tarfile(archive):
        try:
            with tarfile.open(archive, "r:*") as tf:
                if members is None:
                    tf.extractall(dest, filter="data")
                else:
                    try:
                        selected = [tf.getmember(m) for m in members]
                    except KeyError as e:
                        raise FeatureError(f"Member missing from {name}: {e.args[0]}") from e
                    tf.extractall(dest, members=selected, filter="data")
        except tarfile.FilterError as e:
            raise FeatureError(f"Refusing to extract {name}: {e}") from e
        except tarfile.TarError as e:
            raise FeatureError(f"Corrupt archive {name}: {e}") from e
    else:
        raise FeatureError(f"Unsupported archive format: {name}")
    return dest


def download_and_extract(
    url: str,
    expected: str,
    extract_dir: Path,
    members: list[str] | None = None,
    policy: RetryPolicy | None = None,
) -> Path:
    """Verify then extract. The downloaded archive is always removed."""
    with tempfile.TemporaryDirectory(prefix="cb-dl-") as scratch:
        archive = Path(scratch) / (Path(url.split("?", 1)[0]).name or "download")
        download_and_verify(url, expected, archive, policy=policy)
        extract_archive(archive, extract_dir, members)
    logger.info("✓ Extraction completed")
    return extract_dir


# ── GitHub releases ─────────────────────────────────────────────


def _release_checksum(tool: str, base_url: str, filename: str, checksum_type: str) -> str:
    file_url = f"{base_url}/{filename}"
    if checksum_type == "checksums_txt":
        value = fetch.fetch_github_checksums_txt(f"{base_url}/checksums.txt", filename)
    elif checksum_type == "sha512":
        value = fetch.fetch_sha512_file(f"{file_url}.sha512")
        if value and not validate_checksum_format(value, "sha512"):
            value = None
    elif checksum_type == "calculate":
        value = fetch.calculate_checksum_sha256(file_url)
    else:
        raise FeatureError(f"Unknown checksum type: {checksum_type}")
    if not value:
        raise DownloadError(f"Failed to obtain {checksum_type} checksum for {tool} ({filename})")
    return value


def _make_executable(path: Path) -> None:
    path.chmod(path.stat().st_mode | 0o755)


def install_github_release(
    tool: str,
    version: str,
    base_url: str,
    amd64_file: str,
    arm64_file: str,
    checksum_type: str,
    install_type: str,
    *,
    arch: str,
    bin_dir: Path,
    runner: CommandRunner,
    policy: RetryPolicy | None = None,
) -> Path | None:
    """Install one binary from a release page.

    ``install_type`` is one of ``binary``, ``extract:<bin>``,
    ``extract_flat:<bin>``, ``dpkg`` or ``gunzip``.

    Returns:
        The installed path, or None when the arch has no asset.
    """
    logger.info("Installing %s %s...", tool, version)
    filename = {"amd64": amd64_file, "arm64": arm64_file}.get(arch)
    if not filename:
        logger.warning("%s not available for architecture %s, skipping...", tool, arch)
        return None

    file_url = f"{base_url}/{filename}"
    checksum = _release_checksum(tool, base_url, filename, checksum_type)
    bin_dir.mkdir(parents=True, exist_ok=True)

    if install_type.startswith("extract_flat:"):
        binary = install_type.split(":", 1)[1]
        download_and_extract(file_url, checksum, bin_dir, members=[binary], policy=policy)
        target = bin_dir / binary
        _make_executable(target)
        logger.info("✓ %s %s installed successfully", tool, version)
        return target

    with tempfile.TemporaryDirectory(prefix=f"cb-{tool}-") as scratch:
        work = Path(scratch)
        local = download_and_verify(file_url, checksum, work / f"{tool}-download", policy=policy)

        if install_type == "binary":
            target = bin_dir / tool
            shutil.move(str(local), target)
        elif install_type.startswith("extract:"):
            binary = install_type.split(":", 1)[1]
            extracted = extract_archive(local, work / "extracted")
            found = next((p for p in sorted(extracted.rglob(binary)) if p.is_file()), None)
            if found is None:
                raise FeatureError(f"Binary '{binary}' not found after extracting {tool}")
            target = bin_dir / binary
            shutil.move(str(found), target)
        elif install_type == "dpkg":
            runner.run(["dpkg", "-i", str(local)], description=f"Installing {tool} package")
            logger.info("✓ %s %s installed successfully", tool, version)
            return bin_dir / tool
        elif install_type == "gunzip":
            target = bin_dir / tool
            with gzip.open(local, "rb") as src, target.open("wb") as out:
                shutil.copyfileobj(src, out)
        else:
            raise FeatureError(f"Unknown install type: {install_type}")

    _make_executable(target)
    logger.info("✓ %s %s installed successfully", tool, version)
    return target
