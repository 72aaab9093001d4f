"""
Published checksum fetchers.

Every fetcher returns the hex digest, or ``None`` when the publisher has
nothing usable (network error, missing entry, malformed value). Callers
treat ``None`` as "this tier is unavailable", never as a failure.
"""

from __future__ import annotations

import hashlib
import logging
import re
import urllib.request

from containerbuild.core.errors import DownloadError
from containerbuild.core.services import net
from containerbuild.core.services.checksums.digest import validate_checksum_format
from containerbuild.core.services.versions import version_tuple

logger = logging.getLogger(__name__)


def _first_field(text: str) -> str:
    for line in text.splitlines():
        parts = line.split()
        if parts:
            return parts[0]
    return ""


def _get(url: str) -> str | None:
    try:
        return net.fetch_text(url)
    except DownloadError as e:
        logger.debug("Checksum source unavailable: %s", e)
        return None


# ── Generic formats ─────────────────────────────────────────────


def fetch_github_checksums_txt(checksums_url: str, filename: str) -> str | None:
    """Digest for ``filename`` from a ``<hex>  <name>`` checksums file."""
    text = _get(checksums_url)
    if text is None:
        return None
    for line in text.splitlines():
        if filename in line:
            parts = line.split()
            if parts:
                return parts[0]
    return None


def fetch_sha256_file(url: str) -> str | None:
    """First field of a ``.sha256`` file, if it is a valid SHA-256."""
    text = _get(url)
    value = _first_field(text) if text else ""
    return value if validate_checksum_format(value, "sha256") else None


def fetch_sha512_file(url: str) -> str | None:
    """First field of a ``.sha512`` file, if it is a valid SHA-512."""
    text = _get(url)
    value = _first_field(text) if text else ""
    return value if validate_checksum_format(value, "sha512") else None


def fetch_maven_sha256(base_url: str) -> str | None:
    """Maven Central publishes ``<artifact>.sha256`` next to each artifact."""
    return fetch_sha256_file(f"{base_url}.sha256")


def calculate_checksum_sha256(url: str, timeout: int = 300) -> str | None:
    """Stream ``url`` and hash it. Trust-on-first-use: nothing is verified."""
    h = hashlib.sha256()
    try:
        with urllib.request.urlopen(net.build_request(url), timeout=timeout) as resp:
            for chunk in iter(lambda: resp.read(1024 * 1024), b""):
                h.update(chunk)
    except (OSError, ValueError) as e:
        logger.warning("Could not calculate checksum for %s: %s", url, e)
        return None
    return h.hexdigest()


# ── Language publishers ─────────────────────────────────────────


def fetch_python_checksum(version: str) -> str | None:
    return fetch_sha256_file(
        f"https://www.python.org/ftp/python/{version}/Python-{version}.tgz.sha256"
    )


def fetch_node_checksum(version: str, arch: str = "amd64") -> str | None:
    node_arch = {"amd64": "x64", "arm64": "arm64"}.get(arch, "x64")
    return fetch_github_checksums_txt(
        f"https://nodejs.org/dist/v{version}/SHASUMS256.txt",
        f"node-v{version}-linux-{node_arch}.tar.xz",
    )


def _newest_partial(candidates: list[str], version: str) -> str | None:
    matching = [v for v in candidates if v.startswith(version + ".")]
    return max(matching, key=version_tuple) if matching else None


def _go_checksum_from_page(page: str, filename: str) -> str | None:
    idx = page.find(filename)
    if idx < 0:
        return None
    window = page[idx: idx + 1500]
    match = re.search(r"<tt>([a-f0-9]{64})</tt>", window)
    return match.group(1) if match else None


def fetch_go_checksum(version: str, arch: str = "amd64") -> str | None:
    """Checksum from the go.dev download page. Partial versions use the newest patch."""
    page = _get("https://go.dev/dl/")
    if page is None:
        return None

    checksum = _go_checksum_from_page(page, f"go{version}.linux-{arch}.tar.gz")
    if checksum:
        return checksum

    if version.count(".") < 2:
        found = re.findall(rf"go({re.escape(version)}\.\d+)\.linux-{re.escape(arch)}\.tar\.gz", page)
        resolved = _newest_partial(found, version)
        if resolved:
            return _go_checksum_from_page(page, f"go{resolved}.linux-{arch}.tar.gz")
    return None


def _ruby_checksum_from_page(page: str, version: str) -> str | None:
    match = re.search(
        rf">Ruby {re.escape(version)}(?![\d.])[\s\S]{{0,400}}?sha256: ([a-f0-9]{{64}})",
        page,
    )
    return match.group(1) if match else None


def fetch_ruby_checksum(version: str) -> str | None:
    """Checksum from the ruby-lang.org downloads page."""
    page = _get("https://www.ruby-lang.org/en/downloads/")
    if page is None:
        return None

    checksum = _ruby_checksum_from_page(page, version)
    if checksum:
        return checksum

    if version.count(".") < 2:
        found = re.findall(rf">Ruby ({re.escape(version)}\.\d+)", page)
        resolved = _newest_partial(found, version)
        if resolved:
            return _ruby_checksum_from_page(page, resolved)
    return None


LANGUAGE_FETCHERS = {
    "python": lambda version, arch: fetch_python_checksum(version),
    "ruby": lambda version, arch: fetch_ruby_checksum(version),
    "go": fetch_go_checksum,
    "golang": fetch_go_checksum,
    "node": fetch_node_checksum,
    "nodejs": fetch_node_checksum,
}
