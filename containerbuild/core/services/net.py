"""
HTTP access for installers.

Thin wrappers over ``urllib.request``. Requests to GitHub carry
``Authorization: token $GITHUB_TOKEN`` when the variable is set, which
lifts the anonymous API rate limit. ``file://`` URLs work too, which is
how tests and air-gapped mirrors feed artifacts in.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from containerbuild.core.errors import DownloadError
from containerbuild.core.observability.scrub import scrub_url
from containerbuild.core.reliability.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

USER_AGENT = "containerbuild/0.1"
_GITHUB_HOSTS = ("github.com", "api.github.com", "raw.githubusercontent.com")


def _is_github(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host in _GITHUB_HOSTS or host.endswith(".github.com")


def build_request(url: str, headers: dict[str, str] | None = None) -> urllib.request.Request:
    """Request with our user agent and, for GitHub, the API token."""
    merged = {"User-Agent": USER_AGENT}
    token = os.environ.get("GITHUB_TOKEN", "")
    if token and _is_github(url):
        merged["Authorization"] = f"token {token}"
    if headers:
        merged.update(headers)
    return urllib.request.Request(url, headers=merged)


def _describe_http_error(url: str, e: urllib.error.HTTPError) -> str:
    body = ""
    try:
        body = e.read().decode("utf-8", errors="replace")[:500]
    except OSError:
        pass
    if _is_github(url) and (e.code == 403 or "rate limit" in body.lower()):
        logger.warning(
            "GitHub API rate limit hit for %s; set GITHUB_TOKEN to raise the limit",
            scrub_url(url),
        )
        return f"GitHub rate limit exceeded (HTTP {e.code})"
    return f"HTTP {e.code} {e.reason}"


def fetch_bytes(url: str, timeout: int = 30, headers: dict[str, str] | None = None) -> bytes:
    """GET ``url`` and return the body.

    Raises:
        DownloadError: On any network or HTTP failure.
    """
    try:
        with urllib.request.urlopen(build_request(url, headers), timeout=timeout) as resp:
            return resp.read()
    except urllib.error.HTTPError as e:
        raise DownloadError(f"Failed to fetch {scrub_url(url)}: {_describe_http_error(url, e)}") from e
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise DownloadError(f"Failed to fetch {scrub_url(url)}: {e}") from e


def fetch_text(url: str, timeout: int = 30, headers: dict[str, str] | None = None) -> str:
    return fetch_bytes(url, timeout=timeout, headers=headers).decode("utf-8", errors="replace")


def fetch_json(url: str, timeout: int = 30, headers: dict[str, str] | None = None) -> Any:
    text = fetch_text(url, timeout=timeout, headers=headers)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DownloadError(f"Invalid JSON from {scrub_url(url)}: {e}") from e


def github_api(path_or_url: str, timeout: int = 15) -> Any:
    """Call the GitHub REST API, retrying transient failures."""
    url = path_or_url
    if not url.startswith("http"):
        url = "https://api.github.com/" + path_or_url.lstrip("/")
    return retry_with_backoff(
        lambda: fetch_json(url, timeout=timeout, headers={"Accept": "application/vnd.github.v3+json"}),
        retry_on=(DownloadError,),
        should_retry=lambda e: "rate limit" not in str(e).lower(),
        description=f"GitHub API {urlparse(url).path}",
    )


def download_file(
    url: str,
    dest: Path,
    timeout: int = 300,
    policy: RetryPolicy | None = None,
) -> Path:
    """Download ``url`` to ``dest`` with retries.

    Raises:
        DownloadError: When every attempt failed.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)

    def _once() -> Path:
        try:
            with urllib.request.urlopen(build_request(url), timeout=timeout) as resp:
                with dest.open("wb") as f:
                    shutil.copyfileobj(resp, f, length=64 * 1024)
        except urllib.error.HTTPError as e:
            dest.unlink(missing_ok=True)
            raise DownloadError(
                f"Failed to download {scrub_url(url)}: {_describe_http_error(url, e)}"
            ) from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download {scrub_url(url)}: {e}") from e
        return dest

    logger.info("Downloading %s", scrub_url(url))
    return retry_with_backoff(
        _once,
        policy,
        retry_on=(DownloadError,),
        description=f"Download {Path(urlparse(url).path).name}",
    )
