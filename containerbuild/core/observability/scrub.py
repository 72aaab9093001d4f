"""
Secret scrubbing for anything that reaches a log.

Applied to build log files, JSON events and (through ``ScrubFilter``)
every record emitted via ``logging``. ``DISABLE_SECRET_SCRUBBING=true``
turns it off for debugging.
"""

from __future__ import annotations

import logging
import os
import re

# ── Patterns ────────────────────────────────────────────────────

_NOT_VALUE = r"[^\s\"']+"
_NOT_QUERY_VALUE = r"[^\s\"'&]+"

_SECRET_ENV_VARS = (
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_AUTH_TOKEN",
    "OP_SERVICE_ACCOUNT_TOKEN",
)

_SECRET_PARAMS = ("password", "secret", "api_key", "secret_key")

_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(rf"([Aa]uthorization:\s*)[Bb]earer\s+{_NOT_VALUE}"), r"\1Bearer ***REDACTED***"),
    (re.compile(rf"([Aa]uthorization:\s*)[Tt]oken\s+{_NOT_VALUE}"), r"\1token ***REDACTED***"),
    (re.compile(rf"([Aa]uthorization:\s*)[Bb]asic\s+{_NOT_VALUE}"), r"\1Basic ***REDACTED***"),
    (re.compile(r"(?:ghp_|github_pat_|gho_|ghu_|ghs_|ghr_)[A-Za-z0-9_]+"), "***GITHUB_TOKEN_REDACTED***"),
    (re.compile(r"(?:sk|pk)-[A-Za-z0-9_-]{20,}"), "***API_KEY_REDACTED***"),
]
_RULES += [
    (re.compile(rf"({name}=){_NOT_VALUE}"), r"\1***REDACTED***")
    for name in _SECRET_ENV_VARS
]
_RULES += [
    (re.compile(rf"({name}=){_NOT_QUERY_VALUE}"), r"\1***REDACTED***")
    for param in _SECRET_PARAMS
    for name in (param, param.upper())
]

_URL_CREDENTIALS = (re.compile(r"(https?://)[^\s@/]+:[^\s@/]+@"), r"\1***CREDENTIALS***@")
_RULES.append(_URL_CREDENTIALS)


def scrubbing_enabled() -> bool:
    return os.environ.get("DISABLE_SECRET_SCRUBBING", "false").lower() != "true"


def scrub_secrets(text: str) -> str:
    """Redact tokens, keys and credentials from ``text``."""
    if not text or not scrubbing_enabled():
        return text
    for pattern, replacement in _RULES:
        text = pattern.sub(replacement, text)
    return text


def scrub_url(url: str) -> str:
    """Redact ``user:password@`` from a URL."""
    if not url or not scrubbing_enabled():
        return url
    pattern, replacement = _URL_CREDENTIALS
    return pattern.sub(replacement, url)


class ScrubFilter(logging.Filter):
    """Logging filter that scrubs the fully formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not scrubbing_enabled():
            return True
        try:
            message = record.getMessage()
        except Exception:
            return True
        scrubbed = scrub_secrets(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True
