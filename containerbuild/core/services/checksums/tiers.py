"""
Multi-tier download verification.

    Tier 1  signature    GPG signature by the publisher (languages only)
    Tier 2  pinned       git-tracked digest from checksums.json
    Tier 3  published    digest fetched from the publisher's site
    Tier 4  calculated   digest of the file itself (trust on first use)

The first tier that has an answer decides. A digest mismatch at any
tier fails closed: the file is rejected, later tiers are not consulted.
A tier with no answer (no key, no pinned entry, fetch failed) falls
through to the next. Tier 4 always "passes" but records a warning, and
is refused outright when verified downloads are required.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path

from containerbuild.core.errors import ChecksumMismatchError, VerificationError
from containerbuild.core.models.verification import VerificationResult, VerificationTier
from containerbuild.core.services.checksums import fetch, signature
from containerbuild.core.services.checksums.digest import (
    checksum_algorithm,
    compute_checksum,
)
from containerbuild.core.services.checksums.pinned import ChecksumDatabase
from containerbuild.core.services.command import CommandRunner

logger = logging.getLogger(__name__)

ChecksumFetcher = Callable[[str, str], "str | None"]
SignatureVerifier = Callable[[Path, str, str], bool]

_TOOL_FETCHERS: dict[str, ChecksumFetcher] = {}

_TOFU_BANNER = """\
╔════════════════════════════════════════════════════════════╗
║                    SECURITY WARNING                        ║
╠════════════════════════════════════════════════════════════╣
║ No trusted checksum available for verification.            ║
║ Using TOFU (Trust On First Use) - calculating checksum     ║
║ from downloaded file without external verification.        ║
║ Risk: Vulnerable to man-in-the-middle attacks.             ║
║ Acceptable for development, NOT for production builds.     ║
╚════════════════════════════════════════════════════════════╝"""


def register_tool_checksum_fetcher(name: str, fetcher: ChecksumFetcher) -> None:
    """Register a Tier 3 source for a tool. ``fetcher(version, arch)`` → hex or None."""
    _TOOL_FETCHERS[name] = fetcher


def registered_tool_fetchers() -> dict[str, ChecksumFetcher]:
    return dict(_TOOL_FETCHERS)


class DownloadVerifier:
    """Runs the tier chain for downloaded files.

    Args:
        checksum_db: Pinned digests (Tier 2).
        runner: Used for gpg.
        gpg_keys_dir: Per-language keyrings (Tier 1).
        require_verified: Refuse Tier 4.
        language_fetchers / tool_fetchers: Tier 3 sources; default to the
            built-in language fetchers and the tool registry.
        signature_verifier: Tier 1 hook ``(file, language, version) → bool``.
    """

    def __init__(
        self,
        checksum_db: ChecksumDatabase,
        runner: CommandRunner,
        gpg_keys_dir: Path | None = None,
        require_verified: bool = False,
        language_fetchers: Mapping[str, ChecksumFetcher] | None = None,
        tool_fetchers: Mapping[str, ChecksumFetcher] | None = None,
        signature_verifier: SignatureVerifier | None = None,
    ):
        self.checksum_db = checksum_db
        self.runner = runner
        self.gpg_keys_dir = gpg_keys_dir
        self.require_verified = require_verified
        self._language_fetchers = language_fetchers
        self._tool_fetchers = tool_fetchers
        self._signature_verifier = signature_verifier

    # ── Tier sources ────────────────────────────────────────────

    def _language_fetcher(self, name: str) -> ChecksumFetcher | None:
        table = self._language_fetchers if self._language_fetchers is not None else fetch.LANGUAGE_FETCHERS
        return table.get(name)

    def _tool_fetcher(self, name: str) -> ChecksumFetcher | None:
        table = self._tool_fetchers if self._tool_fetchers is not None else _TOOL_FETCHERS
        return table.get(name)

    def _check_signature(self, file: Path, name: str, version: str) -> bool:
        if self._signature_verifier is not None:
            return self._signature_verifier(file, name, version)
        if self.gpg_keys_dir is None:
            return False
        return signature.verify_signature(file, name, version, self.gpg_keys_dir, self.runner)

    def published_checksum(self, category: str, name: str, version: str, arch: str = "amd64") -> str | None:
        """Tier 2 or Tier 3 digest for ``name`` ``version``, without a file."""
        pinned = self.checksum_db.lookup(category, name, version)
        if pinned:
            return pinned
        fetcher = self._language_fetcher(name) if category == "language" else self._tool_fetcher(name)
        if fetcher is None:
            return None
        return fetcher(version, arch)

    # ── Chain ───────────────────────────────────────────────────

    def _compare(self, file: Path, expected: str, name: str, tier: VerificationTier) -> str:
        try:
            algo = checksum_algorithm(expected)
        except ValueError as e:
            raise VerificationError(f"Tier {int(tier)} returned an invalid checksum for {name}: {e}") from e
        actual = compute_checksum(file, algo)
        if actual != expected.lower():
            logger.error("Checksum mismatch! Expected: %s Got: %s", expected.lower(), actual)
            raise ChecksumMismatchError(str(file), expected.lower(), actual)
        return actual

    def verify(
        self,
        category: str,
        name: str,
        version: str,
        file: Path,
        arch: str = "amd64",
    ) -> VerificationResult:
        """Verify ``file`` as ``name`` ``version``.

        Args:
            category: ``"language"`` or ``"tool"``.

        Returns:
            The result; ``verified`` is False when the file was rejected.
        """
        if category not in ("language", "tool"):
            raise ValueError(f"Unknown verification category: {category}")

        logger.info("🔍 CHECKSUM VERIFICATION: %s %s", name, version)

        def _result(verified: bool, tier: VerificationTier | None, checksum: str, message: str):
            return VerificationResult(
                name=name,
                version=version,
                file=str(file),
                verified=verified,
                tier=tier,
                checksum=checksum,
                message=message,
            )

        if not file.is_file():
            return _result(False, None, "", f"File not found: {file}")

        try:
            # Tier 1
            if category == "language":
                logger.info("🔐 TIER 1: Signature verification")
                if self._check_signature(file, name, version):
                    logger.info("✅ TIER 1 VERIFICATION PASSED")
                    return _result(
                        True,
                        VerificationTier.SIGNATURE,
                        compute_checksum(file),
                        "Cryptographic signature verified",
                    )
                logger.info("Tier 1 unavailable, falling back to Tier 2")

            # Tier 2
            logger.info("📌 TIER 2: Checking pinned checksums database")
            pinned = self.checksum_db.lookup(category, name, version)
            if pinned:
                actual = self._compare(file, pinned, name, VerificationTier.PINNED)
                logger.info("✅ TIER 2 VERIFICATION PASSED")
                return _result(True, VerificationTier.PINNED, actual, "Matched git-tracked checksum")
            logger.info("Version %s not found in checksums database", version)

            # Tier 3
            fetcher = self._language_fetcher(name) if category == "language" else self._tool_fetcher(name)
            if fetcher is None:
                logger.info("No Tier 3 source for %s", name)
            else:
                logger.info("🌐 TIER 3: Fetching published checksum for %s", name)
                published = fetcher(version, arch)
                if published:
                    actual = self._compare(file, published, name, VerificationTier.PUBLISHED)
                    logger.info("✅ TIER 3 VERIFICATION PASSED")
                    return _result(
                        True, VerificationTier.PUBLISHED, actual, "Matched publisher checksum"
                    )
                logger.info("Published checksum not available for %s %s", name, version)

        except (ChecksumMismatchError, VerificationError) as e:
            return _result(False, None, "", str(e))

        # Tier 4
        actual = compute_checksum(file)
        if self.require_verified:
            message = (
                f"REQUIRE_VERIFIED_DOWNLOADS is enabled; Tier 4 TOFU fallback is not allowed. "
                f"Add a pinned checksum for {name} {version}"
            )
            logger.error(message)
            return _result(False, VerificationTier.CALCULATED, actual, message)

        logger.warning("⚠️  TIER 4: Using calculated checksum (FALLBACK)")
        for line in _TOFU_BANNER.splitlines():
            logger.warning("%s", line)
        logger.warning("Calculated SHA256: %s", actual)
        return _result(True, VerificationTier.CALCULATED, actual, "Trust on first use (no external verification)")


def ensure_verified(result: VerificationResult) -> VerificationResult:
    """Raise unless the result is verified."""
    if result.verified:
        return result
    raise VerificationError(f"Verification failed for {result.name} {result.version}: {result.message}")
