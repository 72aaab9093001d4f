"""
Checksum verification: digests, publisher fetchers, pinned database,
signatures and the tier chain that ties them together.
"""

from containerbuild.core.services.checksums.digest import (
    compute_checksum,
    validate_checksum_format,
    verify_checksum,
)
from containerbuild.core.services.checksums.pinned import ChecksumDatabase
from containerbuild.core.services.checksums.tiers import (
    DownloadVerifier,
    ensure_verified,
    register_tool_checksum_fetcher,
)

__all__ = [
    "ChecksumDatabase",
    "DownloadVerifier",
    "compute_checksum",
    "ensure_verified",
    "register_tool_checksum_fetcher",
    "validate_checksum_format",
    "verify_checksum",
]
