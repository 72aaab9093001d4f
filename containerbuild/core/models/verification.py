"""
Download verification result types.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel


class VerificationTier(IntEnum):
    """Trust level reached when verifying a download. Lower is stronger."""

    SIGNATURE = 1
    PINNED = 2
    PUBLISHED = 3
    CALCULATED = 4

    @property
    def label(self) -> str:
        return {
            VerificationTier.SIGNATURE: "signature",
            VerificationTier.PINNED: "pinned",
            VerificationTier.PUBLISHED: "published",
            VerificationTier.CALCULATED: "calculated (TOFU)",
        }[self]


class VerificationResult(BaseModel):
    """Outcome of ``verify_download``."""

    name: str
    version: str
    file: str
    verified: bool
    tier: VerificationTier | None = None
    checksum: str = ""
    message: str = ""

    @property
    def trusted(self) -> bool:
        """Verified against something other than the file itself."""
        return self.verified and self.tier is not None and self.tier < VerificationTier.CALCULATED
