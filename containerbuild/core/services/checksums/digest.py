"""
File digests.

The algorithm is implied by the length of the expected hex string:
64 characters is SHA-256, 128 is SHA-512. Comparison ignores case.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path

from containerbuild.core.errors import ChecksumMismatchError

_HEX_LENGTHS = {64: "sha256", 128: "sha512"}
_FORMATS = {
    "sha256": re.compile(r"^[a-fA-F0-9]{64}$"),
    "sha512": re.compile(r"^[a-fA-F0-9]{128}$"),
}


def validate_checksum_format(value: str, kind: str = "sha256") -> bool:
    """Whether ``value`` is a well-formed hex digest of the given kind."""
    pattern = _FORMATS.get(kind)
    return bool(pattern and value and pattern.match(value))


def checksum_algorithm(expected: str) -> str:
    """Pick the hash algorithm from the digest length.

    Raises:
        ValueError: For any length other than 64 or 128.
    """
    algo = _HEX_LENGTHS.get(len(expected))
    if algo is None or not validate_checksum_format(expected, algo):
        raise ValueError(f"Invalid checksum (length {len(expected)}): {expected[:16]}...")
    return algo


def compute_checksum(path: Path, algo: str = "sha256") -> str:
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_checksum(path: Path, expected: str) -> bool:
    """Compare ``path``'s digest to ``expected`` (algorithm by length)."""
    algo = checksum_algorithm(expected)
    return compute_checksum(path, algo) == expected.lower()


def require_checksum(path: Path, expected: str) -> str:
    """Like ``verify_checksum`` but raises on mismatch.

    Returns:
        The actual digest.

    Raises:
        ChecksumMismatchError: If the digests differ.
    """
    algo = checksum_algorithm(expected)
    actual = compute_checksum(path, algo)
    if actual != expected.lower():
        raise ChecksumMismatchError(str(path), expected.lower(), actual)
    return actual
