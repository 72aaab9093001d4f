"""
Build error hierarchy.

A ``FeatureError`` aborts the feature currently being installed.
Optional sub-steps catch it, log a warning and carry on.
"""

from __future__ import annotations


class BuildError(Exception):
    """Base class for all build failures."""


class FeatureError(BuildError):
    """A feature could not be installed."""


class UnsupportedArchitectureError(FeatureError):
    """The machine architecture has no vendor mapping."""

    def __init__(self, arch: str, tool: str = ""):
        self.arch = arch
        self.tool = tool
        target = f" for {tool}" if tool else ""
        super().__init__(f"Unsupported architecture{target}: {arch}")


class UnsupportedOSError(FeatureError):
    """The base image is not a supported Debian/Ubuntu release."""


class VersionError(FeatureError):
    """A requested version string is malformed or cannot be resolved."""


class DownloadError(FeatureError):
    """A download failed after all retries."""


class ChecksumMismatchError(FeatureError):
    """A file's digest did not match the expected value."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        )


class VerificationError(FeatureError):
    """No verification tier accepted a download."""


class CommandError(BuildError):
    """An external command exited non-zero."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str = "", stdout: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        tail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        msg = f"Command failed (exit {returncode}): {' '.join(cmd)}"
        if tail:
            msg += f": {tail}"
        super().__init__(msg)
