"""
Shared test fixtures and configuration.
"""

import io
import stat
import tarfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.features.base import FeatureContext
from containerbuild.core.models.build import BuildConfig, UserInfo
from containerbuild.core.reliability.retry import RetryPolicy
from containerbuild.core.services.apt import Apt
from containerbuild.core.services.checksums.pinned import ChecksumDatabase
from containerbuild.core.services.checksums.tiers import DownloadVerifier
from containerbuild.core.services.command import CommandResult, CommandRunner

DEBIAN_OS_RELEASE = """\
PRETTY_NAME="Debian GNU/Linux 13 (trixie)"
NAME="Debian GNU/Linux"
VERSION_ID="13"
VERSION_CODENAME=trixie
ID=debian
"""


def make_tar(path: Path, files: dict[str, bytes], mode: int = 0o755) -> Path:
    """Write a .tar.gz holding ``files`` (name → content)."""
    with tarfile.open(path, "w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tf.addfile(info, io.BytesIO(data))
    return path


def make_zip(path: Path, files: dict[str, bytes], mode: int = 0o755) -> Path:
    """Write a .zip holding ``files`` with unix permission bits."""
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            info = zipfile.ZipInfo(name)
            info.external_attr = (stat.S_IFREG | mode) << 16
            zf.writestr(info, data)
    return path


@dataclass
class RecordingRunner(CommandRunner):
    """Command runner that records commands instead of running them.

    ``responses`` maps a substring of the joined command line to
    ``(returncode, stdout)``; the first match wins. ``tools`` is what
    ``which()`` reports as installed.
    """

    responses: dict[str, tuple[int, str]] = field(default_factory=dict)
    tools: set[str] = field(default_factory=set)
    calls: list[list[str]] = field(default_factory=list)
    inputs: list[str | None] = field(default_factory=list)

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.tools else None

    def _execute(self, args, *, timeout, env, cwd, input):
        self.calls.append(args)
        self.inputs.append(input)
        joined = " ".join(args)
        for needle, (returncode, stdout) in self.responses.items():
            if needle in joined:
                stderr = "" if returncode == 0 else stdout
                return CommandResult(cmd=args, returncode=returncode, stdout=stdout, stderr=stderr)
        return CommandResult(cmd=args, returncode=0)

    def ran(self, needle: str) -> bool:
        """Whether any recorded command line contains ``needle``."""
        return any(needle in " ".join(call) for call in self.calls)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def paths(tmp_path: Path) -> SystemPaths:
    """A staging root that looks like a Debian 13 image."""
    root = tmp_path / "root"
    (root / "etc").mkdir(parents=True)
    (root / "etc/os-release").write_text(DEBIAN_OS_RELEASE)
    (root / "etc/debian_version").write_text("13.1\n")
    return SystemPaths(root=root)


@pytest.fixture
def user() -> UserInfo:
    return UserInfo(username="developer", uid=1000, gid=1000, working_dir="/workspace/project")


@pytest.fixture
def make_ctx(paths: SystemPaths, runner: RecordingRunner, user: UserInfo):
    """Build a FeatureContext against the staging root.

    Downloads are verified against the pinned database only (no Tier 3
    fetchers, no signatures) so nothing leaves the machine.
    """

    def _make(environ: dict[str, str] | None = None, arch: str = "amd64", require_verified: bool = False):
        config = BuildConfig(root=paths.root, require_verified_downloads=require_verified)
        verifier = DownloadVerifier(
            ChecksumDatabase.load(paths.checksums_db),
            runner,
            gpg_keys_dir=None,
            require_verified=require_verified,
            language_fetchers={},
            tool_fetchers={},
        )
        return FeatureContext(
            paths=paths,
            config=config,
            user=user,
            runner=runner,
            verifier=verifier,
            apt=Apt(runner, paths, sleep=lambda _s: None),
            environ=environ or {},
            arch=arch,
            policy=RetryPolicy(max_attempts=1, initial_delay=0, max_delay=0),
        )

    return _make
