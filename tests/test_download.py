"""
Tests for downloads: file:// fetches, verified downloads, archive
extraction and release-asset installs.
"""

import gzip
import hashlib
from pathlib import Path

import pytest

from containerbuild.core.errors import ChecksumMismatchError, DownloadError, FeatureError
from containerbuild.core.reliability.retry import RetryPolicy
from containerbuild.core.services import net
from containerbuild.core.services.download import (
    download_and_extract,
    download_and_verify,
    extract_archive,
    install_github_release,
)

from .conftest import RecordingRunner, make_tar, make_zip

ONCE = RetryPolicy(max_attempts=1, initial_delay=0, max_delay=0)


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ── net ─────────────────────────────────────────────────────────────


class TestNet:
    def test_fetch_text_file_url(self, tmp_path: Path):
        src = tmp_path / "versions.txt"
        src.write_text("1.2.3\n")
        assert net.fetch_text(src.as_uri()) == "1.2.3\n"

    def test_fetch_missing_raises(self, tmp_path: Path):
        with pytest.raises(DownloadError, match="Failed to fetch"):
            net.fetch_bytes((tmp_path / "missing").as_uri())

    def test_fetch_json(self, tmp_path: Path):
        src = tmp_path / "r.json"
        src.write_text('{"tag_name": "v1.0.0"}')
        assert net.fetch_json(src.as_uri()) == {"tag_name": "v1.0.0"}

    def test_fetch_json_invalid(self, tmp_path: Path):
        src = tmp_path / "r.json"
        src.write_text("<html>")
        with pytest.raises(DownloadError, match="Invalid JSON"):
            net.fetch_json(src.as_uri())

    def test_token_only_for_github(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "t0ken")
        assert net.build_request("https://api.github.com/repos/x/y").get_header("Authorization") == "token t0ken"
        assert net.build_request("https://go.dev/dl/").get_header("Authorization") is None

    def test_no_token(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        assert net.build_request("https://api.github.com/x").get_header("Authorization") is None

    def test_download_file(self, tmp_path: Path):
        src = tmp_path / "src.bin"
        src.write_bytes(b"payload")
        dest = tmp_path / "out" / "dest.bin"
        assert net.download_file(src.as_uri(), dest, policy=ONCE) == dest
        assert dest.read_bytes() == b"payload"

    def test_download_failure_leaves_nothing(self, tmp_path: Path):
        dest = tmp_path / "dest.bin"
        with pytest.raises(DownloadError):
            net.download_file((tmp_path / "missing").as_uri(), dest, policy=ONCE)
        assert not dest.exists()


# ── Verified downloads ──────────────────────────────────────────────


class TestDownloadAndVerify:
    def test_match(self, tmp_path: Path):
        src = tmp_path / "tool.tar.gz"
        src.write_bytes(b"artifact")
        dest = tmp_path / "dl" / "tool.tar.gz"
        download_and_verify(src.as_uri(), _sha256(b"artifact"), dest, policy=ONCE)
        assert dest.read_bytes() == b"artifact"
        assert not dest.with_name("tool.tar.gz.tmp").exists()

    def test_mismatch_keeps_nothing(self, tmp_path: Path):
        src = tmp_path / "tool.tar.gz"
        src.write_bytes(b"tampered")
        dest = tmp_path / "dl" / "tool.tar.gz"
        with pytest.raises(ChecksumMismatchError):
            download_and_verify(src.as_uri(), _sha256(b"artifact"), dest, policy=ONCE)
        assert list(dest.parent.iterdir()) == []

    def test_sha512_accepted(self, tmp_path: Path):
        src = tmp_path / "a.zip"
        src.write_bytes(b"zip")
        dest = tmp_path / "b.zip"
        download_and_verify(src.as_uri(), hashlib.sha512(b"zip").hexdigest(), dest, policy=ONCE)
        assert dest.is_file()

    def test_download_error_propagates(self, tmp_path: Path):
        with pytest.raises(DownloadError):
            download_and_verify((tmp_path / "nope").as_uri(), "0" * 64, tmp_path / "x", policy=ONCE)


# ── Archives ────────────────────────────────────────────────────────


class TestExtractArchive:
    def test_tar(self, tmp_path: Path):
        archive = make_tar(tmp_path / "go.tar.gz", {"go/bin/go": b"#!go", "go/VERSION": b"go1.25.3"})
        out = extract_archive(archive, tmp_path / "out")
        assert (out / "go/VERSION").read_text() == "go1.25.3"
        assert (out / "go/bin/go").stat().st_mode & 0o111

    def test_tar_members(self, tmp_path: Path):
        archive = make_tar(tmp_path / "t.tgz", {"a": b"1", "b": b"2"})
        out = extract_archive(archive, tmp_path / "out", members=["b"])
        assert [p.name for p in out.iterdir()] == ["b"]

    def test_tar_missing_member(self, tmp_path: Path):
        archive = make_tar(tmp_path / "t.tgz", {"a": b"1"})
        with pytest.raises(FeatureError, match="Member missing"):
            extract_archive(archive, tmp_path / "out", members=["zz"])

    def test_tar_escape_rejected(self, tmp_path: Path):
        archive = make_tar(tmp_path / "evil.tgz", {"../escape": b"x"})
        with pytest.raises(FeatureError, match="Refusing to extract"):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "escape").exists()

    def test_zip_restores_modes(self, tmp_path: Path):
        archive = make_zip(tmp_path / "aws.zip", {"aws/install": b"#!/bin/sh\n"})
        out = extract_archive(archive, tmp_path / "out")
        assert (out / "aws/install").stat().st_mode & 0o777 == 0o755

    def test_zip_escape_rejected(self, tmp_path: Path):
        archive = make_zip(tmp_path / "evil.zip", {"../../escape": b"x"})
        with pytest.raises(FeatureError, match="outside"):
            extract_archive(archive, tmp_path / "out")

    def test_unsupported(self, tmp_path: Path):
        archive = tmp_path / "plain.txt"
        archive.write_text("not an archive")
        with pytest.raises(FeatureError, match="Unsupported archive format"):
            extract_archive(archive, tmp_path / "out")

    def test_download_and_extract_cleans_up(self, tmp_path: Path):
        archive = make_tar(tmp_path / "k.tar.gz", {"kotlinc/bin/kotlinc": b"#!k"})
        out = download_and_extract(
            archive.as_uri(), _sha256(archive.read_bytes()), tmp_path / "opt", policy=ONCE
        )
        assert (out / "kotlinc/bin/kotlinc").is_file()


# ── Release installs ────────────────────────────────────────────────


class TestInstallGithubRelease:
    def _release(self, tmp_path: Path, files: dict[str, bytes]) -> str:
        rel = tmp_path / "release"
        rel.mkdir()
        lines = []
        for name, data in files.items():
            (rel / name).write_bytes(data)
            lines.append(f"{_sha256(data)}  {name}")
        (rel / "checksums.txt").write_text("\n".join(lines) + "\n")
        return rel.as_uri()

    def _install(self, base_url: str, tmp_path: Path, install_type: str, checksum_type="checksums_txt", **kw):
        kw.setdefault("arch", "amd64")
        return install_github_release(
            "tool",
            "1.0.0",
            base_url,
            kw.pop("amd64_file", "tool_amd64"),
            kw.pop("arm64_file", "tool_arm64"),
            checksum_type,
            install_type,
            bin_dir=tmp_path / "bin",
            runner=kw.pop("runner", RecordingRunner()),
            policy=ONCE,
            **kw,
        )

    def test_binary(self, tmp_path: Path):
        base = self._release(tmp_path, {"tool_amd64": b"ELF"})
        target = self._install(base, tmp_path, "binary")
        assert target == tmp_path / "bin/tool"
        assert target.read_bytes() == b"ELF"
        assert target.stat().st_mode & 0o111

    def test_unsupported_arch_skips(self, tmp_path: Path):
        base = self._release(tmp_path, {"tool_amd64": b"ELF"})
        assert self._install(base, tmp_path, "binary", arm64_file="", arch="arm64") is None

    def test_extract(self, tmp_path: Path):
        tarball = make_tar(tmp_path / "scratch.tgz", {"tool-1.0/bin/tool": b"ELF"})
        base = self._release(tmp_path, {"tool_amd64.tgz": tarball.read_bytes()})
        target = self._install(base, tmp_path, "extract:tool", amd64_file="tool_amd64.tgz")
        assert target.read_bytes() == b"ELF"

    def test_extract_flat(self, tmp_path: Path):
        tarball = make_tar(tmp_path / "scratch.tgz", {"tool": b"ELF", "README": b"doc"})
        base = self._release(tmp_path, {"tool_amd64.tgz": tarball.read_bytes()})
        target = self._install(base, tmp_path, "extract_flat:tool", amd64_file="tool_amd64.tgz")
        assert target == tmp_path / "bin/tool"
        assert not (tmp_path / "bin/README").exists()

    def test_gunzip(self, tmp_path: Path):
        base = self._release(tmp_path, {"tool_amd64.gz": gzip.compress(b"ELF")})
        target = self._install(base, tmp_path, "gunzip", amd64_file="tool_amd64.gz")
        assert target.read_bytes() == b"ELF"

    def test_dpkg(self, tmp_path: Path):
        runner = RecordingRunner()
        base = self._release(tmp_path, {"tool_amd64.deb": b"deb"})
        self._install(base, tmp_path, "dpkg", amd64_file="tool_amd64.deb", runner=runner)
        assert runner.ran("dpkg -i")

    def test_sha512_sidecar(self, tmp_path: Path):
        rel = tmp_path / "release"
        rel.mkdir()
        (rel / "tool_amd64").write_bytes(b"ELF")
        (rel / "tool_amd64.sha512").write_text(hashlib.sha512(b"ELF").hexdigest() + "  tool_amd64\n")
        target = self._install(rel.as_uri(), tmp_path, "binary", checksum_type="sha512")
        assert target.read_bytes() == b"ELF"

    def test_calculate(self, tmp_path: Path):
        rel = tmp_path / "release"
        rel.mkdir()
        (rel / "tool_amd64").write_bytes(b"ELF")
        assert self._install(rel.as_uri(), tmp_path, "binary", checksum_type="calculate").is_file()

    def test_missing_checksum_entry(self, tmp_path: Path):
        base = self._release(tmp_path, {"other": b"x"})
        (tmp_path / "release/tool_amd64").write_bytes(b"ELF")
        with pytest.raises(DownloadError, match="checksums_txt checksum"):
            self._install(base, tmp_path, "binary")

    def test_unknown_types(self, tmp_path: Path):
        base = self._release(tmp_path, {"tool_amd64": b"ELF"})
        with pytest.raises(FeatureError, match="Unknown checksum type"):
            self._install(base, tmp_path, "binary", checksum_type="md5")
        with pytest.raises(FeatureError, match="Unknown install type"):
            self._install(base, tmp_path, "rpm")
