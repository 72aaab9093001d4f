"""
Tests for the feature registry and each feature installer.

Downloads are served from an in-memory table keyed by URL, commands go
to a recording runner and everything lands under a staging root.
"""

import hashlib
import json
from pathlib import Path

import pytest

from containerbuild.core import features
from containerbuild.core.errors import (
    CommandError,
    DownloadError,
    FeatureError,
    UnsupportedArchitectureError,
    VerificationError,
    VersionError,
)
from containerbuild.core.features import android, aws, claude_code, java, kotlin, op_cli, python, ruby
from containerbuild.core.features.android import AndroidFeature, newest_subdir, parse_api_levels
from containerbuild.core.features.aws import AwsFeature
from containerbuild.core.features.claude_code import ClaudeCodeFeature, McpServer, render_claude_setup, split_list
from containerbuild.core.features.golang import GolangFeature
from containerbuild.core.features.java import JavaFeature
from containerbuild.core.features.kotlin import KotlinFeature
from containerbuild.core.features.op_cli import OpCliFeature
from containerbuild.core.features.python import PythonFeature
from containerbuild.core.features.r import RFeature
from containerbuild.core.features.ruby import RubyFeature
from containerbuild.core.services import net, versions
from containerbuild.core.services.checksums.tiers import registered_tool_fetchers

from .conftest import make_tar, make_zip

ARMORED_KEY = b"-----BEGIN PGP PUBLIC KEY BLOCK-----\nxyz\n-----END PGP PUBLIC KEY BLOCK-----\n"


@pytest.fixture
def downloads(monkeypatch):
    """URL → bytes served by ``net.download_file`` and ``net.fetch_bytes``."""
    table: dict[str, bytes] = {}

    def _download(url, dest, timeout=300, policy=None):
        if url not in table:
            raise DownloadError(f"Failed to download {url}: HTTP 404 Not Found")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(table[url])
        return dest

    def _fetch(url, timeout=30, headers=None):
        if url not in table:
            raise DownloadError(f"Failed to fetch {url}: HTTP 404 Not Found")
        return table[url]

    monkeypatch.setattr(net, "download_file", _download)
    monkeypatch.setattr(net, "fetch_bytes", _fetch)
    return table


def pin(paths, section: str, name: str, version: str, data: bytes) -> None:
    """Record ``data``'s digest in the pinned checksum database."""
    db = json.loads(paths.checksums_db.read_text()) if paths.checksums_db.is_file() else {}
    entry = db.setdefault(section, {}).setdefault(name, {"versions": {}})
    entry["versions"][version] = {"sha256": hashlib.sha256(data).hexdigest()}
    paths.checksums_db.parent.mkdir(parents=True, exist_ok=True)
    paths.checksums_db.write_text(json.dumps(db))


# ── Registry ────────────────────────────────────────────────────────


class TestRegistry:
    def test_all_features_in_build_order(self):
        ids = [info.id for info in features.list_features()]
        assert ids == [
            "python", "ruby", "r", "golang", "java", "kotlin", "android", "op_cli", "aws", "claude_code",
        ]

    def test_get_feature_normalizes(self):
        assert isinstance(features.get_feature("Claude-Code"), ClaudeCodeFeature)
        assert features.get_feature("cobol") is None

    def test_flag_names(self):
        flags = features.flag_names()
        assert flags["INCLUDE_OP"] == "op_cli"
        assert flags["INCLUDE_GOLANG"] == "golang"
        assert len(flags) == 10

    def test_dependencies_pulled_in(self):
        order = [f.info().id for f in features.resolve_order(["android", "kotlin"])]
        assert order == ["java", "kotlin", "android"]

    def test_order_is_fixed(self):
        order = [f.info().id for f in features.resolve_order(["claude_code", "python", "golang"])]
        assert order == ["python", "golang", "claude_code"]

    def test_unknown_feature(self):
        with pytest.raises(FeatureError, match="Unknown feature 'cobol'"):
            features.resolve_order(["cobol"])

    def test_labels_unique(self):
        labels = [info.label for info in features.list_features()]
        assert len(set(labels)) == len(labels)


# ── Version handling ────────────────────────────────────────────────


class TestFeatureVersions:
    def test_default_version(self, make_ctx):
        assert GolangFeature().resolve_version(make_ctx()) == "1.25.3"

    def test_environment_overrides(self, make_ctx):
        assert PythonFeature().resolve_version(make_ctx({"PYTHON_VERSION": "3.12.11"})) == "3.12.11"

    def test_build_file_env(self, make_ctx):
        ctx = make_ctx()
        ctx.config.env["RUBY_VERSION"] = "3.3.9"
        assert RubyFeature().resolve_version(ctx) == "3.3.9"

    def test_partial_version_resolved(self, make_ctx, monkeypatch):
        monkeypatch.setitem(versions._RESOLVERS, "go", lambda: ["1.24.9", "1.24.11", "1.25.0"])
        assert GolangFeature().resolve_version(make_ctx({"GO_VERSION": "1.24"})) == "1.24.11"

    def test_partial_python_version_resolved(self, make_ctx, monkeypatch):
        monkeypatch.setitem(versions._RESOLVERS, "python", lambda: ["3.12.11", "3.13.6", "3.13.7", "3.14.0"])
        assert PythonFeature().resolve_version(make_ctx({"PYTHON_VERSION": "3.13"})) == "3.13.7"

    def test_partial_ruby_version_resolved(self, make_ctx, monkeypatch):
        monkeypatch.setitem(versions._RESOLVERS, "ruby", lambda: ["3.3.9", "3.4.6", "3.4.7"])
        ctx = make_ctx({"RUBY_VERSION": "3.4"})
        assert RubyFeature().resolve_version(ctx) == "3.4.7"

    def test_invalid_version(self, make_ctx):
        with pytest.raises(VersionError, match="KOTLIN_VERSION"):
            KotlinFeature().resolve_version(make_ctx({"KOTLIN_VERSION": "2.2"}))

    def test_no_version_variable(self, make_ctx):
        assert AwsFeature().resolve_version(make_ctx()) == ""

    def test_android_build_number(self, make_ctx):
        assert AndroidFeature().resolve_version(make_ctx()) == "11076708"
        with pytest.raises(VersionError, match="build number"):
            AndroidFeature().resolve_version(make_ctx({"ANDROID_CMDLINE_TOOLS_VERSION": "latest"}))


# ── Go ──────────────────────────────────────────────────────────────


GO_URL = "https://go.dev/dl/go1.25.3.linux-amd64.tar.gz"


@pytest.fixture
def go_tarball(tmp_path: Path) -> bytes:
    archive = make_tar(tmp_path / "go.tgz", {"go/bin/go": b"#!go", "go/bin/gofmt": b"#!gofmt"})
    return archive.read_bytes()


class TestGolang:
    def test_install(self, make_ctx, paths, runner, downloads, go_tarball):
        downloads[GO_URL] = go_tarball
        ctx = make_ctx()
        summary = GolangFeature().install(ctx, "1.25.3")

        assert (paths.usr_local / "go/bin/go").is_file()
        assert (paths.bin_dir / "go").is_symlink()
        assert (paths.cache_root / "go-mod").is_dir()
        fragment = paths.bashrc_fragment(50, "golang").read_text()
        assert 'export GOPATH="/cache/go"' in fragment
        assert "alias gob='go build'" in fragment
        assert (paths.first_startup_dir / "30-go-setup.sh").is_file()
        assert "go version" in paths.test_script("go").read_text()
        assert runner.ran("apt-get install")
        assert summary.version == "1.25.3"
        assert ctx.verification_tier == "calculated (TOFU)"

    def test_pinned_checksum(self, make_ctx, paths, downloads, go_tarball):
        downloads[GO_URL] = go_tarball
        pin(paths, "languages", "golang", "1.25.3", go_tarball)
        ctx = make_ctx()
        GolangFeature().install(ctx, "1.25.3")
        assert ctx.verification_tier == "pinned"

    def test_pinned_mismatch_aborts(self, make_ctx, paths, downloads, go_tarball):
        downloads[GO_URL] = go_tarball
        pin(paths, "languages", "golang", "1.25.3", b"something else")
        with pytest.raises(VerificationError, match="mismatch"):
            GolangFeature().install(make_ctx(), "1.25.3")
        assert not (paths.usr_local / "go").exists()

    def test_verified_downloads_required(self, make_ctx, downloads, go_tarball):
        downloads[GO_URL] = go_tarball
        with pytest.raises(VerificationError, match="REQUIRE_VERIFIED_DOWNLOADS"):
            GolangFeature().install(make_ctx(require_verified=True), "1.25.3")

    def test_missing_release(self, make_ctx, downloads):
        with pytest.raises(FeatureError, match="Please verify version exists"):
            GolangFeature().install(make_ctx(), "1.25.3")

    def test_unsupported_arch(self, make_ctx):
        with pytest.raises(UnsupportedArchitectureError):
            GolangFeature().install(make_ctx(arch="riscv64"), "1.25.3")

    def test_rerun_is_idempotent(self, make_ctx, paths, downloads, go_tarball):
        downloads[GO_URL] = go_tarball
        GolangFeature().install(make_ctx(), "1.25.3")
        GolangFeature().install(make_ctx(), "1.25.3")
        fragment = paths.bashrc_fragment(50, "golang").read_text()
        assert fragment.count("BEGIN_GENERATED_CONTENT: Go_environment_configuration") == 1


# ── Python ──────────────────────────────────────────────────────────


class TestPython:
    def _serve(self, downloads, tmp_path, version="3.13.7"):
        downloads[python.source_url(version)] = make_tar(
            tmp_path / "py.tgz", {f"Python-{version}/configure": b"#!/bin/sh"}
        ).read_bytes()
        downloads[python.GET_PIP_URL] = b"# get-pip"

    def test_install(self, make_ctx, paths, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        summary = PythonFeature().install(make_ctx(), "3.13.7")

        assert runner.ran("./configure --prefix=/usr/local --enable-shared")
        assert runner.ran("make install")
        assert runner.ran("ldconfig")
        assert runner.ran("get-pip.py --no-cache-dir")
        assert runner.ran("pipx install poetry")
        assert "/opt/pipx/bin" in paths.environment_file.read_text()
        assert (paths.first_startup_dir / "10-poetry-install.sh").is_file()
        assert "PIP_CACHE_DIR" in paths.bashrc_fragment(20, "python").read_text()
        assert (paths.cache_root / "pip").is_dir()
        assert "poetry" in summary.tools

    def test_poetry_failure_is_a_warning(self, make_ctx, paths, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.responses["pipx install poetry"] = (1, "network down")
        summary = PythonFeature().install(make_ctx(), "3.13.7")
        assert summary.feature == "Python"
        assert paths.test_script("python").is_file()

    def test_build_failure_aborts(self, make_ctx, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.responses["make -j"] = (2, "error: compilation failed")
        with pytest.raises(CommandError, match="compilation failed"):
            PythonFeature().install(make_ctx(), "3.13.7")

    def test_missing_source(self, make_ctx, downloads):
        with pytest.raises(FeatureError, match="Failed to download Python 3.13.7"):
            PythonFeature().install(make_ctx(), "3.13.7")


# ── Ruby ────────────────────────────────────────────────────────────


class TestRuby:
    def test_source_url(self):
        assert ruby.source_url("3.4.7") == "https://cache.ruby-lang.org/pub/ruby/3.4/ruby-3.4.7.tar.gz"

    def test_install(self, make_ctx, paths, runner, downloads, tmp_path):
        downloads[ruby.source_url("3.4.7")] = make_tar(
            tmp_path / "rb.tgz", {"ruby-3.4.7/configure": b"#!/bin/sh"}
        ).read_bytes()
        summary = RubyFeature().install(make_ctx(), "3.4.7")

        assert runner.ran("--disable-install-doc")
        assert runner.ran("gem install bundler")
        assert runner.ran("bundle config set --global path /cache/ruby/bundle")
        assert "gem: --no-document" in (paths.usr_local / "etc/gemrc").read_text()
        assert "/cache/ruby/gems/bin" in paths.environment_file.read_text()
        assert (paths.first_startup_dir / "10-ruby-bundle.sh").is_file()
        assert "alias be='bundle exec'" in paths.bashrc_fragment(40, "ruby").read_text()
        assert summary.version == "3.4.7"

    def test_missing_source_directory(self, make_ctx, downloads, tmp_path):
        downloads[ruby.source_url("3.4.7")] = make_tar(tmp_path / "rb.tgz", {"other/file": b"x"}).read_bytes()
        with pytest.raises(FeatureError, match="source directory missing"):
            RubyFeature().install(make_ctx(), "3.4.7")


# ── R ───────────────────────────────────────────────────────────────


class TestR:
    def test_install_requested_version(self, make_ctx, paths, runner, downloads):
        downloads["https://cloud.r-project.org/bin/linux/debian/marutter_pubkey.asc"] = ARMORED_KEY
        runner.responses["apt-cache show r-base-core"] = (0, "Package: r-base-core\nVersion: 4.5.1-1~trixiecran.0\n")
        RFeature().install(make_ctx(), "4.5.1")

        source = (paths.apt_sources_dir / "r-project.list").read_text()
        assert "https://cloud.r-project.org/bin/linux/debian trixie-cran40/" in source
        assert runner.ran("r-base-core=4.5.1-*")
        assert runner.ran("apt-get remove --purge -y libcurl4-openssl-dev")
        assert "R_LIBS_USER=/cache/r/library" in (paths.root / "etc/R/Renviron.site").read_text()
        assert (paths.root / "etc/R/Rprofile.site").is_file()

    def test_falls_back_to_latest(self, make_ctx, runner, downloads):
        downloads["https://cloud.r-project.org/bin/linux/debian/marutter_pubkey.asc"] = ARMORED_KEY
        RFeature().install(make_ctx(), "4.5.1")
        assert not runner.ran("r-base-core=4.5.1")
        assert runner.ran("r-base r-base-dev r-recommended")

    def test_dev_tools_keep_build_dependencies(self, make_ctx, runner, downloads):
        downloads["https://cloud.r-project.org/bin/linux/debian/marutter_pubkey.asc"] = ARMORED_KEY
        RFeature().install(make_ctx({"INCLUDE_DEV_TOOLS": "true"}), "4.5.1")
        assert not runner.ran("apt-get remove --purge")


# ── Java ────────────────────────────────────────────────────────────


class TestJava:
    def test_install(self, make_ctx, paths, runner, downloads):
        downloads[java.ADOPTIUM_KEY_URL] = ARMORED_KEY
        summary = JavaFeature().install(make_ctx(), "21")

        assert runner.ran("temurin-21-jdk")
        assert runner.ran("maven gradle")
        source = (paths.apt_sources_dir / "adoptium.list").read_text()
        assert source.strip().endswith("https://packages.adoptium.net/artifactory/deb trixie main")
        default_java = paths.root / "usr/lib/jvm/default-java"
        assert default_java.is_symlink()
        settings = (paths.root / "etc/maven/settings-template.xml").read_text()
        assert "<maven.compiler.source>21</maven.compiler.source>" in settings
        assert "export JAVA_HOME=/usr/lib/jvm/default-java" in paths.bashrc_fragment(50, "java").read_text()
        assert (paths.cache_root / "gradle").is_dir()
        assert summary.feature == "Java"

    def test_major_from_full_version(self, make_ctx, runner, downloads):
        downloads[java.ADOPTIUM_KEY_URL] = ARMORED_KEY
        JavaFeature().install(make_ctx(), "17.0.9")
        assert runner.ran("temurin-17-jdk")

    def test_needs_codename(self, make_ctx, paths, downloads):
        paths.os_release_file.write_text("ID=debian\nVERSION_ID=13\n")
        with pytest.raises(FeatureError, match="codename"):
            JavaFeature().install(make_ctx(), "21")


# ── Kotlin ──────────────────────────────────────────────────────────


class TestKotlin:
    def _serve(self, downloads, tmp_path):
        downloads[kotlin.compiler_url("2.2.21")] = make_zip(
            tmp_path / "k.zip", {"kotlinc/bin/kotlinc": b"#!k", "kotlinc/bin/kotlin": b"#!k"}
        ).read_bytes()

    def test_install(self, make_ctx, paths, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        downloads[kotlin.native_url("2.2.21", "linux-x86_64")] = make_tar(
            tmp_path / "n.tgz", {"kotlin-native-prebuilt-2.2.21/bin/kotlinc-native": b"#!kn"}
        ).read_bytes()
        runner.tools.add("java")
        KotlinFeature().install(make_ctx(), "2.2.21")

        assert (paths.opt_dir / "kotlin/bin/kotlinc").is_file()
        assert (paths.opt_dir / "kotlin-native/bin/kotlinc-native").is_file()
        assert (paths.bin_dir / "kotlinc").is_symlink()
        assert (paths.bin_dir / "kotlinc-native").is_symlink()
        assert "KONAN_DATA_DIR" in paths.bashrc_fragment(50, "kotlin").read_text()

    def test_native_failure_is_a_warning(self, make_ctx, paths, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.tools.add("java")
        KotlinFeature().install(make_ctx(), "2.2.21")
        assert (paths.opt_dir / "kotlin/bin/kotlin").is_file()
        assert not (paths.opt_dir / "kotlin-native").exists()

    def test_no_native_for_arch(self, make_ctx, paths, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.tools.add("java")
        KotlinFeature().install(make_ctx(arch="armhf"), "2.2.21")
        assert not (paths.opt_dir / "kotlin-native").exists()

    def test_requires_java(self, make_ctx):
        with pytest.raises(FeatureError, match="INCLUDE_JAVA"):
            KotlinFeature().install(make_ctx(), "2.2.21")

    def test_published_checksum_registered(self, monkeypatch):
        seen = []
        monkeypatch.setattr(kotlin, "fetch_sha256_file", lambda url: seen.append(url) or "a" * 64)
        assert registered_tool_fetchers()["kotlin"]("2.2.21", "amd64") == "a" * 64
        assert seen == [kotlin.compiler_url("2.2.21") + ".sha256"]


# ── Android ─────────────────────────────────────────────────────────


class TestAndroid:
    def _serve(self, downloads, tmp_path):
        downloads[android.cmdline_tools_url("11076708")] = make_zip(
            tmp_path / "c.zip", {"cmdline-tools/bin/sdkmanager": b"#!sdk"}
        ).read_bytes()

    def test_parse_api_levels(self):
        assert parse_api_levels("34, 35,") == ["34", "35"]
        with pytest.raises(VersionError):
            parse_api_levels("34,latest")
        with pytest.raises(VersionError):
            parse_api_levels(" , ")

    def test_newest_subdir(self, tmp_path: Path):
        for name in ("34.0.0", "35.0.1", "9.0.0"):
            (tmp_path / name).mkdir()
        assert newest_subdir(tmp_path).name == "35.0.1"
        assert newest_subdir(tmp_path / "missing") is None

    def test_install(self, make_ctx, paths, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.tools.add("java")
        summary = AndroidFeature().install(make_ctx({"ANDROID_API_LEVELS": "35"}), "11076708")

        sdk = paths.opt_dir / "android-sdk"
        assert (sdk / "cmdline-tools/latest/bin/sdkmanager").is_file()
        assert "24333f8a63b6825ea9c5514f83c2829b004d1fee" in (sdk / "licenses/android-sdk-license").read_text()
        assert runner.ran("--install platform-tools")
        assert runner.ran("--install platforms;android-35")
        assert runner.ran("--install build-tools;35.0.0")
        assert runner.ran("--install ndk;27.2.12479018")
        assert runner.ran("lib32stdc++6")
        assert "y\n" in runner.inputs
        assert (paths.bin_dir / "sdkmanager").is_symlink()
        assert summary.version == "cmdline-tools=11076708, APIs=35, NDK=27.2.12479018"

    def test_build_tools_fallback(self, make_ctx, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.tools.add("java")
        runner.responses["build-tools;34.0.0"] = (1, "Failed to find package")
        AndroidFeature().install(make_ctx({"ANDROID_API_LEVELS": "34"}), "11076708")
        assert runner.ran("build-tools;34.0.1")

    def test_ndk_optional(self, make_ctx, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.tools.add("java")
        AndroidFeature().install(make_ctx({"ANDROID_INSTALL_NDK": "false"}), "11076708")
        assert not runner.ran("ndk;")

    def test_arm64_skips_32bit_libraries(self, make_ctx, runner, downloads, tmp_path):
        self._serve(downloads, tmp_path)
        runner.tools.add("java")
        AndroidFeature().install(make_ctx(arch="arm64"), "11076708")
        assert not runner.ran("lib32z1")

    def test_requires_java(self, make_ctx):
        with pytest.raises(FeatureError, match="Java is required"):
            AndroidFeature().install(make_ctx(), "11076708")


# ── AWS CLI ─────────────────────────────────────────────────────────


class TestAws:
    def test_install(self, make_ctx, paths, runner, downloads, tmp_path):
        downloads[aws.cli_url("x86_64")] = make_zip(tmp_path / "a.zip", {"aws/install": b"#!/bin/sh"}).read_bytes()
        downloads[aws.session_manager_url("ubuntu_64bit")] = b"deb"
        summary = AwsFeature().install(make_ctx(), "")

        assert runner.ran("--update -i /usr/local/aws-cli -b /usr/local/bin")
        assert runner.ran("dpkg -i")
        assert "aws-assume-role()" in paths.bashrc_fragment(50, "aws").read_text()
        assert (paths.first_startup_dir / "20-aws-setup.sh").is_file()
        assert paths.test_script("aws").is_file()
        assert summary.version == "latest"

    def test_session_manager_failure_is_a_warning(self, make_ctx, runner, downloads, tmp_path):
        downloads[aws.cli_url("aarch64")] = make_zip(tmp_path / "a.zip", {"aws/install": b"#!/bin/sh"}).read_bytes()
        AwsFeature().install(make_ctx(arch="arm64"), "")
        assert not runner.ran("dpkg -i")

    def test_unsupported_arch(self, make_ctx):
        with pytest.raises(UnsupportedArchitectureError, match="AWS CLI"):
            AwsFeature().install(make_ctx(arch="armhf"), "")


# ── 1Password CLI ───────────────────────────────────────────────────


class TestOpCli:
    def test_install(self, make_ctx, paths, runner, downloads):
        downloads[op_cli.KEY_URL] = ARMORED_KEY
        downloads[op_cli.DEBSIG_POLICY_URL] = b"<policy/>"
        summary = OpCliFeature().install(make_ctx(), "")

        source = (paths.apt_sources_dir / "1password.list").read_text()
        assert source.startswith("deb [arch=amd64 signed-by=")
        assert "https://downloads.1password.com/linux/debian/amd64 stable main" in source
        policy = paths.root / "etc/debsig/policies/AC2D62742012EA22/1password.pol"
        assert policy.read_bytes() == b"<policy/>"
        assert runner.ran("1password-cli")
        assert (paths.cache_root / "1password/config").stat().st_mode & 0o777 == 0o700
        fragment = paths.bashrc_fragment(70, "1password").read_text()
        assert "_op_load_secrets" in fragment
        assert summary.version == "latest"


# ── Claude Code ─────────────────────────────────────────────────────


class TestClaudeHelpers:
    def test_split_list(self):
        assert split_list("a, b,,c ") == ["a", "b", "c"]
        assert split_list("") == []

    def test_mcp_add_args(self):
        server = McpServer("brave-search", "@x/brave", env=("BRAVE_API_KEY",))
        assert server.add_args() == [
            "-t", "stdio", "brave-search", "-e", "BRAVE_API_KEY=${BRAVE_API_KEY}", "--", "npx", "-y", "@x/brave",
        ]
        assert McpServer("kagi", "kagimcp", runner="uvx").add_args()[-2:] == ["uvx", "kagimcp"]

    def test_setup_script_cases(self):
        script = render_claude_setup({"kagi": McpServer("kagi", "kagimcp", runner="uvx", env=("KAGI_API_KEY",))})
        assert "kagi) echo '-t stdio kagi -e KAGI_API_KEY=${KAGI_API_KEY} -- uvx kagimcp' ;;" in script
        assert "CLAUDE_EXTRA_MCPS_DEFAULT" in script
        assert script.startswith("#!/bin/bash")


class TestClaudeCode:
    def _serve(self, downloads, monkeypatch):
        downloads[claude_code.INSTALLER_URL] = b"#!/bin/sh\necho install\n"
        digest = hashlib.sha256(downloads[claude_code.INSTALLER_URL]).hexdigest()
        monkeypatch.setattr(claude_code, "calculate_checksum_sha256", lambda url: digest)

    def test_install(self, make_ctx, paths, runner, downloads, monkeypatch):
        self._serve(downloads, monkeypatch)
        summary = ClaudeCodeFeature().install(make_ctx(), "")

        assert runner.ran("claude-install.sh latest")
        assert (paths.bin_dir / "claude-setup").stat().st_mode & 0o111
        assert (paths.first_startup_dir / "30-claude-code-setup.sh").is_file()
        watcher = (paths.startup_dir / "35-claude-auth-watcher.sh").read_text()
        assert "containerbuild auth-watch" in watcher
        assert "__claude_auth_prompt_check" in paths.bashrc_fragment(90, "claude-auth-check").read_text()
        assert "/dev/shm/anthropic-auth-token" in paths.bashrc_fragment(95, "claude-env").read_text()
        assert runner.ran("inotify-tools")
        assert not runner.ran("npm install")
        assert summary.version == "latest"

    def test_stable_channel(self, make_ctx, runner, downloads, monkeypatch):
        self._serve(downloads, monkeypatch)
        assert ClaudeCodeFeature().install(make_ctx({"CLAUDE_CHANNEL": "stable"}), "").version == "stable"
        assert runner.ran("claude-install.sh stable")

    def test_invalid_channel(self, make_ctx):
        with pytest.raises(FeatureError, match="CLAUDE_CHANNEL"):
            ClaudeCodeFeature().install(make_ctx({"CLAUDE_CHANNEL": "nightly"}), "")

    def test_cli_failure_is_a_warning(self, make_ctx, paths, runner, downloads, monkeypatch):
        monkeypatch.setattr(claude_code, "calculate_checksum_sha256", lambda url: None)
        ClaudeCodeFeature().install(make_ctx(), "")
        assert not runner.ran("claude-install.sh")
        assert (paths.bin_dir / "claude-setup").is_file()

    def test_npm_packages(self, make_ctx, runner, downloads, monkeypatch):
        self._serve(downloads, monkeypatch)
        runner.tools.update({"node", "npm"})
        ClaudeCodeFeature().install(make_ctx({"CLAUDE_EXTRA_MCPS": "brave-search, kagi, mystery"}), "")
        assert runner.ran("npm install -g --silent bash-language-server")
        assert runner.ran("npm install -g --silent @modelcontextprotocol/server-brave-search")
        assert runner.ran("pip3 install --quiet uv")
        assert not runner.ran("mystery")

    def test_npm_failure_is_a_warning(self, make_ctx, runner, downloads, monkeypatch):
        self._serve(downloads, monkeypatch)
        runner.tools.update({"node", "npm"})
        runner.responses["bash-language-server"] = (1, "E404")
        ClaudeCodeFeature().install(make_ctx(), "")
        assert runner.ran("@modelcontextprotocol/server-filesystem")
