"""
Android SDK: command-line tools, platform-tools, platforms and build-tools
for each API level in ``ANDROID_API_LEVELS``, and optionally the NDK.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from containerbuild.core.errors import FeatureError, VersionError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import net
from containerbuild.core.services.caches import create_cache_directories
from containerbuild.core.services.command import CommandResult
from containerbuild.core.services.download import extract_archive
from containerbuild.core.services.hooks import ToolCheck, write_first_startup_hook, write_test_script
from containerbuild.core.services.syspath import create_symlink
from containerbuild.core.services.versions import version_tuple

DEFAULT_API_LEVELS = "34,35"
DEFAULT_NDK_VERSION = "27.2.12479018"
CMAKE_PACKAGE = "cmake;3.22.1"

# Hashes of the license texts sdkmanager asks to accept
SDK_LICENSES = {
    "android-sdk-license": (
        "24333f8a63b6825ea9c5514f83c2829b004d1fee",
        "84831b9409646a918e30573bab4c9c91346d8abd",
        "d56f5187479451eabf01fb78af6dfcb131a6481e",
    ),
    "android-sdk-preview-license": ("84831b9409646a918e30573bab4c9c91346d8abd",),
    "google-gdk-license": ("33b6a2b64607f11b759f320ef9dff4ae5c47d97a",),
    "intel-android-extra-license": ("d975f751698a77b662f1254ddbeed3901e976f5a",),
    "android-ndk-license": ("8933bad161af4178b1185d1a37fbf41ea5269c55",),
}

BUILD_TOOL_COMMANDS = ("aapt", "aapt2", "apksigner", "zipalign", "d8", "dexdump")

_API_LEVEL = re.compile(r"^\d+$")


def cmdline_tools_url(version: str) -> str:
    return f"https://dl.google.com/android/repository/commandlinetools-linux-{version}_latest.zip"


def parse_api_levels(value: str) -> list[str]:
    """``"34, 35"`` → ``["34", "35"]``.

    Raises:
        VersionError: An entry is not a plain number.
    """
    levels = [part.strip() for part in value.split(",") if part.strip()]
    if not levels:
        raise VersionError("ANDROID_API_LEVELS must list at least one API level")
    for level in levels:
        if not _API_LEVEL.match(level):
            raise VersionError(f"Invalid API level in ANDROID_API_LEVELS: {level}")
    return levels


def write_licenses(sdk_root: Path) -> Path:
    licenses = sdk_root / "licenses"
    licenses.mkdir(parents=True, exist_ok=True)
    for name, hashes in SDK_LICENSES.items():
        (licenses / name).write_text("".join(f"\n{h}" for h in hashes), encoding="utf-8")
    return licenses


BASHRC_ENV = """\
export ANDROID_HOME=/opt/android-sdk
export ANDROID_SDK_ROOT=$ANDROID_HOME

for _path in "$ANDROID_HOME/cmdline-tools/latest/bin" "$ANDROID_HOME/platform-tools" "$ANDROID_HOME/emulator"; do
    if [ -d "$_path" ] && [[ ":$PATH:" != *":$_path:"* ]]; then
        export PATH="$_path:$PATH"
    fi
done

_build_tools=$(ls -d "$ANDROID_HOME/build-tools/"* 2>/dev/null | sort -V | tail -1)
if [ -n "$_build_tools" ] && [ -d "$_build_tools" ]; then
    export PATH="$_build_tools:$PATH"
fi

_ndk_dir=$(ls -d "$ANDROID_HOME/ndk/"* 2>/dev/null | sort -V | tail -1)
if [ -n "$_ndk_dir" ] && [ -d "$_ndk_dir" ]; then
    export ANDROID_NDK_HOME="$_ndk_dir"
    export NDK_HOME="$ANDROID_NDK_HOME"
fi

export ANDROID_SDK_HOME="/cache/android-sdk"
export GRADLE_USER_HOME="${GRADLE_USER_HOME:-/cache/android-gradle}"
unset _path _build_tools _ndk_dir
"""

BASHRC_ALIASES = """\
alias sdk='sdkmanager'
alias sdklist='sdkmanager --list'
alias sdkinstalled='sdkmanager --list_installed'
alias adbdevices='adb devices -l'
alias adbrestart='adb kill-server && adb start-server'
alias gab='./gradlew assembleDebug'
alias gar='./gradlew assembleRelease'

android-version() {
    echo "=== Android SDK Environment ==="
    echo "ANDROID_HOME: ${ANDROID_HOME:-not set}"
    [ -n "${ANDROID_NDK_HOME:-}" ] && echo "ANDROID_NDK_HOME: ${ANDROID_NDK_HOME}"
    echo "=== Build Tools ==="
    ls -1 "${ANDROID_HOME:-/opt/android-sdk}/build-tools/" 2>/dev/null || echo "None installed"
}

android-install-api() {
    if [ -z "$1" ]; then
        echo "Usage: android-install-api <api_level>"
        return 1
    fi
    yes | sdkmanager --install "platforms;android-$1" "build-tools;$1.0.0" 2>/dev/null \\
        || echo "Some components may not be available"
}
"""

FIRST_STARTUP = """\
if ls "${WORKING_DIR:-$PWD}"/build.gradle* &> /dev/null \\
        && grep -q "android" "${WORKING_DIR:-$PWD}"/build.gradle* 2>/dev/null; then
    echo "=== Android Project Detected ==="
    echo "  ./gradlew assembleDebug     - Build debug APK"
    echo "  ./gradlew test              - Run unit tests"
    echo "APKs will be in: app/build/outputs/apk/"
fi
"""


class AndroidFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="android",
            label="Android SDK",
            flag="INCLUDE_ANDROID",
            description="Android SDK command-line tools, platforms, build-tools and NDK",
            version_var="ANDROID_CMDLINE_TOOLS_VERSION",
            default_version="11076708",
            bashrc_order=50,
            requires=("java",),
        )

    def resolve_version(self, ctx: FeatureContext) -> str:
        version = ctx.setting("ANDROID_CMDLINE_TOOLS_VERSION", self.info().default_version).strip()
        if not version.isdigit():
            raise VersionError(
                f"Invalid ANDROID_CMDLINE_TOOLS_VERSION format: {version}. Expected a build number (e.g., 11076708)"
            )
        return version

    def _check_java(self, ctx: FeatureContext) -> None:
        java = ctx.paths.root / "usr/lib/jvm/default-java/bin/java"
        if java.exists() or ctx.runner.has("java") or ctx.runner.dry_run:
            return
        raise FeatureError("Java is required but not installed. Enable INCLUDE_JAVA=true")

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        api_levels = parse_api_levels(ctx.setting("ANDROID_API_LEVELS", DEFAULT_API_LEVELS))
        ndk_version = ctx.setting("ANDROID_NDK_VERSION", DEFAULT_NDK_VERSION)
        self._check_java(ctx)

        ctx.apt.update()
        ctx.apt.install("wget", "unzip", "ca-certificates", "libncurses5", "libbz2-1.0", "libncursesw6")
        if ctx.arch == "amd64":
            with ctx.optional("32-bit library installation"):
                ctx.apt.install("lib32stdc++6", "lib32z1")

        sdk_root = ctx.paths.opt_dir / "android-sdk"
        latest = sdk_root / "cmdline-tools" / "latest"
        with ctx.temp_dir() as work:
            archive = work / "cmdline-tools.zip"
            ctx.message("Downloading Android command-line tools...")
            net.download_file(cmdline_tools_url(version), archive, policy=ctx.policy)
            ctx.verify_download("tool", "android-cmdline-tools", version, archive)
            extracted = extract_archive(archive, work / "extracted")
            if not (extracted / "cmdline-tools").is_dir():
                raise FeatureError("cmdline-tools directory missing from the Android command-line tools archive")
            if latest.exists():
                shutil.rmtree(latest)
            latest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(extracted / "cmdline-tools"), latest)

        write_licenses(sdk_root)
        ctx.message("SDK licenses accepted")

        sdkmanager = latest / "bin" / "sdkmanager"
        if sdkmanager.is_file():
            sdkmanager.chmod(sdkmanager.stat().st_mode | 0o111)

        self._sdk_install(ctx, sdkmanager, "platform-tools")
        for level in api_levels:
            ctx.message(f"Installing components for API level {level}...")
            self._sdk_install(ctx, sdkmanager, f"platforms;android-{level}")
            if not self._sdk_install(ctx, sdkmanager, f"build-tools;{level}.0.0").ok:
                if not self._sdk_install(ctx, sdkmanager, f"build-tools;{level}.0.1").ok:
                    ctx.warning(f"Could not install build-tools for API {level}")

        if ctx.flag("ANDROID_INSTALL_NDK", True):
            with ctx.optional("NDK installation"):
                if not self._sdk_install(ctx, sdkmanager, f"ndk;{ndk_version}").ok:
                    raise FeatureError(f"sdkmanager could not install NDK {ndk_version}")
                if not self._sdk_install(ctx, sdkmanager, CMAKE_PACKAGE).ok:
                    ctx.warning("Could not install CMake")

        self._link_tools(ctx, sdk_root)

        create_cache_directories(
            [ctx.paths.cache("android-sdk"), ctx.paths.cache("android-gradle")],
            ctx.user.uid,
            ctx.user.gid,
        )

        order = self.info().bashrc_order
        ctx.bashrc_fragment(order, "android", "Android SDK environment configuration", BASHRC_ENV)
        ctx.bashrc_fragment(order, "android", "Android aliases and helpers", BASHRC_ALIASES, guarded=False)
        write_first_startup_hook(ctx.paths, 30, "android", FIRST_STARTUP, "Android project detection")
        write_test_script(
            ctx.paths,
            "android",
            [
                ToolCheck("sdkmanager"),
                ToolCheck("adb", "version"),
                ToolCheck("aapt2", "version"),
                ToolCheck("ndk-build", "--version"),
            ],
            title="Android SDK",
            extra='echo "ANDROID_HOME: ${ANDROID_HOME:-not set}"',
        )

        return FeatureSummary(
            feature="Android SDK",
            version=f"cmdline-tools={version}, APIs={','.join(api_levels)}, NDK={ndk_version}",
            tools=["sdkmanager", "avdmanager", "adb", "fastboot", "aapt", "apksigner", "zipalign", "ndk-build"],
            paths=["/opt/android-sdk", "/cache/android-sdk", "/cache/android-gradle"],
            env_vars=["ANDROID_HOME", "ANDROID_SDK_ROOT", "ANDROID_NDK_HOME"],
            commands=["sdkmanager", "adb", "android-version", "android-install-api", "gab", "gar"],
            next_steps="Run 'test-android' to verify installation. Use 'sdkmanager --list' to see available packages.",
        )

    def _sdk_install(self, ctx: FeatureContext, sdkmanager: Path, package: str) -> CommandResult:
        return ctx.runner.run(
            [str(sdkmanager), "--install", package],
            description=f"Installing {package}",
            check=False,
            input="y\n",
        )

    def _link_tools(self, ctx: FeatureContext, sdk_root: Path) -> None:
        bin_dir = ctx.paths.bin_dir
        for cmd in ("sdkmanager", "avdmanager"):
            tool = sdk_root / "cmdline-tools/latest/bin" / cmd
            if tool.is_file():
                create_symlink(tool, bin_dir / cmd, f"{cmd} tool")
        for cmd in ("adb", "fastboot"):
            tool = sdk_root / "platform-tools" / cmd
            if tool.is_file():
                create_symlink(tool, bin_dir / cmd, f"{cmd} tool")

        build_tools = newest_subdir(sdk_root / "build-tools")
        if build_tools is not None:
            for cmd in BUILD_TOOL_COMMANDS:
                if (build_tools / cmd).is_file():
                    create_symlink(build_tools / cmd, bin_dir / cmd, f"{cmd} tool")

        ndk = newest_subdir(sdk_root / "ndk")
        if ndk is not None and (ndk / "ndk-build").is_file():
            create_symlink(ndk / "ndk-build", bin_dir / "ndk-build", "NDK build tool")


def newest_subdir(parent: Path) -> Path | None:
    """Highest-versioned directory under ``parent`` (``sort -V | tail -1``)."""
    if not parent.is_dir():
        return None
    dirs = [d for d in parent.iterdir() if d.is_dir()]
    if not dirs:
        return None
    return max(dirs, key=lambda d: version_tuple(d.name))
