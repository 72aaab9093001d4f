"""
Kotlin compiler (and Kotlin/Native where available) from JetBrains releases.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from containerbuild.core.errors import FeatureError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import net
from containerbuild.core.services.caches import create_language_caches
from containerbuild.core.services.checksums.fetch import fetch_sha256_file
from containerbuild.core.services.checksums.tiers import register_tool_checksum_fetcher
from containerbuild.core.services.download import extract_archive
from containerbuild.core.services.hooks import ToolCheck, write_first_startup_hook, write_test_script
from containerbuild.core.services.syspath import create_symlink

RELEASES = "https://github.com/JetBrains/kotlin/releases/download"
NATIVE_ARCH = {"amd64": "linux-x86_64", "arm64": "linux-aarch64"}


def compiler_url(version: str) -> str:
    return f"{RELEASES}/v{version}/kotlin-compiler-{version}.zip"


def native_url(version: str, native_arch: str) -> str:
    return f"{RELEASES}/v{version}/kotlin-native-prebuilt-{native_arch}-{version}.tar.gz"


def _published_compiler_checksum(version: str, arch: str) -> str | None:
    return fetch_sha256_file(compiler_url(version) + ".sha256")


register_tool_checksum_fetcher("kotlin", _published_compiler_checksum)

BASHRC_ENV = """\
export KOTLIN_HOME=/opt/kotlin
export PATH="$KOTLIN_HOME/bin:$PATH"
if [ -d /opt/kotlin-native ]; then
    export KOTLIN_NATIVE_HOME=/opt/kotlin-native
    export PATH="$KOTLIN_NATIVE_HOME/bin:$PATH"
fi
export KONAN_DATA_DIR="/cache/kotlin/konan"
"""

BASHRC_ALIASES = """\
alias kc='kotlinc'
alias kr='kotlin'

kotlin-version() {
    echo "Kotlin: $(kotlinc -version 2>&1 | tail -n 1)"
    command -v kotlinc-native &> /dev/null && echo "Kotlin/Native: $(kotlinc-native -version 2>&1 | tail -n 1)"
}

kt-run() {
    if [ -z "$1" ]; then
        echo "Usage: kt-run <file.kt>"
        return 1
    fi
    local jar="/tmp/$(basename "$1" .kt).jar"
    kotlinc "$1" -include-runtime -d "$jar" && java -jar "$jar"
}
"""

FIRST_STARTUP = """\
if [ -f "${WORKING_DIR:-$PWD}/build.gradle.kts" ]; then
    echo "=== Kotlin Gradle Project Detected ==="
    echo "  gradle build        - Build project"
    echo "  gradle test         - Run tests"
elif [ -f "${WORKING_DIR:-$PWD}/pom.xml" ] && grep -q "kotlin" "${WORKING_DIR:-$PWD}/pom.xml" 2>/dev/null; then
    echo "=== Kotlin Maven Project Detected ==="
    echo "  mvn compile         - Compile project"
    echo "  mvn test            - Run tests"
fi
"""


class KotlinFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="kotlin",
            label="Kotlin",
            flag="INCLUDE_KOTLIN",
            description="Kotlin compiler and Kotlin/Native",
            version_var="KOTLIN_VERSION",
            default_version="2.2.21",
            bashrc_order=50,
            requires=("java",),
        )

    def _check_java(self, ctx: FeatureContext) -> None:
        java = ctx.paths.root / "usr/lib/jvm/default-java/bin/java"
        if java.exists() or ctx.runner.has("java") or ctx.runner.dry_run:
            return
        raise FeatureError("Java is required but not installed. Enable INCLUDE_JAVA=true")

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        self._check_java(ctx)

        ctx.apt.update()
        ctx.apt.install("wget", "unzip", "ca-certificates")

        kotlin_home = ctx.paths.opt_dir / "kotlin"
        native_home = ctx.paths.opt_dir / "kotlin-native"
        native_arch = NATIVE_ARCH.get(ctx.arch)

        with ctx.temp_dir() as work:
            archive = work / "kotlin-compiler.zip"
            ctx.message(f"Downloading Kotlin compiler {version}...")
            net.download_file(compiler_url(version), archive, policy=ctx.policy)
            ctx.verify_download("tool", "kotlin", version, archive)
            extracted = extract_archive(archive, work / "extracted")
            kotlinc = extracted / "kotlinc"
            if not kotlinc.is_dir():
                raise FeatureError("kotlinc directory missing from the Kotlin compiler archive")
            shutil.copytree(kotlinc, kotlin_home, dirs_exist_ok=True)

            if native_arch is None:
                ctx.warning(f"Kotlin/Native not available for architecture: {ctx.arch}")
            else:
                with ctx.optional("Kotlin/Native installation"):
                    self._install_native(ctx, version, native_arch, work)

        for cmd in ("kotlin", "kotlinc"):
            if (kotlin_home / "bin" / cmd).is_file():
                create_symlink(kotlin_home / "bin" / cmd, ctx.paths.bin_dir / cmd, f"{cmd} tool")
        for cmd in ("kotlinc-native", "cinterop", "klib"):
            if (native_home / "bin" / cmd).is_file():
                create_symlink(native_home / "bin" / cmd, ctx.paths.bin_dir / cmd, f"{cmd} tool")

        create_language_caches(ctx.paths, ctx.user, "kotlin")

        order = self.info().bashrc_order
        ctx.bashrc_fragment(order, "kotlin", "Kotlin environment configuration", BASHRC_ENV)
        ctx.bashrc_fragment(order, "kotlin", "Kotlin aliases and helpers", BASHRC_ALIASES, guarded=False)
        write_first_startup_hook(ctx.paths, 30, "kotlin", FIRST_STARTUP, "Kotlin first-startup setup")
        write_test_script(
            ctx.paths,
            "kotlin",
            [ToolCheck("kotlinc", "-version"), ToolCheck("kotlin", "-version"), ToolCheck("kotlinc-native", "-version")],
            title="Kotlin",
        )

        return FeatureSummary(
            feature="Kotlin",
            version=version,
            tools=["kotlin", "kotlinc", "kotlinc-native"],
            paths=["/opt/kotlin", "/opt/kotlin-native", "/cache/kotlin"],
            env_vars=["KOTLIN_HOME", "KOTLIN_NATIVE_HOME", "KONAN_DATA_DIR"],
            commands=["kotlin", "kotlinc", "kc", "kr", "kt-run", "kotlin-version"],
            next_steps="Run 'test-kotlin' to verify installation.",
        )

    def _install_native(self, ctx: FeatureContext, version: str, native_arch: str, work: Path) -> None:
        ctx.message(f"Installing Kotlin/Native for {native_arch}...")
        archive = work / "kotlin-native.tar.gz"
        net.download_file(native_url(version, native_arch), archive, policy=ctx.policy)
        ctx.verify_download("tool", "kotlin-native", version, archive)
        extracted = extract_archive(archive, work / "native")
        # the tarball holds a single versioned top-level directory
        roots = [p for p in extracted.iterdir() if p.is_dir()]
        source = roots[0] if len(roots) == 1 else extracted
        shutil.copytree(source, ctx.paths.opt_dir / "kotlin-native", dirs_exist_ok=True)
        ctx.message("Kotlin/Native installed successfully")
