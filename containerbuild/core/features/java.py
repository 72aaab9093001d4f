"""
Eclipse Temurin JDK from the Adoptium apt repository, plus Maven and Gradle.
"""

from __future__ import annotations

from containerbuild.core.errors import FeatureError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services.caches import create_language_caches
from containerbuild.core.services.hooks import ToolCheck, write_first_startup_hook, write_test_script
from containerbuild.core.services.host import os_codename
from containerbuild.core.services.syspath import create_symlink

ADOPTIUM_KEY_URL = "https://packages.adoptium.net/artifactory/api/gpg/key/public"
ADOPTIUM_REPO_URL = "https://packages.adoptium.net/artifactory/deb"

JDK_TOOLS = ("java", "javac", "jar", "javadoc", "javap")
BUILD_TOOLS = ("mvn", "gradle")

BASHRC_ENV = """\
export JAVA_HOME=/usr/lib/jvm/default-java
export PATH="$JAVA_HOME/bin:$PATH"

export M2_HOME=/usr/share/maven
export MAVEN_HOME=$M2_HOME
export MAVEN_OPTS="-Xmx1024m -XX:MaxMetaspaceSize=512m"
export MAVEN_USER_HOME="/cache/maven"
export M2_REPO="${MAVEN_USER_HOME}/repository"

export GRADLE_HOME=/usr/share/gradle
export GRADLE_USER_HOME="/cache/gradle"
export GRADLE_OPTS="-Xmx1024m -XX:MaxMetaspaceSize=512m"
"""

BASHRC_ALIASES = """\
alias mvnc='mvn clean'
alias mvnci='mvn clean install'
alias mvncp='mvn clean package'
alias mvncist='mvn clean install -DskipTests'
alias mvnt='mvn test'
alias mvndep='mvn dependency:tree'
alias gw='./gradlew'
alias gwb='./gradlew build'
alias gwc='./gradlew clean'
alias gwt='./gradlew test'
alias gwdep='./gradlew dependencies'

java-version() {
    echo "=== Java Environment ==="
    java -version 2>&1 | head -n 3
    echo "JAVA_HOME: $JAVA_HOME"
    mvn --version 2>/dev/null | head -n 1 || echo "Maven not found"
    gradle --version 2>/dev/null | grep "Gradle" || echo "Gradle not found"
}

java-clean-cache() {
    echo "=== Cleaning Java build caches ==="
    rm -rf "${MAVEN_USER_HOME:-/cache/maven}/repository"/*
    rm -rf "${GRADLE_USER_HOME:-/cache/gradle}/caches"/*
    echo "Cache cleanup complete"
}
"""

MAVEN_SETTINGS = """\
<?xml version="1.0" encoding="UTF-8"?>
<settings xmlns="http://maven.apache.org/SETTINGS/1.2.0"
          xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
          xsi:schemaLocation="http://maven.apache.org/SETTINGS/1.2.0
                              http://maven.apache.org/xsd/settings-1.2.0.xsd">
    <localRepository>/cache/maven/repository</localRepository>
    <profiles>
        <profile>
            <id>default</id>
            <activation>
                <activeByDefault>true</activeByDefault>
            </activation>
            <properties>
                <maven.compiler.source>{major}</maven.compiler.source>
                <maven.compiler.target>{major}</maven.compiler.target>
            </properties>
        </profile>
    </profiles>
</settings>
"""

FIRST_STARTUP = """\
if [ ! -f "$HOME/.m2/settings.xml" ] && [ -f /etc/maven/settings-template.xml ]; then
    mkdir -p "$HOME/.m2"
    cp /etc/maven/settings-template.xml "$HOME/.m2/settings.xml"
    echo "Created Maven settings.xml from template"
fi

if [ -f "${WORKING_DIR:-$PWD}/pom.xml" ]; then
    echo "=== Maven Project Detected ==="
    echo "  mvn clean install    - Build and install"
    echo "  mvn test             - Run tests"
fi

if [ -f "${WORKING_DIR:-$PWD}/build.gradle" ] || [ -f "${WORKING_DIR:-$PWD}/build.gradle.kts" ]; then
    echo "=== Gradle Project Detected ==="
    echo "  ./gradlew build      - Build project"
    echo "  ./gradlew test       - Run tests"
fi
"""


class JavaFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="java",
            label="Java",
            flag="INCLUDE_JAVA",
            description="Eclipse Temurin JDK with Maven and Gradle",
            version_var="JAVA_VERSION",
            default_version="21",
            bashrc_order=50,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        major = version.split(".", 1)[0]

        ctx.apt.update()
        ctx.apt.install("wget", "apt-transport-https", "gpg", "ca-certificates")

        codename = os_codename(ctx.paths)
        if not codename:
            raise FeatureError("Cannot determine OS codename for the Adoptium repository")
        ctx.message("Adding Eclipse Temurin repository...")
        ctx.apt.add_repository("adoptium", ADOPTIUM_KEY_URL, ADOPTIUM_REPO_URL, codename, "main")
        ctx.apt.update()

        ctx.message(f"Installing Eclipse Temurin JDK {major}...")
        ctx.apt.install(f"temurin-{major}-jdk")

        jvm = ctx.paths.root / "usr/lib/jvm"
        temurin = jvm / f"temurin-{major}-jdk-{ctx.arch}"
        java_home = create_symlink(temurin, jvm / f"java-{major}-openjdk-{ctx.arch}", "Java version symlink")
        create_symlink(java_home, jvm / "default-java", "default Java symlink")

        ctx.apt.install("maven", "gradle")
        create_language_caches(ctx.paths, ctx.user, "maven", "gradle")

        for cmd in JDK_TOOLS:
            if (temurin / "bin" / cmd).is_file():
                create_symlink(temurin / "bin" / cmd, ctx.paths.bin_dir / cmd, f"{cmd} Java tool")
        for cmd in BUILD_TOOLS:
            system_bin = ctx.paths.root / "usr/bin" / cmd
            if system_bin.is_file():
                create_symlink(system_bin, ctx.paths.bin_dir / cmd, f"{cmd} build tool")

        order = self.info().bashrc_order
        ctx.bashrc_fragment(order, "java", "Java environment configuration", BASHRC_ENV)
        ctx.bashrc_fragment(order, "java", "Java aliases and helpers", BASHRC_ALIASES, guarded=False)

        settings = ctx.paths.root / "etc/maven/settings-template.xml"
        settings.parent.mkdir(parents=True, exist_ok=True)
        settings.write_text(MAVEN_SETTINGS.replace("{major}", major), encoding="utf-8")

        write_first_startup_hook(ctx.paths, 30, "java", FIRST_STARTUP, "Java first-startup setup")
        write_test_script(
            ctx.paths,
            "java",
            [ToolCheck("java", "-version"), ToolCheck("javac", "-version"), ToolCheck("mvn"), ToolCheck("gradle")],
            title="Java",
            extra='echo "JAVA_HOME: ${JAVA_HOME:-/usr/lib/jvm/default-java}"',
        )

        return FeatureSummary(
            feature="Java",
            version=version,
            tools=["java", "javac", "jar", "mvn", "gradle"],
            paths=["/usr/lib/jvm/default-java", "/cache/maven", "/cache/gradle"],
            env_vars=["JAVA_HOME", "MAVEN_USER_HOME", "GRADLE_USER_HOME", "MAVEN_OPTS", "GRADLE_OPTS"],
            commands=["java", "javac", "mvn", "gradle", "mvnci", "gwb", "java-version", "java-clean-cache"],
            next_steps="Run 'test-java' to verify installation.",
        )
