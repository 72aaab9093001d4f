"""
Ruby built from the ruby-lang.org source tarball, plus Bundler.
"""

from __future__ import annotations

import os
from pathlib import Path

from containerbuild.core.errors import DownloadError, FeatureError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import net
from containerbuild.core.services.caches import create_cache_directories
from containerbuild.core.services.download import extract_archive
from containerbuild.core.services.hooks import ToolCheck, write_first_startup_hook, write_test_script
from containerbuild.core.services.syspath import add_to_system_path

BUILD_DEPENDENCIES = (
    "autoconf", "bison", "build-essential", "libssl-dev", "libyaml-dev",
    "libreadline-dev", "zlib1g-dev", "libncurses5-dev", "libffi-dev",
    "libgdbm6", "libgdbm-dev", "libdb-dev", "uuid-dev", "wget", "ca-certificates",
)

GEM_HOME = "/cache/ruby/gems"
BUNDLE_PATH = "/cache/ruby/bundle"

GEMRC = """\
gem: --no-document
install: --no-document
update: --no-document
"""


def source_url(version: str) -> str:
    series = ".".join(version.split(".")[:2])
    return f"https://cache.ruby-lang.org/pub/ruby/{series}/ruby-{version}.tar.gz"


BASHRC_ENV = f"""\
export GEM_HOME="{GEM_HOME}"
export GEM_PATH="{GEM_HOME}"
export BUNDLE_PATH="{BUNDLE_PATH}"

if [ -d "${{GEM_HOME}}/bin" ] && [[ ":$PATH:" != *":${{GEM_HOME}}/bin:"* ]]; then
    export PATH="${{GEM_HOME}}/bin:$PATH"
fi
"""

BASHRC_ALIASES = """\
alias be='bundle exec'
alias bi='bundle install'
alias bu='bundle update'

ruby-version() {
    echo "Ruby: $(ruby --version 2>&1)"
    echo "Gem: $(gem --version 2>&1)"
    echo "Bundler: $(bundle --version 2>&1)"
}

ruby-gem-install() {
    gem install --no-document "$@"
}

ruby-bundle-init() {
    [ -f Gemfile ] || bundle init
    bundle config set --local path "${BUNDLE_PATH:-/cache/ruby/bundle}"
}
"""

FIRST_STARTUP = """\
if [ -f "${WORKING_DIR:-$PWD}/Gemfile" ]; then
    echo "Installing Ruby gems..."
    cd "${WORKING_DIR:-$PWD}" && bundle install || echo "Bundle install failed, continuing..."
fi
"""

TEST_EXTRA = """\
echo ""
echo "=== Ruby Environment ==="
echo "GEM_HOME: ${GEM_HOME:-not set}"
echo "GEM_PATH: ${GEM_PATH:-not set}"
echo "BUNDLE_PATH: ${BUNDLE_PATH:-not set}"
"""


class RubyFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="ruby",
            label="Ruby",
            flag="INCLUDE_RUBY",
            description="Ruby from source with Bundler",
            version_var="RUBY_VERSION",
            default_version="3.4.7",
            bashrc_order=40,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        ctx.message("Installing Ruby build dependencies...")
        ctx.apt.update()
        ctx.apt.install(*BUILD_DEPENDENCIES)

        ruby_cache = ctx.paths.cache("ruby")
        create_cache_directories(
            [ruby_cache, ruby_cache / "gems", ruby_cache / "bundle"],
            ctx.user.uid,
            ctx.user.gid,
        )

        with ctx.temp_dir() as work:
            tarball = work / f"ruby-{version}.tar.gz"
            ctx.message(f"Downloading Ruby {version}...")
            try:
                net.download_file(source_url(version), tarball, policy=ctx.policy)
            except DownloadError as e:
                raise FeatureError(
                    f"Failed to download Ruby {version}. "
                    "Please verify version exists: https://www.ruby-lang.org/en/downloads/"
                ) from e
            ctx.verify_download("language", "ruby", version, tarball)
            extract_archive(tarball, work)
            self._build(ctx, work / f"ruby-{version}")

        gemrc = ctx.paths.usr_local / "etc" / "gemrc"
        gemrc.parent.mkdir(parents=True, exist_ok=True)
        gemrc.write_text(GEMRC, encoding="utf-8")

        ctx.message("Installing bundler...")
        ctx.runner.run_as(
            ctx.user.username,
            f"export GEM_HOME='{GEM_HOME}' GEM_PATH='{GEM_HOME}' && /usr/local/bin/gem install bundler",
            description="Installing bundler",
        )
        with ctx.optional("Bundler configuration"):
            ctx.runner.run(
                ["/usr/local/bin/bundle", "config", "set", "--global", "path", BUNDLE_PATH],
                description="Configuring bundler cache path",
            )
            ctx.runner.run(
                ["/usr/local/bin/bundle", "config", "set", "--global", "cache_path", f"{BUNDLE_PATH}/cache"],
                description="Configuring bundler cache",
            )

        order = self.info().bashrc_order
        ctx.bashrc_fragment(order, "ruby", "Ruby environment configuration", BASHRC_ENV)
        ctx.bashrc_fragment(order, "ruby", "Ruby aliases and helpers", BASHRC_ALIASES, guarded=False)
        add_to_system_path(f"{GEM_HOME}/bin", ctx.paths.environment_file)

        write_first_startup_hook(ctx.paths, 10, "ruby", FIRST_STARTUP, "Install Gemfile dependencies", suffix="-bundle")
        write_test_script(
            ctx.paths,
            "ruby",
            [ToolCheck("ruby"), ToolCheck("gem"), ToolCheck("bundle"), ToolCheck("rake"), ToolCheck("irb")],
            title="Ruby",
            extra=TEST_EXTRA,
        )

        return FeatureSummary(
            feature="Ruby",
            version=version,
            tools=["ruby", "gem", "bundle", "irb"],
            paths=[GEM_HOME, BUNDLE_PATH],
            env_vars=["GEM_HOME", "BUNDLE_PATH", "RUBY_VERSION"],
            commands=["ruby", "gem", "bundle", "irb", "ruby-version", "ruby-gem-install", "ruby-bundle-init"],
            next_steps=(
                "Run 'test-ruby' to verify installation. Use 'bundle init' to create Gemfile, "
                "'bundle install' for dependencies."
            ),
        )

    def _build(self, ctx: FeatureContext, src: Path) -> None:
        if not src.is_dir():
            raise FeatureError(f"Ruby source directory missing after extraction: {src.name}")
        ctx.runner.run(
            ["./configure", "--prefix=/usr/local", "--enable-shared", "--disable-install-doc", "--with-opt-dir=/usr/local"],
            description="Configuring Ruby build",
            cwd=src,
        )
        ctx.runner.run(
            ["make", f"-j{os.cpu_count() or 1}"],
            description="Building Ruby (this may take several minutes)",
            cwd=src,
            timeout=7200,
        )
        ctx.runner.run(["make", "install"], description="Installing Ruby", cwd=src)
