"""
R from the CRAN Debian repository.

The requested ``R_VERSION`` is installed when the repository carries it;
otherwise the newest available R is installed with a warning. Package
build headers are removed again in production builds (no dev tools).
"""

from __future__ import annotations

from containerbuild.core.errors import CommandError, FeatureError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services.caches import create_cache_directories
from containerbuild.core.services.hooks import ToolCheck, write_first_startup_hook, write_test_script
from containerbuild.core.services.host import os_codename
from containerbuild.core.services.syspath import create_symlink

CRAN_URL = "https://cloud.r-project.org/bin/linux/debian"
CRAN_KEY_URL = f"{CRAN_URL}/marutter_pubkey.asc"

R_PACKAGES = ("r-base", "r-base-dev", "r-recommended")

PACKAGE_BUILD_DEPENDENCIES = (
    "libcurl4-openssl-dev", "libssl-dev", "libxml2-dev", "libfontconfig1-dev",
    "libharfbuzz-dev", "libfribidi-dev", "libfreetype6-dev", "libpng-dev",
    "libtiff5-dev", "libjpeg-dev", "libcairo2-dev",
)

# Runtime libraries the -dev packages pull in; kept when those are purged
RUNTIME_LIBRARIES = (
    "libcurl4", "libxml2", "libfontconfig1", "libharfbuzz0b", "libfribidi0",
    "libfreetype6", "libpng16-16", "libtiff6", "libjpeg62-turbo", "libcairo2", "libssl3",
)

R_LIBS = "/cache/r/library"
R_CACHE = "/cache/r"

RENVIRON_SITE = f"""\
R_LIBS_USER={R_LIBS}
R_LIBS_SITE={R_LIBS}
R_MAX_NUM_DLLS=150
R_INSTALL_STAGED=FALSE
TMPDIR={R_CACHE}/tmp
"""

RPROFILE_SITE = """\
local({
    r <- getOption("repos")
    r["CRAN"] <- "https://cloud.r-project.org/"
    options(repos = r)
})
options(Ncpus = max(1L, parallel::detectCores() - 1L))
"""

BASHRC_ENV = f"""\
export R_LIBS_USER="{R_LIBS}"
export R_CACHE_DIR="{R_CACHE}"
export TMPDIR="${{R_CACHE_DIR}}/tmp"
export R_INSTALL_STAGED=FALSE
export R_LIBS_SITE="${{R_LIBS_USER}}"
"""

BASHRC_ALIASES = """\
alias R='R --no-save'
alias Rscript='Rscript --vanilla'

r-version() {
    R --version | head -n 1
}

r-install-packages() {
    if [ $# -eq 0 ]; then
        echo "Usage: r-install-packages <package1> [package2] ..."
        return 1
    fi
    Rscript -e "
        for (pkg in commandArgs(trailingOnly = TRUE)) {
            if (!require(pkg, character.only = TRUE)) install.packages(pkg)
        }
    " "$@"
}

r-update-packages() {
    Rscript -e "update.packages(ask = FALSE)"
}

r-clean-cache() {
    rm -rf "${R_CACHE_DIR:-/cache/r}/tmp"/*
    echo "R temporary cache cleaned"
}
"""

FIRST_STARTUP = f"""\
mkdir -p "{R_LIBS}" "{R_CACHE}/tmp" 2>/dev/null || true

cd "${{WORKING_DIR:-$PWD}}" || exit 0
if [ -f renv.lock ] && command -v Rscript &> /dev/null; then
    echo "Restoring renv environment..."
    Rscript -e "if (!requireNamespace('renv', quietly = TRUE)) install.packages('renv'); renv::restore(prompt = FALSE)" \\
        || echo "renv restore failed, continuing..."
elif [ -f DESCRIPTION ] && command -v Rscript &> /dev/null; then
    echo "Installing R package dependencies..."
    Rscript -e "if (!requireNamespace('remotes', quietly = TRUE)) install.packages('remotes'); remotes::install_deps(dependencies = TRUE)" \\
        || echo "Dependency install failed, continuing..."
fi
"""


class RFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="r",
            label="R",
            flag="INCLUDE_R",
            description="R from the CRAN Debian repository",
            version_var="R_VERSION",
            default_version="4.5.1",
            bashrc_order=40,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        production = not (ctx.flag("INCLUDE_DEV_TOOLS") or ctx.flag("INCLUDE_R_DEV"))
        if production:
            ctx.message("📦 Production build detected - build dependencies will be removed after installation")

        ctx.apt.update()
        ctx.apt.install("gnupg", "dirmngr", "ca-certificates", "wget")

        codename = os_codename(ctx.paths)
        if not codename:
            raise FeatureError("Cannot determine OS codename for the CRAN repository")
        ctx.message("Adding R repository...")
        ctx.apt.add_repository("r-project", CRAN_KEY_URL, CRAN_URL, f"{codename}-cran40/", components="")
        ctx.apt.update()

        self._install_r(ctx, version)
        ctx.apt.install(*PACKAGE_BUILD_DEPENDENCIES)

        r_cache = ctx.paths.cache("r")
        create_cache_directories([r_cache, r_cache / "library", r_cache / "tmp"], ctx.user.uid, ctx.user.gid)

        if production:
            with ctx.optional("Build dependency removal"):
                self._remove_build_dependencies(ctx)

        for cmd in ("R", "Rscript"):
            system_bin = ctx.paths.root / "usr/bin" / cmd
            if system_bin.is_file():
                create_symlink(system_bin, ctx.paths.bin_dir / cmd, f"{cmd} command")

        order = self.info().bashrc_order
        ctx.bashrc_fragment(order, "r", "R environment configuration", BASHRC_ENV)
        ctx.bashrc_fragment(order, "r", "R aliases and helpers", BASHRC_ALIASES, guarded=False)

        etc_r = ctx.paths.root / "etc/R"
        etc_r.mkdir(parents=True, exist_ok=True)
        (etc_r / "Rprofile.site").write_text(RPROFILE_SITE, encoding="utf-8")
        (etc_r / "Renviron.site").write_text(RENVIRON_SITE, encoding="utf-8")

        write_first_startup_hook(ctx.paths, 10, "r", FIRST_STARTUP, "R project setup")
        write_test_script(
            ctx.paths,
            "r",
            [ToolCheck("R"), ToolCheck("Rscript")],
            title="R",
            extra='echo "R_LIBS_USER: ${R_LIBS_USER:-not set}"',
        )

        return FeatureSummary(
            feature="R",
            version=version,
            tools=["R", "Rscript"],
            paths=[R_LIBS, R_CACHE],
            env_vars=["R_LIBS_USER", "R_LIBS_SITE", "R_CACHE_DIR", "R_VERSION"],
            commands=["R", "Rscript", "r-version", "r-install-packages", "r-update-packages", "r-clean-cache"],
            next_steps=(
                "Run 'test-r' to verify installation. "
                "Install packages with 'r-install-packages <pkg1> <pkg2>'."
            ),
        )

    def _install_r(self, ctx: FeatureContext, version: str) -> None:
        listing = ctx.runner.run(
            ["apt-cache", "show", "r-base-core"],
            description="Listing available R versions",
            check=False,
        )
        if f"Version: {version}" in listing.stdout:
            ctx.message(f"Installing R version {version}...")
            try:
                ctx.apt.install(
                    f"r-base-core={version}-*",
                    f"r-base-dev={version}-*",
                    f"r-recommended={version}-*",
                )
                return
            except CommandError:
                ctx.warning(f"Exact version {version} not found, installing latest available")
        else:
            ctx.warning(f"Version {version} not available, installing latest from repository")
        ctx.apt.install(*R_PACKAGES)

    def _remove_build_dependencies(self, ctx: FeatureContext) -> None:
        ctx.runner.run(
            ["apt-mark", "manual", *RUNTIME_LIBRARIES],
            description="Marking runtime libraries as manually installed",
            check=False,
        )
        ctx.runner.run(
            ["apt-get", "remove", "--purge", "-y", *PACKAGE_BUILD_DEPENDENCIES],
            description="Removing R package build dependencies",
            check=False,
        )
        ctx.runner.run(["apt-get", "autoremove", "-y"], description="Removing orphaned dependencies")
        ctx.apt.cleanup()
        ctx.message("✓ Build dependencies removed successfully")
