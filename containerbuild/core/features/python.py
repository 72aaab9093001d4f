"""
CPython built from the python.org source tarball, plus pip, pipx and Poetry.

The tarball is checked against its detached GPG signature when the
release manager keys are available, otherwise against the published
``.sha256`` file next to it.
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
from containerbuild.core.services.syspath import add_to_system_path, create_symlink

BUILD_DEPENDENCIES = (
    "build-essential", "gdb", "lcov", "libbz2-dev", "libffi-dev", "libgdbm-dev",
    "liblzma-dev", "libncurses5-dev", "libreadline-dev", "libsqlite3-dev",
    "libssl-dev", "lzma", "lzma-dev", "tk-dev", "uuid-dev", "zlib1g-dev",
    "wget", "ca-certificates",
)

CONFIGURE_FLAGS = (
    "--prefix=/usr/local",
    "--enable-shared",
    "--enable-optimizations",
    "--with-lto",
    "--with-system-ffi",
    "--without-ensurepip",
    "LDFLAGS=-Wl,-rpath /usr/local/lib",
)

GET_PIP_URL = "https://bootstrap.pypa.io/get-pip.py"
PIPX_HOME = "/opt/pipx"
PIPX_BIN_DIR = "/opt/pipx/bin"


def source_url(version: str) -> str:
    return f"https://www.python.org/ftp/python/{version}/Python-{version}.tgz"


BASHRC_ENV = f"""\
export PIP_CACHE_DIR="/cache/pip"
export PIP_NO_CACHE_DIR=false
export PIP_DISABLE_PIP_VERSION_CHECK=1
export POETRY_CACHE_DIR="/cache/poetry"
export POETRY_VIRTUALENVS_IN_PROJECT=true

if [ -d {PIPX_HOME} ] && [[ ":$PATH:" != *":{PIPX_BIN_DIR}:"* ]]; then
    export PIPX_HOME="{PIPX_HOME}"
    export PIPX_BIN_DIR="{PIPX_BIN_DIR}"
    export PATH="$PIPX_BIN_DIR:$PATH"
fi
"""

FIRST_STARTUP = f"""\
cd "${{WORKING_DIR:-$PWD}}" || exit 0

if [ -f pyproject.toml ] && command -v poetry &> /dev/null; then
    echo "Installing Poetry dependencies..."
    export PATH="{PIPX_BIN_DIR}:$PATH"
    poetry install --no-interaction || echo "Poetry install failed, continuing..."
fi

if [ -f requirements.txt ]; then
    echo "Installing pip requirements..."
    python3 -m pip install -r requirements.txt || echo "pip install failed, continuing..."
fi
"""

TEST_EXTRA = """\
echo ""
echo "=== Python Environment ==="
echo "PIP_CACHE_DIR: ${PIP_CACHE_DIR:-not set}"
echo "POETRY_CACHE_DIR: ${POETRY_CACHE_DIR:-not set}"
echo "PIPX_HOME: ${PIPX_HOME:-not set}"
echo "Total packages: $(pip list 2>/dev/null | wc -l)"
"""


class PythonFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="python",
            label="Python",
            flag="INCLUDE_PYTHON",
            description="CPython from source with pip, pipx and Poetry",
            version_var="PYTHON_VERSION",
            default_version="3.13.7",
            bashrc_order=20,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        ctx.message("Installing Python build dependencies...")
        ctx.apt.update()
        ctx.apt.install(*BUILD_DEPENDENCIES)

        pip_cache = ctx.paths.cache("pip")
        poetry_cache = ctx.paths.cache("poetry")
        pipx_home = ctx.paths.opt_dir / "pipx"
        create_cache_directories(
            [pip_cache, poetry_cache, pipx_home, pipx_home / "bin"],
            ctx.user.uid,
            ctx.user.gid,
        )

        with ctx.temp_dir() as work:
            tarball = work / f"Python-{version}.tgz"
            ctx.message(f"Downloading Python {version} source...")
            try:
                net.download_file(source_url(version), tarball, policy=ctx.policy)
            except DownloadError as e:
                raise FeatureError(f"Failed to download Python {version} source") from e
            ctx.verify_download("language", "python", version, tarball)
            extract_archive(tarball, work)
            src = work / f"Python-{version}"
            self._build(ctx, src)

            get_pip = work / "get-pip.py"
            ctx.message("Installing pip...")
            net.download_file(GET_PIP_URL, get_pip, policy=ctx.policy)
            python3 = "/usr/local/bin/python3"
            ctx.runner.run([python3, str(get_pip), "--no-cache-dir"], description="Installing pip")

        create_symlink(ctx.paths.bin_dir / "python3", ctx.paths.bin_dir / "python", "python")

        pip_env = f"export PIP_CACHE_DIR='{ctx.system_path(pip_cache)}'"
        ctx.runner.run_as(
            ctx.user.username,
            f"{pip_env} && /usr/local/bin/python3 -m pip install --no-cache-dir --upgrade pip setuptools wheel",
            description="Upgrading pip, setuptools and wheel",
        )
        with ctx.optional("pipx and Poetry installation"):
            self._install_poetry(ctx, pip_env)

        add_to_system_path(PIPX_BIN_DIR, ctx.paths.environment_file)

        ctx.bashrc_fragment(self.info().bashrc_order, "python", "Python configuration", BASHRC_ENV)
        write_first_startup_hook(
            ctx.paths, 10, "poetry", FIRST_STARTUP, "Install project dependencies", suffix="-install"
        )
        write_test_script(
            ctx.paths,
            "python",
            [
                ToolCheck("python3"),
                ToolCheck("python"),
                ToolCheck("pip"),
                ToolCheck("pip3"),
                ToolCheck("pipx"),
                ToolCheck("poetry"),
            ],
            title="Python",
            extra=TEST_EXTRA,
        )

        return FeatureSummary(
            feature="Python",
            version=version,
            tools=["python3", "pip", "pipx", "poetry"],
            paths=["/usr/local/bin/python3", "/cache/pip", "/cache/poetry", PIPX_HOME],
            env_vars=["PIP_CACHE_DIR", "POETRY_CACHE_DIR", "PIPX_HOME", "PIPX_BIN_DIR"],
            commands=["python3", "pip", "pipx", "poetry"],
            next_steps="Run 'test-python' to verify installation.",
        )

    def _build(self, ctx: FeatureContext, src: Path) -> None:
        if not src.is_dir():
            raise FeatureError(f"Python source directory missing after extraction: {src.name}")
        jobs = str(os.cpu_count() or 1)
        ctx.runner.run(["./configure", *CONFIGURE_FLAGS], description="Configuring Python build", cwd=src)
        ctx.runner.run(
            ["make", f"-j{jobs}"],
            description="Building Python (this may take several minutes)",
            cwd=src,
            timeout=7200,
        )
        ctx.runner.run(["make", "install"], description="Installing Python", cwd=src)
        ctx.runner.run(["ldconfig"], description="Updating library cache")

    def _install_poetry(self, ctx: FeatureContext, pip_env: str) -> None:
        ctx.runner.run_as(
            ctx.user.username,
            f"{pip_env} && /usr/local/bin/python3 -m pip install --no-cache-dir pipx",
            description="Installing pipx",
        )
        poetry_cache = ctx.system_path(ctx.paths.cache("poetry"))
        ctx.runner.run_as(
            ctx.user.username,
            f"export PIPX_HOME='{PIPX_HOME}' PIPX_BIN_DIR='{PIPX_BIN_DIR}' "
            f"PATH='{PIPX_BIN_DIR}:/usr/local/bin:'\"$PATH\" && "
            "/usr/local/bin/python3 -m pipx install poetry && "
            f"{PIPX_BIN_DIR}/poetry config virtualenvs.in-project true && "
            f"{PIPX_BIN_DIR}/poetry config cache-dir {poetry_cache}",
            description="Installing Poetry via pipx",
        )
