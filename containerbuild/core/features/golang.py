"""
Go toolchain from go.dev.

Installs ``/usr/local/go``, links ``go``/``gofmt`` into
``/usr/local/bin`` and points GOPATH/GOCACHE/GOMODCACHE at ``/cache``.
"""

from __future__ import annotations

from containerbuild.core.errors import DownloadError, FeatureError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import net
from containerbuild.core.services.caches import create_cache_directories
from containerbuild.core.services.download import extract_archive
from containerbuild.core.services.hooks import ToolCheck, write_first_startup_hook, write_test_script
from containerbuild.core.services.host import map_arch
from containerbuild.core.services.syspath import create_symlink

GO_ARCH = {"amd64": "amd64", "arm64": "arm64", "armhf": "armv6l", "i386": "386"}

BASHRC_ENV = """\
export GOROOT=/usr/local/go
export GOPATH="/cache/go"
export GOCACHE="/cache/go-build"
export GOMODCACHE="/cache/go-mod"

case ":$PATH:" in
    *":${GOPATH}/bin:"*) ;;
    *) export PATH="${GOPATH}/bin:/usr/local/go/bin:$PATH" ;;
esac

export GOPROXY="https://proxy.golang.org,direct"
export GOSUMDB="sum.golang.org"
export GO111MODULE=on
"""

BASHRC_ALIASES = """\
alias gob='go build'
alias gor='go run'
alias got='go test'
alias gotv='go test -v'
alias gotc='go test -cover'
alias gof='go fmt'
alias gom='go mod'
alias gomt='go mod tidy'
alias gomd='go mod download'
alias gols='go list'

go-bench() {
    go test -bench=. -benchmem "${@:-./...}"
}

go-cover() {
    go test -coverprofile=coverage.out "${@:-./...}" && go tool cover -func=coverage.out
}
"""

FIRST_STARTUP = """\
# Download modules for a Go project in the working directory
if [ -f go.mod ] && command -v go &> /dev/null; then
    echo "Downloading Go modules..."
    go mod download || echo "⚠ go mod download failed"
fi
"""


class GolangFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="golang",
            label="Golang",
            flag="INCLUDE_GOLANG",
            description="Go toolchain from go.dev",
            version_var="GO_VERSION",
            default_version="1.25.3",
            version_kind="go",
            bashrc_order=50,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        go_arch = map_arch(ctx.arch, GO_ARCH, "Go")
        ctx.message(f"Architecture: {go_arch}")

        ctx.apt.update()
        ctx.apt.install("curl", "ca-certificates", "git")

        tarball = f"go{version}.linux-{go_arch}.tar.gz"
        url = f"https://go.dev/dl/{tarball}"
        with ctx.temp_dir() as work:
            local = work / tarball
            ctx.message(f"Downloading Go {version} for {go_arch}...")
            try:
                net.download_file(url, local, policy=ctx.policy)
            except DownloadError as e:
                raise FeatureError(
                    f"Failed to download Go {version}. "
                    f"Please verify version exists: https://go.dev/dl/#go{version}"
                ) from e
            ctx.verify_download("language", "golang", version, local, arch=go_arch)
            extract_archive(local, ctx.paths.usr_local)

        gopath = ctx.paths.cache("go")
        create_cache_directories(
            [gopath, gopath / "bin", gopath / "src", gopath / "pkg", ctx.paths.cache("go-build"), ctx.paths.cache("go-mod")],
            ctx.user.uid,
            ctx.user.gid,
        )

        goroot_bin = ctx.paths.usr_local / "go" / "bin"
        for cmd in ("go", "gofmt"):
            if (goroot_bin / cmd).is_file():
                create_symlink(goroot_bin / cmd, ctx.paths.bin_dir / cmd, f"{cmd} command")

        order = self.info().bashrc_order
        ctx.bashrc_fragment(order, "golang", "Go environment configuration", BASHRC_ENV)
        ctx.bashrc_fragment(order, "golang", "Go aliases and helpers", BASHRC_ALIASES, guarded=False)
        write_first_startup_hook(ctx.paths, 30, "go", FIRST_STARTUP, "Go first-startup setup")
        write_test_script(
            ctx.paths,
            "go",
            [ToolCheck("go", "version"), ToolCheck("gofmt", "-h", label="gofmt")],
            title="Go",
            extra=(
                'echo "GOROOT: ${GOROOT:-/usr/local/go}"\n'
                'echo "GOPATH: ${GOPATH:-/cache/go}"\n'
                'echo "GOCACHE: ${GOCACHE:-/cache/go-build}"\n'
                'echo "GOMODCACHE: ${GOMODCACHE:-/cache/go-mod}"'
            ),
        )

        return FeatureSummary(
            feature="Go",
            version=version,
            tools=["go", "gofmt"],
            paths=["/cache/go", "/cache/go-build", "/cache/go-mod"],
            env_vars=["GOROOT", "GOPATH", "GOCACHE", "GOMODCACHE", "GO111MODULE", "GOPROXY", "GOSUMDB"],
            commands=["go", "gofmt", "gob", "gor", "got", "gom", "gomt", "go-bench", "go-cover"],
            next_steps="Run 'test-go' to verify installation.",
        )
