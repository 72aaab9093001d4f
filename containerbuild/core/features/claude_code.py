"""
Claude Code CLI, its runtime setup command and the authentication watcher hooks.

Build time installs the CLI for the build user through the official
installer (pinned to the checksum calculated at download time), and
optionally pre-installs npm-based MCP servers. Plugin and MCP
registration needs an authenticated CLI, so it is deferred to
``claude-setup``, which runs:

    first start       → 30-claude-code-setup.sh (``claude-setup --force``)
    every start       → 35-claude-auth-watcher.sh starts ``containerbuild auth-watch``
    interactive shell → 90-claude-auth-check.sh re-checks every 5th prompt
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass

from containerbuild.core.errors import BuildError, DownloadError, FeatureError
from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import bashrc
from containerbuild.core.services.checksums.fetch import calculate_checksum_sha256
from containerbuild.core.services.download import download_and_verify
from containerbuild.core.services.hooks import write_first_startup_hook, write_script, write_startup_hook
from containerbuild.core.services.syspath import create_symlink

INSTALLER_URL = "https://claude.ai/install.sh"
CHANNELS = ("latest", "stable")

BASE_NPM_PACKAGES = ("@modelcontextprotocol/server-filesystem", "bash-language-server")


# ── MCP server registry ─────────────────────────────────────────


@dataclass(frozen=True)
class McpServer:
    """A known MCP server and how ``claude mcp add`` registers it."""

    name: str
    package: str
    runner: str = "npm"                 # "npm" (npx) or "uvx"
    env: tuple[str, ...] = ()           # variables passed through with -e

    def add_args(self) -> list[str]:
        args = ["-t", "stdio", self.name]
        for var in self.env:
            args += ["-e", f"{var}=${{{var}}}"]
        if self.runner == "uvx":
            return args + ["--", "uvx", self.package]
        return args + ["--", "npx", "-y", self.package]


MCP_SERVERS = {
    s.name: s
    for s in (
        McpServer("brave-search", "@modelcontextprotocol/server-brave-search", env=("BRAVE_API_KEY",)),
        McpServer("fetch", "@modelcontextprotocol/server-fetch"),
        McpServer("memory", "@modelcontextprotocol/server-memory"),
        McpServer("sequential-thinking", "@modelcontextprotocol/server-sequential-thinking"),
        McpServer("git", "@modelcontextprotocol/server-git"),
        McpServer("sentry", "@sentry/mcp-server", env=("SENTRY_ACCESS_TOKEN",)),
        McpServer("perplexity", "@perplexity-ai/mcp-server", env=("PERPLEXITY_API_KEY",)),
        McpServer("kagi", "kagimcp", runner="uvx", env=("KAGI_API_KEY",)),
    )
}


def split_list(value: str) -> list[str]:
    """``"a, b,,c"`` → ``["a", "b", "c"]``"""
    return [part.strip() for part in value.split(",") if part.strip()]


def validate_channel(channel: str) -> str:
    channel = channel.strip()
    if channel not in CHANNELS:
        raise FeatureError(f"Invalid CLAUDE_CHANNEL: '{channel}' (must be 'latest' or 'stable')")
    return channel


# ── Generated scripts ───────────────────────────────────────────


def render_claude_setup(servers: dict[str, McpServer] | None = None) -> str:
    """The ``claude-setup`` command installed into ``/usr/local/bin``."""
    servers = MCP_SERVERS if servers is None else servers
    cases = "\n".join(
        f"        {name}) echo '{' '.join(server.add_args())}' ;;"
        for name, server in sorted(servers.items())
    )
    return f"""\
#!/bin/bash
# Register Claude Code plugins and MCP servers for the current user.
set -uo pipefail

MARKER="$HOME/.claude/.container-setup-complete"
CONFIG=/etc/container/config/enabled-features.conf

if [ -f "$MARKER" ] && [ "${{1:-}}" != "--force" ]; then
    echo "Claude setup already complete (use --force to re-run)"
    exit 0
fi

if ! command -v claude &> /dev/null; then
    echo "claude is not installed" >&2
    exit 1
fi

if [ -f "$CONFIG" ]; then
    # shellcheck disable=SC1090
    source "$CONFIG"
fi

_mcp_add_args() {{
    case "$1" in
{cases}
        *) echo "-t stdio $1 -- npx -y $1" ;;
    esac
}}

status=0
IFS=',' read -ra _plugins <<< "${{CLAUDE_EXTRA_PLUGINS:-${{CLAUDE_EXTRA_PLUGINS_DEFAULT:-}}}}"
for _plugin in "${{_plugins[@]}}"; do
    _plugin=$(echo "$_plugin" | xargs)
    [ -z "$_plugin" ] && continue
    echo "Installing plugin: $_plugin"
    claude plugin install "$_plugin" || status=1
done

IFS=',' read -ra _mcps <<< "${{CLAUDE_EXTRA_MCPS:-${{CLAUDE_EXTRA_MCPS_DEFAULT:-}}}}"
for _mcp in "${{_mcps[@]}}"; do
    _mcp=$(echo "$_mcp" | xargs)
    [ -z "$_mcp" ] && continue
    echo "Adding MCP server: $_mcp"
    eval "claude mcp add --scope user $(_mcp_add_args "$_mcp")" || status=1
done

exit "$status"
"""


FIRST_STARTUP = """\
if command -v claude-setup &> /dev/null; then
    claude-setup --force || echo "claude-setup did not complete; it will run again after authentication"
fi
"""

WATCHER_STARTUP = """\
MARKER_FILE="$HOME/.claude/.container-setup-complete"
WATCHER_PID_FILE="/tmp/claude-auth-watcher.pid"

[ -f "$MARKER_FILE" ] && exit 0
if [ -f "$WATCHER_PID_FILE" ] && kill -0 "$(cat "$WATCHER_PID_FILE")" 2>/dev/null; then
    exit 0
fi
command -v containerbuild &> /dev/null || exit 0

echo "[startup] Starting Claude authentication watcher in background..."
nohup containerbuild auth-watch > /tmp/claude-auth-watcher.log 2>&1 &
echo "[startup] Watcher started (PID: $!)"
"""

AUTH_CHECK = """\
__CLAUDE_AUTH_CHECK_COUNTER=${__CLAUDE_AUTH_CHECK_COUNTER:-0}

__claude_auth_prompt_check() {
    local marker_file="$HOME/.claude/.container-setup-complete"
    [ -f "$marker_file" ] && return 0

    __CLAUDE_AUTH_CHECK_COUNTER=$(( (__CLAUDE_AUTH_CHECK_COUNTER + 1) % 5 ))
    [ "$__CLAUDE_AUTH_CHECK_COUNTER" -ne 0 ] && return 0

    local method=""
    if [ -n "${ANTHROPIC_AUTH_TOKEN:-}" ] || [ -s /dev/shm/anthropic-auth-token ]; then
        method="Token"
    elif command grep -q '"claudeAiOauth"' "$HOME/.claude/.credentials.json" 2>/dev/null; then
        method="OAuth"
    elif command grep -q '"oauthAccount"' "$HOME/.claude.json" 2>/dev/null; then
        method="OAuth"
    fi
    [ -z "$method" ] && return 0

    echo ""
    echo "[claude] $method authentication detected! Running setup in background..."
    (claude-setup && touch "$marker_file") &>/dev/null &
    disown 2>/dev/null || true
}

if [[ ! "${PROMPT_COMMAND:-}" =~ __claude_auth_prompt_check ]]; then
    PROMPT_COMMAND="${PROMPT_COMMAND:+$PROMPT_COMMAND; }__claude_auth_prompt_check"
fi
"""

CLAUDE_ENV = """\
if [ -n "${ANTHROPIC_MODEL:-}" ]; then
    export ANTHROPIC_MODEL
fi

# Keep the token out of the environment of every child process
if [ -n "${ANTHROPIC_AUTH_TOKEN:-}" ]; then
    printf '%s' "$ANTHROPIC_AUTH_TOKEN" > /dev/shm/anthropic-auth-token
    chmod 600 /dev/shm/anthropic-auth-token
    unset ANTHROPIC_AUTH_TOKEN
fi

claude() {
    local _old_xtrace _token
    _old_xtrace=$(set +o | command grep xtrace)
    set +x
    _token=$(command cat /dev/shm/anthropic-auth-token 2>/dev/null) || true
    eval "$_old_xtrace"
    if [ -n "$_token" ]; then
        ANTHROPIC_AUTH_TOKEN="$_token" command claude "$@"
    else
        command claude "$@"
    fi
}
"""


class ClaudeCodeFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="claude_code",
            label="Claude Code Setup",
            flag="INCLUDE_CLAUDE_CODE",
            description="Claude Code CLI, claude-setup and the authentication watcher",
            bashrc_order=90,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        channel = validate_channel(ctx.setting("CLAUDE_CHANNEL", "latest"))
        ctx.message(f"Using Claude Code channel: {channel}")

        with ctx.optional("Claude Code CLI installation"):
            self._install_cli(ctx, channel)

        if ctx.runner.has("node") and ctx.runner.has("npm"):
            self._install_npm_packages(ctx)
        else:
            ctx.message("Node.js not available - skipping MCP servers and bash-language-server")

        write_script(ctx.paths.bin_dir / "claude-setup", render_claude_setup())
        write_first_startup_hook(ctx.paths, 30, "claude-code", FIRST_STARTUP, "Claude Code plugin and MCP setup")
        write_startup_hook(ctx.paths, 35, "claude-auth-watcher", WATCHER_STARTUP, "Start the Claude authentication watcher")

        auth_check = ctx.paths.bashrc_fragment(90, "claude-auth-check")
        bashrc.write_bashrc_content(auth_check, "Claude authentication prompt check", AUTH_CHECK)
        ctx.bashrc_fragment(95, "claude-env", "Claude environment configuration", CLAUDE_ENV, guarded=False)

        with ctx.optional("inotify-tools installation (the watcher will poll instead)"):
            ctx.apt.install("inotify-tools")

        return FeatureSummary(
            feature="Claude Code Setup",
            version=channel,
            tools=["claude", "claude-setup", "bash-language-server"],
            paths=[
                "/usr/local/bin/claude",
                "/usr/local/bin/claude-setup",
                "/etc/container/first-startup/30-claude-code-setup.sh",
                "/etc/container/startup/35-claude-auth-watcher.sh",
            ],
            env_vars=[
                "ANTHROPIC_AUTH_TOKEN",
                "ANTHROPIC_MODEL",
                "CLAUDE_CHANNEL",
                "CLAUDE_EXTRA_PLUGINS",
                "CLAUDE_EXTRA_MCPS",
                "CLAUDE_AUTH_WATCHER_TIMEOUT",
            ],
            commands=["claude", "claude-setup", "containerbuild auth-watch"],
            next_steps=(
                "Run 'claude' to authenticate. Setup runs automatically after auth "
                "(via watcher). Manual: 'claude-setup'."
            ),
        )

    def _install_cli(self, ctx: FeatureContext, channel: str) -> None:
        ctx.message("Calculating checksum for Claude Code installer...")
        checksum = calculate_checksum_sha256(INSTALLER_URL)
        if not checksum:
            raise DownloadError("Failed to calculate checksum for the Claude Code installer")
        ctx.message(f"Expected SHA256: {checksum}")

        home = ctx.paths.home(ctx.user.username)
        with ctx.temp_dir() as work:
            installer = download_and_verify(INSTALLER_URL, checksum, work / "claude-install.sh", policy=ctx.policy)
            installer.chmod(0o755)
            work.chmod(0o755)
            ctx.runner.run_as(
                ctx.user.username,
                f"cd {shlex.quote(ctx.system_path(home))} && bash {shlex.quote(str(installer))} {channel}",
                description=f"Installing Claude Code for user {ctx.user.username} (channel: {channel})",
            )

        claude = home / ".local" / "bin" / "claude"
        if claude.exists() or claude.is_symlink():
            create_symlink(claude, ctx.paths.bin_dir / "claude", "system-wide Claude symlink")

    def _install_npm_packages(self, ctx: FeatureContext) -> None:
        env = {"NPM_CONFIG_PREFIX": ctx.system_path(ctx.paths.usr_local)}
        packages = list(BASE_NPM_PACKAGES)
        for name in split_list(ctx.setting("CLAUDE_EXTRA_MCPS")):
            server = MCP_SERVERS.get(name)
            if server is None:
                ctx.message(f"Unknown MCP server '{name}' - will be resolved at runtime via npx")
            elif server.runner == "npm":
                packages.append(server.package)
            elif not ctx.runner.has("uvx"):
                with ctx.optional(f"uv installation for {name}"):
                    ctx.runner.run(["pip3", "install", "--quiet", "uv"], description=f"Installing uv (provides uvx for {name})")

        for package in packages:
            try:
                ctx.runner.run(["npm", "install", "-g", "--silent", package], description=f"Installing {package}", env=env)
            except BuildError as e:
                ctx.warning(f"Failed to install {package}: {e}")
