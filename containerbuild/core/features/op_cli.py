"""
1Password CLI (``op``) from the 1Password apt repository.

Besides the apt source, the debsig policy and keyring are installed so
dpkg can check the package signature itself.
"""

from __future__ import annotations

from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import net
from containerbuild.core.services.caches import create_cache_directories
from containerbuild.core.services.hooks import write_first_startup_hook, write_script
from containerbuild.core.services.host import map_arch

OP_ARCH = {"amd64": "amd64", "arm64": "arm64", "armhf": "arm"}

KEY_URL = "https://downloads.1password.com/linux/keys/1password.asc"
REPO_URL = "https://downloads.1password.com/linux/debian"
DEBSIG_POLICY_URL = "https://downloads.1password.com/linux/debian/debsig/1password.pol"
DEBSIG_KEY_ID = "AC2D62742012EA22"

BASHRC = """\
export OP_CACHE_DIR="/cache/1password"
export OP_CONFIG_DIR="/cache/1password/config"
export OP_BIOMETRIC_UNLOCK_ENABLED=true

alias ops='op signin'
alias opl='op vault list'
alias opg='op item get'
alias opi='op inject'

op-env() {
    if [ -z "$1" ]; then
        echo "Usage: op-env <vault>/<item>" >&2
        return 1
    fi
    op item get "$1" --format json \\
        | jq -r '.fields[] | select(.purpose == "NOTES" or .type == "CONCEALED") | "export " + .label + "=" + (.value | @sh)'
}

op-exec() {
    if [ -z "$1" ] || [ -z "$2" ]; then
        echo "Usage: op-exec <vault>/<item> <command> [args...]" >&2
        return 1
    fi
    local item="$1"
    shift
    eval "$(op-env "$item")" || return 1
    "$@"
}

# OP_<NAME>_REF=op://vault/item/field       -> export NAME=<secret>
# OP_<NAME>_FILE_REF=op://vault/item/field  -> secret written to /dev/shm, NAME=<path>
_op_load_secrets() {
    if ! _check_command op || [ -z "${OP_SERVICE_ACCOUNT_TOKEN:-}" ]; then
        return 0
    fi
    local _old_xtrace
    _old_xtrace=$(set +o | command grep xtrace)
    set +x
    local _ref_var _target_var _ref_value _secret_value _file_name _uri_field _file_ext _file_path
    for _ref_var in $(compgen -v | command grep '^OP_.\\+_REF$' | command grep -v '_FILE_REF$'); do
        _target_var="${_ref_var#OP_}"
        _target_var="${_target_var%_REF}"
        [ -z "$_target_var" ] && continue
        [ -n "${!_target_var:-}" ] && continue
        _ref_value="${!_ref_var:-}"
        [ -z "$_ref_value" ] && continue
        if _secret_value=$(op read "$_ref_value" 2>/dev/null); then
            export "${_target_var}=${_secret_value}"
        fi
    done
    for _ref_var in $(compgen -v | command grep '^OP_.\\+_FILE_REF$'); do
        _target_var="${_ref_var#OP_}"
        _target_var="${_target_var%_FILE_REF}"
        [ -z "$_target_var" ] && continue
        [ -n "${!_target_var:-}" ] && continue
        _ref_value="${!_ref_var:-}"
        [ -z "$_ref_value" ] && continue
        if _secret_value=$(op read "$_ref_value" 2>/dev/null); then
            _file_name=$(echo "$_target_var" | tr '[:upper:]_' '[:lower:]-')
            _uri_field="${_ref_value##*/}"
            case "$_uri_field" in
                *.*) _file_ext=".${_uri_field##*.}" ;;
                *)   _file_ext="" ;;
            esac
            _file_path="/dev/shm/${_file_name}${_file_ext}"
            printf '%s' "$_secret_value" > "$_file_path"
            chmod 600 "$_file_path"
            export "${_target_var}=${_file_path}"
        fi
    done
    eval "$_old_xtrace"
}
_op_load_secrets
unset -f _op_load_secrets
"""

FIRST_STARTUP = """\
if command -v op &> /dev/null; then
    echo "=== 1Password CLI ==="
    echo "Version: $(op --version)"
    echo ""
    echo "To get started:"
    echo "  1. Sign in: op signin"
    echo "  2. List vaults: op vault list"
    echo "  3. Get item: op item get <item-name>"
    echo ""
    echo "Shortcuts available: ops, opl, opg, opi"
    echo "Load env vars: eval \\$(op-env Vault/Item)"
fi
"""

TEST_SCRIPT = """\
echo "=== 1Password CLI Status ==="
if command -v op &> /dev/null; then
    echo "✓ 1Password CLI is installed"
    echo "  Version: $(op --version)"
    echo "  Binary: $(which op)"
else
    echo "✗ 1Password CLI is not installed"
    exit 1
fi

echo ""
echo "=== Configuration ==="
echo "  OP_CACHE_DIR: ${OP_CACHE_DIR:-/cache/1password}"
if [ -d "${OP_CACHE_DIR:-/cache/1password}" ]; then
    echo "  ✓ Cache directory exists"
else
    echo "  ✗ Cache directory missing"
fi
"""


class OpCliFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="op_cli",
            label="1Password CLI",
            flag="INCLUDE_OP",
            description="1Password CLI (op)",
            bashrc_order=70,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        op_arch = map_arch(ctx.arch, OP_ARCH, "1Password CLI")

        ctx.message("Configuring 1Password repository...")
        ctx.apt.add_repository("1password", KEY_URL, f"{REPO_URL}/{op_arch}", "stable", "main", arch=ctx.arch)
        self._install_debsig_policy(ctx)

        ctx.apt.update()
        ctx.apt.install("1password-cli")

        cache = ctx.paths.cache("1password")
        create_cache_directories([cache, cache / "config"], ctx.user.uid, ctx.user.gid)
        (cache / "config").chmod(0o700)

        ctx.bashrc_fragment(self.info().bashrc_order, "1password", "1Password CLI configuration", BASHRC)
        write_first_startup_hook(ctx.paths, 50, "1password", FIRST_STARTUP, "1Password CLI hints")
        write_script(ctx.paths.test_script("1password"), TEST_SCRIPT)

        return FeatureSummary(
            feature="1Password CLI",
            version=version or "latest",
            tools=["op"],
            paths=["/cache/1password", "/cache/1password/config"],
            env_vars=["OP_CACHE_DIR", "OP_CONFIG_DIR", "OP_SERVICE_ACCOUNT_TOKEN"],
            commands=["op", "ops", "opl", "opg", "opi", "op-env", "op-exec"],
            next_steps="Run 'test-1password' to verify installation. Sign in with 'op signin'.",
        )

    def _install_debsig_policy(self, ctx: FeatureContext) -> None:
        ctx.message("Configuring security policy for package verification...")
        policy_dir = ctx.paths.root / "etc/debsig/policies" / DEBSIG_KEY_ID
        policy_dir.mkdir(parents=True, exist_ok=True)
        (policy_dir / "1password.pol").write_bytes(net.fetch_bytes(DEBSIG_POLICY_URL, timeout=60))

        keyring_dir = ctx.paths.root / "usr/share/debsig/keyrings" / DEBSIG_KEY_ID
        keyring_dir.mkdir(parents=True, exist_ok=True)
        armored = keyring_dir / "debsig.asc"
        armored.write_bytes(net.fetch_bytes(KEY_URL, timeout=60))
        try:
            ctx.runner.run(
                ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring_dir / "debsig.gpg"), str(armored)],
                description="Adding 1Password debsig GPG key",
            )
        finally:
            armored.unlink(missing_ok=True)
