"""
AWS CLI v2 from the official installer bundle, plus the Session Manager plugin.
"""

from __future__ import annotations

from containerbuild.core.features.base import Feature, FeatureContext, FeatureInfo
from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.services import net
from containerbuild.core.services.download import extract_archive
from containerbuild.core.services.hooks import write_first_startup_hook, write_script
from containerbuild.core.services.host import map_arch

AWS_CLI_ARCH = {"amd64": "x86_64", "arm64": "aarch64"}
SESSION_MANAGER_ARCH = {"amd64": "ubuntu_64bit", "arm64": "ubuntu_arm64"}


def cli_url(aws_arch: str) -> str:
    return f"https://awscli.amazonaws.com/awscli-exe-linux-{aws_arch}.zip"


def session_manager_url(platform: str) -> str:
    return f"https://s3.amazonaws.com/session-manager-downloads/plugin/latest/{platform}/session-manager-plugin.deb"


BASHRC = """\
alias awsprofile='aws configure list-profiles'
alias awswho='aws sts get-caller-identity'
alias awsregion='aws configure get region'
alias awsls='aws s3 ls'
alias awslogs='aws logs tail'

if _check_command aws_completer; then
    complete -C aws_completer aws
fi

aws-profile() {
    if [ -z "$1" ]; then
        echo "Current profile: ${AWS_PROFILE:-default}"
        echo "Available profiles:"
        aws configure list-profiles
    else
        export AWS_PROFILE="$1"
        echo "Switched to AWS profile: $AWS_PROFILE"
        aws sts get-caller-identity
    fi
}

aws-assume-role() {
    if [ -z "$1" ]; then
        echo "Usage: aws-assume-role <role-arn> [session-name]"
        return 1
    fi
    local session_name="${2:-cli-session-$(date +%s)}"
    local creds
    creds=$(aws sts assume-role --role-arn "$1" --role-session-name "$session_name" \\
        --query 'Credentials.[AccessKeyId,SecretAccessKey,SessionToken]' --output text) || return 1
    export AWS_ACCESS_KEY_ID=$(echo "$creds" | awk '{print $1}')
    export AWS_SECRET_ACCESS_KEY=$(echo "$creds" | awk '{print $2}')
    export AWS_SESSION_TOKEN=$(echo "$creds" | awk '{print $3}')
    echo "Assumed role: $1"
}

aws-regions() {
    if [ -z "$1" ]; then
        echo "Current region: $(aws configure get region || echo 'Not set')"
        aws ec2 describe-regions --query 'Regions[*].[RegionName]' --output table
    else
        aws configure set region "$1"
        echo "Default region set to: $1"
    fi
}

aws-sso-login() {
    local profile="${1:-${AWS_PROFILE:-default}}"
    export AWS_PROFILE="$profile"
    aws sso login --profile "$profile" && aws sts get-caller-identity
}
"""

FIRST_STARTUP = """\
if [ ! -f ~/.aws/credentials ] && [ -f "${WORKING_DIR:-$PWD}/.aws/credentials" ]; then
    echo "=== AWS Configuration ==="
    echo "Linking workspace AWS credentials..."
    mkdir -p ~/.aws
    ln -s "${WORKING_DIR:-$PWD}/.aws/credentials" ~/.aws/credentials
    ln -s "${WORKING_DIR:-$PWD}/.aws/config" ~/.aws/config 2>/dev/null || true
fi

if command -v aws &> /dev/null; then
    if aws sts get-caller-identity &> /dev/null; then
        echo "AWS CLI is configured and authenticated"
    else
        echo "AWS CLI is installed but not configured"
        echo "Run 'aws configure' to set up your credentials"
    fi
fi
"""

TEST_SCRIPT = """\
echo "=== AWS CLI Status ==="
if command -v aws &> /dev/null; then
    echo "✓ AWS CLI is installed"
    echo "  Version: $(aws --version 2>&1 | head -1)"
else
    echo "✗ AWS CLI is not installed"
    exit 1
fi

echo ""
echo "=== Session Manager Plugin ==="
if command -v session-manager-plugin &> /dev/null; then
    echo "✓ Session Manager plugin is installed"
else
    echo "✗ Session Manager plugin is not installed"
fi

echo ""
echo "=== AWS Configuration ==="
if [ -f ~/.aws/credentials ] || [ -f ~/.aws/config ]; then
    echo "✓ AWS configuration files found"
else
    echo "✗ No AWS configuration files found"
fi
"""


class AwsFeature(Feature):

    def info(self) -> FeatureInfo:
        return FeatureInfo(
            id="aws",
            label="AWS CLI v2",
            flag="INCLUDE_AWS",
            description="AWS CLI v2 and the Session Manager plugin",
            bashrc_order=50,
        )

    def install(self, ctx: FeatureContext, version: str) -> FeatureSummary:
        aws_arch = map_arch(ctx.arch, AWS_CLI_ARCH, "AWS CLI")

        ctx.apt.update()
        ctx.apt.install("unzip", "groff", "less")

        with ctx.temp_dir() as work:
            bundle = work / "awscliv2.zip"
            ctx.message("Downloading AWS CLI v2...")
            net.download_file(cli_url(aws_arch), bundle, policy=ctx.policy)
            ctx.verify_download("tool", "awscli", "latest", bundle)
            extract_archive(bundle, work)
            installer = work / "aws" / "install"
            if installer.is_file():
                installer.chmod(installer.stat().st_mode | 0o111)
            ctx.runner.run(
                [str(installer), "--update", "-i", "/usr/local/aws-cli", "-b", "/usr/local/bin"],
                description="Installing AWS CLI v2",
            )

            platform = SESSION_MANAGER_ARCH.get(ctx.arch)
            if platform is None:
                ctx.warning(f"Session Manager plugin not available for architecture {ctx.arch}")
            else:
                with ctx.optional("Session Manager plugin installation"):
                    deb = work / "session-manager-plugin.deb"
                    net.download_file(session_manager_url(platform), deb, policy=ctx.policy)
                    ctx.verify_download("tool", "session-manager-plugin", "latest", deb)
                    ctx.runner.run(["dpkg", "-i", str(deb)], description="Installing Session Manager plugin")

        ctx.bashrc_fragment(self.info().bashrc_order, "aws", "AWS CLI configuration", BASHRC)
        write_first_startup_hook(ctx.paths, 20, "aws", FIRST_STARTUP, "AWS credential setup")
        write_script(ctx.paths.test_script("aws"), TEST_SCRIPT)

        return FeatureSummary(
            feature="AWS CLI v2",
            version=version or "latest",
            tools=["aws", "aws_completer", "session-manager-plugin"],
            paths=["/usr/local/aws-cli", "~/.aws"],
            env_vars=["AWS_PROFILE", "AWS_DEFAULT_REGION"],
            commands=["aws", "awswho", "aws-profile", "aws-assume-role", "aws-regions", "aws-sso-login"],
            next_steps="Run 'test-aws' to verify installation. Configure credentials with 'aws configure'.",
        )
