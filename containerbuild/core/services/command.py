"""
Command runner: the single place where ``subprocess.run`` is called.

Every external tool an installer drives (apt-get, dpkg, gpg, tar,
sdkmanager, npm, ...) goes through ``CommandRunner.run``. That gives one
spot for dry-run handling, timeouts, feature-log capture and the
``check=True`` → ``CommandError`` convention.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from containerbuild.core.errors import CommandError
from containerbuild.core.observability.feature_log import FeatureLog

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800


@dataclass
class CommandResult:
    """Outcome of one command."""

    cmd: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        if self.stdout and self.stderr:
            return self.stdout.rstrip("\n") + "\n" + self.stderr
        return self.stdout or self.stderr


@dataclass
class CommandRunner:
    """Runs external commands for installers.

    Attributes:
        dry_run: Log commands instead of running them.
        log: Feature log receiving each command's output, if any.
        history: Every result, in order. Useful for summaries and tests.
    """

    dry_run: bool = False
    log: FeatureLog | None = None
    default_timeout: int = DEFAULT_TIMEOUT
    history: list[CommandResult] = field(default_factory=list)

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def has(self, name: str) -> bool:
        return self.which(name) is not None

    def run(
        self,
        cmd: Sequence[str | os.PathLike[str]],
        *,
        description: str = "",
        check: bool = True,
        timeout: int | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        input: str | None = None,
    ) -> CommandResult:
        """Run ``cmd`` and capture its output.

        Raises:
            CommandError: If ``check`` is true and the command failed.
        """
        args = [str(part) for part in cmd]
        description = description or f"Running {args[0]}"
        timeout = timeout or self.default_timeout

        if self.dry_run:
            logger.info("[dry-run] %s: %s", description, shlex.join(args))
            result = CommandResult(cmd=args, returncode=0)
        else:
            logger.debug("Executing: %s", shlex.join(args))
            full_env = None
            if env:
                full_env = os.environ.copy()
                full_env.update(env)
            result = self._execute(args, timeout=timeout, env=full_env, cwd=cwd, input=input)

        self.history.append(result)
        if self.log is not None:
            self.log.record_command(description, args, result.output, result.returncode, result.duration)

        if check and not result.ok:
            raise CommandError(args, result.returncode, result.stderr, result.stdout)
        return result

    def run_shell(self, script: str, **kwargs) -> CommandResult:
        """Run a snippet through ``bash -c``."""
        return self.run(["bash", "-c", script], **kwargs)

    def run_as(self, username: str, script: str, **kwargs) -> CommandResult:
        """Run a snippet as ``username`` (via ``su`` when we are root)."""
        if username != "root" and os.geteuid() == 0:
            return self.run(["su", username, "-c", script], **kwargs)
        return self.run_shell(script, **kwargs)

    def _execute(
        self,
        args: list[str],
        *,
        timeout: int,
        env: Mapping[str, str] | None,
        cwd: str | Path | None,
        input: str | None,
    ) -> CommandResult:
        start = time.monotonic()
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                cwd=cwd,
                input=input,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                cmd=args,
                returncode=124,
                stderr=f"Command timed out ({timeout}s)",
                duration=time.monotonic() - start,
            )
        except FileNotFoundError:
            return CommandResult(
                cmd=args,
                returncode=127,
                stderr=f"{args[0]}: command not found",
                duration=time.monotonic() - start,
            )
        return CommandResult(
            cmd=args,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration=time.monotonic() - start,
        )
