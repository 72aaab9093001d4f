"""
Claude authentication watcher.

Started in the background by a container startup hook. Waits until the
user has authenticated, then runs ``claude-setup`` once:

    1. marker present      → nothing to do
    2. another watcher     → nothing to do (PID file)
    3. wait for auth       → inotifywait on the credential locations,
                             or polling when inotify-tools is missing
    4. run setup           → retried only on the known transient error
    5. touch marker

The wait is bounded by ``CLAUDE_AUTH_WATCHER_TIMEOUT`` seconds.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from containerbuild.core.reliability.retry import RetryPolicy, retry_on_error
from containerbuild.core.services.command import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3600
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_RETRY_MATCH = "ECONNRESET"
INOTIFY_CHUNK = 60

COMPLETED = "completed"
ALREADY_COMPLETE = "already_complete"
ALREADY_RUNNING = "already_running"
TIMED_OUT = "timeout"
SETUP_FAILED = "setup_failed"


@dataclass
class AuthWatcherConfig:
    """Where to look, how long to wait and what to run."""

    home: Path
    timeout: int = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    setup_command: list[str] = field(default_factory=lambda: ["claude-setup"])
    retry_match: str = DEFAULT_RETRY_MATCH
    token_env: str = "ANTHROPIC_AUTH_TOKEN"
    token_file: Path = Path("/dev/shm/anthropic-auth-token")
    pid_file: Path = Path("/tmp/claude-auth-watcher.pid")
    use_inotify: bool | None = None   # None: use it when installed

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def marker(self) -> Path:
        return self.claude_dir / ".container-setup-complete"

    @property
    def credentials_file(self) -> Path:
        return self.claude_dir / ".credentials.json"

    @property
    def config_file(self) -> Path:
        return self.home / ".claude.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str], home: Path | None = None) -> AuthWatcherConfig:
        home = home or Path(environ.get("HOME") or Path.home())
        raw = environ.get("CLAUDE_AUTH_WATCHER_TIMEOUT", "")
        try:
            timeout = int(raw) if raw else DEFAULT_TIMEOUT
        except ValueError:
            logger.warning("Invalid CLAUDE_AUTH_WATCHER_TIMEOUT '%s', using %ds", raw, DEFAULT_TIMEOUT)
            timeout = DEFAULT_TIMEOUT
        return cls(
            home=home,
            timeout=timeout,
            retry_match=environ.get("CLAUDE_SETUP_RETRY_ERROR") or DEFAULT_RETRY_MATCH,
        )


def _file_contains(path: Path, needle: str) -> bool:
    try:
        return needle in path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False


def detect_auth(config: AuthWatcherConfig, environ: Mapping[str, str]) -> str | None:
    """How the user authenticated: ``"token"``, ``"oauth"`` or None."""
    if environ.get(config.token_env):
        return "token"
    try:
        if config.token_file.is_file() and config.token_file.stat().st_size > 0:
            return "token"
    except OSError:
        pass
    if _file_contains(config.credentials_file, '"claudeAiOauth"'):
        return "oauth"
    if _file_contains(config.config_file, '"oauthAccount"'):
        return "oauth"
    return None


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class AuthWatcher:
    """One watcher run. ``run()`` returns one of the outcome constants."""

    def __init__(
        self,
        config: AuthWatcherConfig,
        runner: CommandRunner,
        environ: Mapping[str, str] | None = None,
        policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.runner = runner
        self.environ = os.environ if environ is None else environ
        self.policy = policy or RetryPolicy(max_attempts=3, initial_delay=5.0, max_delay=60.0)
        self._clock = clock
        self._sleep = sleep

    # ── PID file ────────────────────────────────────────────────

    def other_watcher_running(self) -> bool:
        path = self.config.pid_file
        if not path.is_file():
            return False
        try:
            pid = int(path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return False
        return pid != os.getpid() and _pid_alive(pid)

    def _claim(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(f"{os.getpid()}\n", encoding="utf-8")

    def _release(self) -> None:
        path = self.config.pid_file
        try:
            if path.read_text(encoding="utf-8").strip() == str(os.getpid()):
                path.unlink()
        except OSError:
            pass

    # ── Waiting ─────────────────────────────────────────────────

    def _inotify_enabled(self) -> bool:
        if self.config.use_inotify is not None:
            return self.config.use_inotify
        return self.runner.has("inotifywait")

    def _watch_dirs(self) -> list[Path]:
        self.config.claude_dir.mkdir(parents=True, exist_ok=True)
        dirs = [self.config.claude_dir, self.config.home]
        if self.config.token_file.parent.is_dir():
            dirs.append(self.config.token_file.parent)
        return dirs

    def _wait_inotify(self, remaining: float) -> None:
        chunk = max(1, int(min(remaining, INOTIFY_CHUNK)))
        cmd = [
            "inotifywait", "-q", "-t", str(chunk),
            "-e", "create", "-e", "modify", "-e", "close_write", "-e", "moved_to",
            *[str(d) for d in self._watch_dirs()],
        ]
        # exit 0 on an event, 2 on timeout; either way re-check
        self.runner.run(cmd, description="Waiting for credential changes", check=False, timeout=chunk + 5)

    def wait_for_auth(self) -> str | None:
        """Block until authentication is detected or the timeout passes."""
        deadline = self._clock() + self.config.timeout
        inotify = self._inotify_enabled()
        logger.info(
            "Waiting for Claude authentication (%s, timeout %ds)",
            "inotify" if inotify else "polling",
            self.config.timeout,
        )
        while True:
            method = detect_auth(self.config, self.environ)
            if method:
                logger.info("Authentication detected (%s)", method)
                return method
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            if inotify:
                self._wait_inotify(remaining)
            else:
                self._sleep(min(self.config.poll_interval, remaining))

    # ── Setup ───────────────────────────────────────────────────

    def run_setup(self) -> bool:
        """Run the setup command; touch the marker on success."""

        def _attempt() -> tuple[bool, str]:
            result = self.runner.run(
                self.config.setup_command,
                description="Running claude-setup",
                check=False,
            )
            return result.ok, result.output

        ok, _ = retry_on_error(
            _attempt,
            self.config.retry_match,
            self.policy,
            description="claude-setup",
            sleep=self._sleep,
        )
        if ok:
            self.config.marker.parent.mkdir(parents=True, exist_ok=True)
            self.config.marker.touch()
            logger.info("✓ Claude setup complete")
        return ok

    def run(self) -> str:
        if self.config.marker.exists():
            logger.info("Claude setup already complete (%s)", self.config.marker)
            return ALREADY_COMPLETE
        if self.other_watcher_running():
            logger.info("Another authentication watcher is already running")
            return ALREADY_RUNNING

        self._claim()
        try:
            if self.wait_for_auth() is None:
                logger.warning(
                    "No authentication detected within %ds. Run 'claude-setup' after authenticating.",
                    self.config.timeout,
                )
                return TIMED_OUT
            return COMPLETED if self.run_setup() else SETUP_FAILED
        finally:
            self._release()
