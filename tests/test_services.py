"""
Tests for the shared installer services: apt, bashrc.d fragments, PATH
handling, caches, generated hooks, container startup and the Claude
authentication watcher.
"""

import itertools
import os
from pathlib import Path

import pytest

from containerbuild.core.config.paths import SystemPaths
from containerbuild.core.errors import CommandError, FeatureError
from containerbuild.core.models.build import AptSettings, UserInfo
from containerbuild.core.reliability.retry import RetryPolicy
from containerbuild.core.services import apt as apt_mod
from containerbuild.core.services import bashrc, caches, hooks, startup, syspath
from containerbuild.core.services.apt import Apt
from containerbuild.core.services.auth_watcher import (
    ALREADY_COMPLETE,
    ALREADY_RUNNING,
    COMPLETED,
    SETUP_FAILED,
    TIMED_OUT,
    AuthWatcher,
    AuthWatcherConfig,
    detect_auth,
)

from .conftest import RecordingRunner

# ── apt ─────────────────────────────────────────────────────────────


class _SequenceRunner(RecordingRunner):
    """Returns the queued exit codes for apt-get calls, in order."""

    def __init__(self, codes: list[int]):
        super().__init__()
        self.codes = list(codes)

    def _execute(self, args, *, timeout, env, cwd, input):
        result = super()._execute(args, timeout=timeout, env=env, cwd=cwd, input=input)
        if args[:2] in (["apt-get", "update"], ["apt-get", "install"]) and "-qq" not in args and self.codes:
            result.returncode = self.codes.pop(0)
        return result


class TestApt:
    def _apt(self, paths: SystemPaths, runner: RecordingRunner, retries: int = 3):
        sleeps: list[float] = []
        settings = AptSettings(max_retries=retries, retry_delay=5, timeout=60)
        return Apt(runner, paths, settings, sleep=sleeps.append), sleeps

    def test_update_first_try(self, paths, runner):
        apt, sleeps = self._apt(paths, runner)
        apt.update()
        assert runner.ran("apt-get update")
        assert runner.ran("Acquire::Retries=3")
        assert sleeps == []

    def test_update_retries_with_backoff(self, paths):
        runner = _SequenceRunner([1, 1, 0])
        apt, sleeps = self._apt(paths, runner)
        apt.update()
        assert sleeps == [5, 10]
        assert runner.ran("apt-get clean")

    def test_update_network_error_waits_longer(self, paths):
        runner = _SequenceRunner([100, 0])
        apt, sleeps = self._apt(paths, runner)
        apt.update()
        assert sleeps == [10]

    def test_update_gives_up(self, paths):
        runner = _SequenceRunner([1, 1])
        apt, _ = self._apt(paths, runner, retries=2)
        with pytest.raises(CommandError):
            apt.update()

    def test_install(self, paths, runner):
        apt, _ = self._apt(paths, runner)
        apt.install("curl", "ca-certificates")
        cmd = runner.calls[-1]
        assert cmd[:4] == ["apt-get", "install", "-y", "--no-install-recommends"]
        assert cmd[-2:] == ["curl", "ca-certificates"]

    def test_install_network_error_refreshes_lists(self, paths):
        runner = _SequenceRunner([100, 0])
        apt, sleeps = self._apt(paths, runner)
        apt.install("git")
        assert runner.ran("apt-get update -qq")
        assert sleeps == [5]

    def test_install_requires_packages(self, paths, runner):
        apt, _ = self._apt(paths, runner)
        with pytest.raises(FeatureError):
            apt.install()

    def test_install_conditional(self, paths, runner):
        apt, _ = self._apt(paths, runner)
        assert apt.install_conditional(13, 99, "libtinfo6")
        assert not apt.install_conditional(11, 12, "libtinfo5")
        assert runner.ran("libtinfo6")
        assert not runner.ran("libtinfo5")

    def test_configure_retries(self, paths, runner):
        apt, _ = self._apt(paths, runner)
        conf = apt.configure_retries()
        assert conf == paths.apt_conf_dir / "99-retries"
        assert 'Acquire::Retries "3";' in conf.read_text()

    def test_add_repository_binary_key(self, paths, runner, monkeypatch):
        monkeypatch.setattr(apt_mod.net, "fetch_bytes", lambda url, timeout=30: b"\x99binary-key")
        apt, _ = self._apt(paths, runner)
        source = apt.add_repository("r-project", "https://k", "https://cloud.r-project.org/bin/linux/debian", "trixie-cran40/", "", arch="amd64")
        line = source.read_text()
        assert line.startswith("deb [arch=amd64 signed-by=/usr/share/keyrings/r-project-archive-keyring.gpg]")
        assert (paths.keyrings_dir / "r-project-archive-keyring.gpg").read_bytes() == b"\x99binary-key"
        assert not runner.ran("--dearmor")

    def test_add_repository_armored_key(self, paths, runner, monkeypatch):
        monkeypatch.setattr(apt_mod.net, "fetch_bytes", lambda url, timeout=30: b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
        apt, _ = self._apt(paths, runner)
        apt.add_repository("hashicorp", "https://k", "https://apt.releases.hashicorp.com", "trixie")
        assert runner.ran("--dearmor")
        assert not (paths.keyrings_dir / "hashicorp-archive-keyring.asc").exists()


# ── bashrc.d ────────────────────────────────────────────────────────


class TestBashrc:
    def test_content_id(self):
        assert bashrc.content_id_for("Go environment") == "Go_environment"
        assert bashrc.content_id_for("Java (SDKMAN!) setup") == "Java_SDKMAN_setup"

    def test_write_creates_executable(self, tmp_path: Path):
        path = tmp_path / "bashrc.d/50-golang.sh"
        assert bashrc.write_bashrc_content(path, "Go environment", "export GOPATH=~/go")
        text = path.read_text()
        assert "# BEGIN_GENERATED_CONTENT: Go_environment" in text
        assert "export GOPATH=~/go" in text
        assert path.stat().st_mode & 0o777 == 0o755

    def test_idempotent(self, tmp_path: Path):
        path = tmp_path / "50-golang.sh"
        bashrc.write_bashrc_content(path, "Go environment", "export A=1")
        assert not bashrc.write_bashrc_content(path, "Go environment", "export A=1")
        assert path.read_text().count("BEGIN_GENERATED_CONTENT") == 1

    def test_append_second_block(self, tmp_path: Path):
        path = tmp_path / "50-golang.sh"
        bashrc.write_bashrc_content(path, "Go environment", "export A=1")
        bashrc.write_bashrc_content(path, "Go aliases", "alias gob='go build'")
        assert bashrc.has_block(path, "Go_aliases")
        assert bashrc.has_block(path, "Go_environment")

    def test_empty_content_skipped(self, tmp_path: Path):
        path = tmp_path / "x.sh"
        assert not bashrc.write_bashrc_content(path, "Nothing", "   ")
        assert not path.exists()

    def test_update_replaces_block(self, tmp_path: Path):
        path = tmp_path / "x.sh"
        bashrc.write_bashrc_content(path, "First", "echo one")
        bashrc.write_bashrc_content(path, "Second", "echo keep")
        assert bashrc.update_bashrc_content(path, "First", "echo two")
        text = path.read_text()
        assert "echo two" in text
        assert "echo one" not in text
        assert "echo keep" in text
        assert "\n\n\n" not in text

    def test_fragment_has_safety_guards(self, tmp_path: Path):
        path = tmp_path / "x.sh"
        bashrc.write_fragment(path, "Ruby environment", "export GEM_HOME=/cache/ruby")
        text = path.read_text()
        assert text.index("set +u") < text.index("GEM_HOME") < text.index("unset -f _check_command")
        assert "if [[ $- != *i* ]]; then" in text


# ── PATH ────────────────────────────────────────────────────────────


class TestSystemPath:
    def test_add_to_new_file(self, tmp_path: Path):
        env = tmp_path / "environment"
        value = syspath.add_to_system_path("/usr/local/go/bin", env)
        assert value == syspath.DEFAULT_SYSTEM_PATH + ":/usr/local/go/bin"
        assert env.read_text() == f'PATH="{value}"\n'

    def test_no_duplicates_and_other_lines_kept(self, tmp_path: Path):
        env = tmp_path / "environment"
        env.write_text('LANG=C.UTF-8\nPATH="/usr/bin:/bin"\n')
        syspath.add_to_system_path("/opt/x/bin", env)
        syspath.add_to_system_path("/opt/x/bin", env)
        assert env.read_text() == 'LANG=C.UTF-8\nPATH="/usr/bin:/bin:/opt/x/bin"\n'
        assert syspath.read_system_path(env) == "/usr/bin:/bin:/opt/x/bin"

    def test_requires_path(self, tmp_path: Path):
        with pytest.raises(ValueError):
            syspath.add_to_system_path("", tmp_path / "environment")

    def test_safe_add(self, tmp_path: Path):
        bindir = tmp_path / "bin"
        bindir.mkdir(mode=0o755)
        bindir.chmod(0o755)
        assert syspath.safe_add_to_path(bindir, "/usr/bin") == f"{bindir}:/usr/bin"
        assert syspath.safe_add_to_path(bindir, f"{bindir}:/usr/bin") == f"{bindir}:/usr/bin"

    def test_safe_add_refuses_world_writable(self, tmp_path: Path):
        bindir = tmp_path / "bin"
        bindir.mkdir()
        bindir.chmod(0o777)
        assert syspath.safe_add_to_path(bindir, "/usr/bin") == "/usr/bin"

    def test_safe_add_missing_dir(self, tmp_path: Path):
        assert syspath.safe_add_to_path(tmp_path / "nope", "/usr/bin") == "/usr/bin"

    def test_symlink(self, tmp_path: Path):
        target = tmp_path / "opt/tool/bin/tool"
        target.parent.mkdir(parents=True)
        target.write_text("#!/bin/sh\n")
        target.chmod(0o644)
        link = syspath.create_symlink(target, tmp_path / "bin/tool")
        assert link.resolve() == target.resolve()
        assert target.stat().st_mode & 0o111
        syspath.create_symlink(target, link)
        assert link.is_symlink()


# ── Caches ──────────────────────────────────────────────────────────


class TestCaches:
    def test_language_caches(self, paths: SystemPaths, user: UserInfo, monkeypatch):
        monkeypatch.setattr(caches.os, "geteuid", lambda: 1000)
        created = caches.create_language_caches(paths, user, "go", "go/mod")
        assert created == [paths.cache_root / "go", paths.cache_root / "go/mod"]
        assert all(d.is_dir() for d in created)

    def test_requires_paths(self):
        with pytest.raises(FeatureError):
            caches.create_cache_directories([], 0, 0)


# ── Generated scripts ───────────────────────────────────────────────


class TestHooks:
    def test_first_startup_hook(self, paths: SystemPaths):
        path = hooks.write_first_startup_hook(paths, 20, "golang", "go mod download\n")
        assert path == paths.first_startup_dir / "20-golang-setup.sh"
        text = path.read_text()
        assert text.startswith("#!/bin/bash\n# golang first-startup setup\n")
        assert path.stat().st_mode & 0o777 == 0o755

    def test_startup_hook(self, paths: SystemPaths):
        path = hooks.write_startup_hook(paths, 30, "claude-auth-watcher", "echo hi", "Start watcher")
        assert path.name == "30-claude-auth-watcher.sh"
        assert "# Start watcher" in path.read_text()

    def test_write_script_adds_shebang(self, tmp_path: Path):
        path = hooks.write_script(tmp_path / "s", "echo hi")
        assert path.read_text() == "#!/bin/bash\necho hi\n"

    def test_test_script(self, paths: SystemPaths):
        path = hooks.write_test_script(
            paths,
            "golang",
            [hooks.ToolCheck("go", "version"), hooks.ToolCheck("gopls", label="Go language server")],
            title="Go",
        )
        assert path == paths.bin_dir / "test-golang"
        text = path.read_text()
        assert 'echo "=== Go Installation Status ==="' in text
        assert "if command -v go &> /dev/null; then" in text
        assert "$(go version 2>&1 | head -n 1)" in text
        assert '✗ Go language server is not installed' in text
        assert text.rstrip().endswith('exit "$status"')


# ── Startup ─────────────────────────────────────────────────────────


def _clock(*values: float):
    it = itertools.chain(values, itertools.repeat(values[-1]))
    return lambda: next(it)


class TestStartup:
    def _hooks(self, paths: SystemPaths):
        hooks.write_first_startup_hook(paths, 10, "a", "echo first")
        hooks.write_startup_hook(paths, 10, "b", "echo every")

    def test_first_run(self, paths, user, runner):
        self._hooks(paths)
        marker = paths.root / "marker"
        report = startup.run_startup(paths, user, runner, first_run_marker=marker, clock=_clock(100, 103))
        assert report.first_run
        assert report.ran == ["10-a-setup.sh", "10-b.sh"]
        assert marker.exists()
        metric = (paths.metrics_dir / startup.METRICS_FILE).read_text()
        assert "container_startup_seconds 3" in metric

    def test_second_run_skips_first_startup(self, paths, user, runner):
        self._hooks(paths)
        marker = paths.root / "marker"
        marker.touch()
        report = startup.run_startup(paths, user, runner, first_run_marker=marker)
        assert not report.first_run
        assert report.ran == ["10-b.sh"]

    def test_scripts_run_in_name_order(self, paths, user, runner):
        hooks.write_startup_hook(paths, 20, "later", "true")
        hooks.write_startup_hook(paths, 5, "early", "true")
        marker = paths.root / "marker"
        marker.touch()
        assert startup.run_startup(paths, user, runner, first_run_marker=marker).ran == [
            "05-early.sh",
            "20-later.sh",
        ]

    def test_root_with_spaces(self, user, runner, tmp_path):
        spaced = SystemPaths(root=tmp_path / "staging root")
        script = hooks.write_startup_hook(spaced, 10, "b", "echo every")
        marker = tmp_path / "marker"
        marker.touch()
        startup.run_startup(spaced, user, runner, first_run_marker=marker)
        assert runner.calls[-1][-1] == f"bash '{script}'"

    def test_symlinks_skipped(self, paths, user, runner, tmp_path):
        outside = tmp_path / "evil.sh"
        outside.write_text("#!/bin/bash\n")
        paths.startup_dir.mkdir(parents=True)
        (paths.startup_dir / "50-evil.sh").symlink_to(outside)
        marker = paths.root / "marker"
        marker.touch()
        report = startup.run_startup(paths, user, runner, first_run_marker=marker)
        assert report.ran == []
        assert report.skipped == ["50-evil.sh"]
        assert not runner.ran("evil")

    def test_failure_leaves_marker_unwritten(self, paths, user):
        self._hooks(paths)
        runner = RecordingRunner(responses={"10-a-setup.sh": (1, "boom")})
        marker = paths.root / "marker"
        with pytest.raises(CommandError):
            startup.run_startup(paths, user, runner, first_run_marker=marker)
        assert not marker.exists()

    def test_no_hooks(self, paths, user, runner):
        report = startup.run_startup(paths, user, runner, first_run_marker=paths.root / "m")
        assert report.ran == []
        assert report.first_run


# ── Claude authentication watcher ───────────────────────────────────


@pytest.fixture
def watcher_config(tmp_path: Path) -> AuthWatcherConfig:
    return AuthWatcherConfig(
        home=tmp_path / "home",
        timeout=10,
        poll_interval=2,
        token_file=tmp_path / "shm/anthropic-auth-token",
        pid_file=tmp_path / "watcher.pid",
        use_inotify=False,
    )


def _write_credentials(config: AuthWatcherConfig) -> None:
    config.claude_dir.mkdir(parents=True, exist_ok=True)
    config.credentials_file.write_text('{"claudeAiOauth": {"accessToken": "x"}}')


class TestAuthConfig:
    def test_from_env(self, tmp_path: Path):
        config = AuthWatcherConfig.from_env(
            {"HOME": str(tmp_path), "CLAUDE_AUTH_WATCHER_TIMEOUT": "120", "CLAUDE_SETUP_RETRY_ERROR": "ETIMEDOUT"}
        )
        assert config.home == tmp_path
        assert config.timeout == 120
        assert config.retry_match == "ETIMEDOUT"
        assert config.marker == tmp_path / ".claude/.container-setup-complete"

    def test_from_env_defaults(self, tmp_path: Path):
        config = AuthWatcherConfig.from_env({"CLAUDE_AUTH_WATCHER_TIMEOUT": "soon"}, home=tmp_path)
        assert config.timeout == 3600
        assert config.retry_match == "ECONNRESET"


class TestDetectAuth:
    def test_none(self, watcher_config):
        assert detect_auth(watcher_config, {}) is None

    def test_token_env(self, watcher_config):
        assert detect_auth(watcher_config, {"ANTHROPIC_AUTH_TOKEN": "t"}) == "token"

    def test_token_file(self, watcher_config):
        watcher_config.token_file.parent.mkdir(parents=True)
        watcher_config.token_file.write_text("t")
        assert detect_auth(watcher_config, {}) == "token"

    def test_empty_token_file_ignored(self, watcher_config):
        watcher_config.token_file.parent.mkdir(parents=True)
        watcher_config.token_file.write_text("")
        assert detect_auth(watcher_config, {}) is None

    def test_oauth_credentials(self, watcher_config):
        _write_credentials(watcher_config)
        assert detect_auth(watcher_config, {}) == "oauth"

    def test_oauth_account_in_config(self, watcher_config):
        watcher_config.home.mkdir(parents=True)
        watcher_config.config_file.write_text('{"oauthAccount": {}}')
        assert detect_auth(watcher_config, {}) == "oauth"


class TestAuthWatcher:
    def _watcher(self, config, runner, environ=None, clock=None):
        sleeps: list[float] = []
        watcher = AuthWatcher(
            config,
            runner,
            environ=environ or {},
            policy=RetryPolicy(max_attempts=3, initial_delay=1, max_delay=4),
            clock=clock or _clock(0),
            sleep=sleeps.append,
        )
        return watcher, sleeps

    def test_already_complete(self, watcher_config, runner):
        watcher_config.marker.parent.mkdir(parents=True)
        watcher_config.marker.touch()
        watcher, _ = self._watcher(watcher_config, runner)
        assert watcher.run() == ALREADY_COMPLETE
        assert runner.calls == []

    def test_already_running(self, watcher_config, runner):
        watcher_config.pid_file.write_text("1\n")
        watcher, _ = self._watcher(watcher_config, runner)
        assert watcher.run() == ALREADY_RUNNING

    def test_stale_pid_file_ignored(self, watcher_config, runner, monkeypatch):
        watcher_config.pid_file.write_text("999999\n")
        monkeypatch.setattr("containerbuild.core.services.auth_watcher._pid_alive", lambda pid: False)
        watcher, _ = self._watcher(watcher_config, runner, environ={"ANTHROPIC_AUTH_TOKEN": "t"})
        assert watcher.run() == COMPLETED

    def test_completes_when_authenticated(self, watcher_config, runner):
        _write_credentials(watcher_config)
        watcher, _ = self._watcher(watcher_config, runner)
        assert watcher.run() == COMPLETED
        assert runner.ran("claude-setup")
        assert watcher_config.marker.exists()
        assert not watcher_config.pid_file.exists()

    def test_polls_until_authenticated(self, watcher_config, runner):
        watcher, sleeps = self._watcher(watcher_config, runner, clock=_clock(0, 0, 2, 4))

        def _sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                _write_credentials(watcher_config)

        watcher._sleep = _sleep
        assert watcher.wait_for_auth() == "oauth"
        assert sleeps == [2, 2]

    def test_timeout(self, watcher_config, runner):
        watcher, _ = self._watcher(watcher_config, runner, clock=_clock(0, 4, 8, 12))
        assert watcher.run() == TIMED_OUT
        assert not runner.ran("claude-setup")
        assert not watcher_config.pid_file.exists()

    def test_inotify_wait(self, watcher_config):
        watcher_config.use_inotify = True
        runner = RecordingRunner()
        watcher, _ = self._watcher(watcher_config, runner, clock=_clock(0, 0, 100))
        assert watcher.wait_for_auth() is None
        assert runner.ran("inotifywait -q -t 10")

    def test_setup_retries_transient_error(self, watcher_config):
        _write_credentials(watcher_config)
        runner = _FlakySetupRunner(["read ECONNRESET", None])
        watcher, sleeps = self._watcher(watcher_config, runner)
        assert watcher.run() == COMPLETED
        assert len(runner.calls) == 2
        assert sleeps == [1]

    def test_setup_other_error_fails(self, watcher_config):
        _write_credentials(watcher_config)
        runner = RecordingRunner(responses={"claude-setup": (1, "permission denied")})
        watcher, sleeps = self._watcher(watcher_config, runner)
        assert watcher.run() == SETUP_FAILED
        assert len(runner.calls) == 1
        assert not watcher_config.marker.exists()


class _FlakySetupRunner(RecordingRunner):
    """Fails with each queued message, then succeeds (None)."""

    def __init__(self, failures: list[str | None]):
        super().__init__()
        self.failures = list(failures)

    def _execute(self, args, *, timeout, env, cwd, input):
        result = super()._execute(args, timeout=timeout, env=env, cwd=cwd, input=input)
        message = self.failures.pop(0) if self.failures else None
        if message is not None:
            result.returncode = 1
            result.stderr = message
        return result


def test_pid_file_holds_current_process(watcher_config, runner):
    """The watcher claims the PID file while waiting."""
    seen = []
    watcher = AuthWatcher(watcher_config, runner, environ={}, clock=_clock(0, 100))
    original = watcher.wait_for_auth

    def _wait():
        seen.append(watcher_config.pid_file.read_text().strip())
        return original()

    watcher.wait_for_auth = _wait
    assert watcher.run() == TIMED_OUT
    assert seen == [str(os.getpid())]
