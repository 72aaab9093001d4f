"""
Per-feature build logs.

Each feature gets three files in the build log directory:

    <feature>-install.log   everything, including command output
    <feature>-errors.log    lines that look like errors or warnings
    <feature>-summary.log   feature summary and totals, written at the end

and one line appended to ``master-summary.log``:

    Go: 0 errors, 2 warnings (41s)

Command output is scanned for error/warning words, so the counts reflect
what tools printed, not only what the installer itself reported.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from pathlib import Path

from containerbuild.core.models.feature import FeatureSummary
from containerbuild.core.observability.json_log import JsonEventLog
from containerbuild.core.observability.scrub import scrub_secrets

logger = logging.getLogger(__name__)

MASTER_SUMMARY = "master-summary.log"

_ERROR_RE = re.compile(r"(ERROR|Error|error|FAILED|Failed|failed|FATAL|Fatal|fatal)")
_WARNING_RE = re.compile(r"(WARNING|Warning|warning|WARN|Warn|warn)")

_RULE = "=" * 80
_THIN_RULE = "-" * 80


def safe_feature_name(name: str) -> str:
    """``"Claude Code"`` → ``"claude-code"``"""
    lowered = name.lower().replace(" ", "-")
    return "".join(ch for ch in lowered if ch.isalnum() or ch == "-")


def _clock() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _stamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class FeatureLog:
    """Log files and counters for one feature installation."""

    def __init__(
        self,
        log_dir: Path,
        feature: str,
        version: str = "",
        events: JsonEventLog | None = None,
    ):
        self.feature = feature
        self.version = version
        self.safe_name = safe_feature_name(feature)
        self.log_dir = log_dir
        self.install_log = log_dir / f"{self.safe_name}-install.log"
        self.error_log = log_dir / f"{self.safe_name}-errors.log"
        self.summary_log = log_dir / f"{self.safe_name}-summary.log"
        self.events = events

        self.command_count = 0
        self.error_count = 0
        self.warning_count = 0
        self._started: float | None = None
        self._duration: int | None = None
        self._feature_summary = ""

    # ── Internals ───────────────────────────────────────────────

    def _append(self, path: Path, text: str) -> None:
        with path.open("a", encoding="utf-8") as f:
            f.write(scrub_secrets(text))

    def _event(self, event_type: str, message: str, level: str = "INFO", **metadata) -> None:
        if self.events is not None:
            self.events.event(self.safe_name, self.feature, event_type, message, level, **metadata)

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self) -> FeatureLog:
        """Initialise the log files for this feature."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._started = time.monotonic()

        header = [_RULE, f"Feature Installation Log: {self.feature}"]
        if self.version:
            header.append(f"Version: {self.version}")
        header += [f"Start Time: {_stamp()}", _RULE, ""]
        self.install_log.write_text("\n".join(header) + "\n", encoding="utf-8")
        self.error_log.write_text("", encoding="utf-8")

        suffix = f" version {self.version}" if self.version else ""
        logger.info("=== Installing %s%s ===", self.feature, suffix)
        self._event(
            "feature_start",
            f"Starting installation of {self.feature}{suffix}",
            version=self.version or "unknown",
        )
        return self

    @property
    def duration_seconds(self) -> int:
        if self._duration is not None:
            return self._duration
        if self._started is None:
            return 0
        return int(time.monotonic() - self._started)

    def end(self) -> str:
        """Write the summary file and the master summary line.

        Returns:
            The master summary line.
        """
        self._duration = self.duration_seconds

        body = [
            _RULE,
            f"Installation Summary: {self.feature}",
            _RULE,
            "",
            f"Total Duration: {self._duration} seconds",
            f"Commands Executed: {self.command_count}",
            f"Errors Found: {self.error_count}",
            f"Warnings Found: {self.warning_count}",
            "",
        ]
        problems = []
        if self.error_log.is_file():
            problems = self.error_log.read_text(encoding="utf-8").splitlines()
        if problems:
            body.append("--- First 10 Errors/Warnings ---")
            body.extend(problems[:10])
            body.append("")
            body.append(f"Full error log: {self.error_log}")
        else:
            body.append("No errors or warnings detected!")
        body += ["", f"End Time: {_stamp()}", _RULE]
        summary = "\n".join(body) + "\n"

        summary_file = f"{self._feature_summary}\n{summary}" if self._feature_summary else summary
        self.summary_log.write_text(scrub_secrets(summary_file), encoding="utf-8")
        self._append(self.install_log, "\n" + summary)

        line = (
            f"{self.feature}: {self.error_count} errors, "
            f"{self.warning_count} warnings ({self._duration}s)"
        )
        self._append(self.log_dir / MASTER_SUMMARY, line + "\n")

        logger.info("=== %s installation complete ===", self.feature)
        logger.info("Errors: %d, Warnings: %d", self.error_count, self.warning_count)
        self._event(
            "feature_end",
            f"Completed installation of {self.feature}",
            level="ERROR" if self.error_count else "INFO",
            duration_seconds=self._duration,
            commands=self.command_count,
            errors=self.error_count,
            warnings=self.warning_count,
        )
        return line

    # ── Messages ────────────────────────────────────────────────

    def message(self, text: str) -> None:
        logger.info("%s", text)
        self._append(self.install_log, f"[{_clock()}] {text}\n")

    def warning(self, text: str) -> None:
        self.warning_count += 1
        logger.warning("%s", text)
        self._append(self.install_log, f"[{_clock()}] WARNING: {text}\n")
        self._append(self.error_log, f"[{_clock()}] WARNING: {text}\n")
        self._event("warning", text, level="WARNING", warning_count=self.warning_count)

    def error(self, text: str) -> None:
        self.error_count += 1
        logger.error("%s", text)
        self._append(self.install_log, f"[{_clock()}] ERROR: {text}\n")
        self._append(self.error_log, f"[{_clock()}] ERROR: {text}\n")
        self._event("error", text, level="ERROR", error_count=self.error_count)

    # ── Commands ────────────────────────────────────────────────

    def record_command(
        self,
        description: str,
        cmd: list[str],
        output: str,
        returncode: int,
        duration: float,
    ) -> None:
        """Append a command's output and count problem lines in it."""
        self.command_count += 1
        block = [
            "",
            f"[{_clock()}] COMMAND #{self.command_count}: {description}",
            f"Executing: {' '.join(cmd)}",
            _THIN_RULE,
        ]
        if output:
            block.append(output.rstrip("\n"))
        block.append(_THIN_RULE)
        block.append(f"Exit code: {returncode}, Duration: {duration:.1f}s")
        self._append(self.install_log, "\n".join(block) + "\n")

        problem_lines = []
        for line in output.splitlines():
            if _ERROR_RE.search(line):
                self.error_count += 1
                problem_lines.append(line)
            if _WARNING_RE.search(line):
                self.warning_count += 1
                problem_lines.append(line)
        if returncode != 0:
            self.error_count += 1
            problem_lines.append(f"ERROR: '{description}' failed with exit code {returncode}")
        if problem_lines:
            self._append(self.error_log, "\n".join(problem_lines) + "\n")

        self._event(
            "command",
            description,
            level="ERROR" if returncode else "INFO",
            command_num=self.command_count,
            exit_code=returncode,
            duration_seconds=round(duration, 3),
            success=returncode == 0,
        )

    # ── Summary ─────────────────────────────────────────────────

    def write_feature_summary(self, summary: FeatureSummary, env_values: dict[str, str] | None = None) -> str:
        """Append the human-facing feature summary to the install log.

        It is also kept for the summary file that ``end()`` writes.
        """
        text = summary.render(env_values)
        self._feature_summary = text
        self._append(self.install_log, "\n" + text)
        for line in text.splitlines():
            logger.info("%s", line)
        return text


def read_master_summary(log_dir: Path) -> list[str]:
    path = log_dir / MASTER_SUMMARY
    if not path.is_file():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
