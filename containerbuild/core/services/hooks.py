"""
Generated scripts: first-startup hooks, startup hooks and ``test-<tool>``.

    /etc/container/first-startup/NN-<name>-setup.sh   once per container
    /etc/container/startup/NN-<name>.sh               every start
    /usr/local/bin/test-<tool>                        manual verification

All are written atomically with mode 0755. Rewriting a script with the
same content is harmless, so features can be re-run.
"""

from __future__ import annotations

import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path

from containerbuild.core.config.paths import SystemPaths

logger = logging.getLogger(__name__)

SHEBANG = "#!/bin/bash"


def write_script(path: Path, text: str) -> Path:
    """Write an executable script atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if not text.startswith("#!"):
        text = f"{SHEBANG}\n{text}"
    if not text.endswith("\n"):
        text += "\n"
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        tmp.chmod(0o755)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
    return path


def _hook_text(description: str, body: str) -> str:
    return f"{SHEBANG}\n# {description}\n\n{body.strip()}\n"


def write_first_startup_hook(
    paths: SystemPaths,
    order: int,
    name: str,
    body: str,
    description: str = "",
    suffix: str = "-setup",
) -> Path:
    """``/etc/container/first-startup/NN-<name>-setup.sh``"""
    path = paths.first_startup_script(order, f"{name}{suffix}")
    write_script(path, _hook_text(description or f"{name} first-startup setup", body))
    logger.info("Created first-startup hook %s", path.name)
    return path


def write_startup_hook(paths: SystemPaths, order: int, name: str, body: str, description: str = "") -> Path:
    """``/etc/container/startup/NN-<name>.sh``"""
    path = paths.startup_script(order, name)
    write_script(path, _hook_text(description or f"{name} startup", body))
    logger.info("Created startup hook %s", path.name)
    return path


# ── test-<tool> ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ToolCheck:
    """One line of a ``test-<tool>`` script.

    ``command`` must be on PATH; ``args`` are what prints its version.
    """

    command: str
    args: str = "--version"
    label: str = ""


def render_test_script(title: str, checks: list[ToolCheck], extra: str = "") -> str:
    """A script printing ✓/✗ per check; exits 1 if any tool is missing."""
    lines = [
        SHEBANG,
        f'echo "=== {title} Installation Status ==="',
        "status=0",
    ]
    for check in checks:
        cmd = shlex.quote(check.command)
        label = check.label or check.command
        lines += [
            f"if command -v {cmd} &> /dev/null; then",
            f'    echo "✓ {label}: $({cmd} {check.args} 2>&1 | head -n 1)"',
            "else",
            f'    echo "✗ {label} is not installed"',
            "    status=1",
            "fi",
        ]
    if extra.strip():
        lines.append(extra.strip())
    lines.append('exit "$status"')
    return "\n".join(lines) + "\n"


def write_test_script(
    paths: SystemPaths,
    tool: str,
    checks: list[ToolCheck],
    title: str = "",
    extra: str = "",
) -> Path:
    """``/usr/local/bin/test-<tool>``"""
    path = paths.test_script(tool)
    write_script(path, render_test_script(title or tool, checks, extra))
    logger.info("Created %s", path.name)
    return path
