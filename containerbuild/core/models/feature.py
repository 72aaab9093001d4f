"""
Feature summary and result models.

A summary is what the installer prints at the end of a feature and
writes to ``<feature>-summary.log``. A result is what the engine keeps.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class FeatureSummary(BaseModel):
    """Human-facing summary of an installed feature."""

    feature: str
    version: str = ""
    tools: list[str] = Field(default_factory=list)
    paths: list[str] = Field(default_factory=list)
    env_vars: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    next_steps: str = ""

    def render(self, env_values: dict[str, str] | None = None) -> str:
        """Render as the boxed text block used in build logs."""
        env_values = env_values or {}
        bar = "=" * 64
        lines = [bar, f"{self.feature} Installation Summary", bar]
        if self.version:
            lines.append(f"Version: {self.version}")
        if self.tools:
            lines.append("")
            lines.append("Tools installed:")
            lines.extend(f"  - {t}" for t in self.tools)
        if self.paths:
            lines.append("")
            lines.append("Paths:")
            lines.extend(f"  - {p}" for p in self.paths)
        if self.env_vars:
            lines.append("")
            lines.append("Environment variables:")
            for var in self.env_vars:
                value = env_values.get(var)
                lines.append(f"  - {var}={value}" if value is not None else f"  - {var}")
        if self.commands:
            lines.append("")
            lines.append("Commands:")
            lines.append("  " + ", ".join(self.commands))
        if self.next_steps:
            lines.append("")
            lines.append(f"Next steps: {self.next_steps}")
        lines.append(bar)
        return "\n".join(lines) + "\n"


class FeatureResult(BaseModel):
    """Engine-side outcome of one feature run."""

    name: str
    status: Literal["ok", "skipped", "failed"] = "ok"
    version: str = ""
    duration_ms: int = 0
    errors: int = 0
    warnings: int = 0
    verification_tier: str | None = None
    error: str | None = None
    summary: FeatureSummary | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"
