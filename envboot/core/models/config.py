"""
Bootstrap configuration model — loaded from envboot.yml.

Every field has a default, so an empty (or absent) config file yields a
working setup that installs uv and bun with the bundled scripts.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from envboot.core.models.bootstrap import MAX_LOGS, TAIL_MAX, ToolName

# Bundled installer scripts ship inside the package
BUNDLED_SCRIPTS_DIR = Path(__file__).resolve().parent.parent.parent / "scripts"


class ToolConfig(BaseModel):
    """How to detect and install one tool."""

    aliases: list[str] = Field(min_length=1)   # any one resolving = installed
    installer: str                             # script name or absolute path


def _default_tools() -> dict[str, ToolConfig]:
    return {
        "uv": ToolConfig(aliases=["uvx", "uv"], installer="install_uv.py"),
        "bun": ToolConfig(aliases=["bun"], installer="install_bun.py"),
    }


class ToolsConfig(BaseModel):
    """The two managed tools."""

    uv: ToolConfig = Field(default_factory=lambda: _default_tools()["uv"])
    bun: ToolConfig = Field(default_factory=lambda: _default_tools()["bun"])


class BootstrapConfig(BaseModel):
    """Root configuration model."""

    locale: str | None = None
    max_logs: int = Field(default=MAX_LOGS, ge=1)
    tail_max: int = Field(default=TAIL_MAX, ge=1)
    scripts_dir: str | None = None   # None → bundled scripts
    # Searched in addition to PATH when probing
    probe_dirs: list[str] = Field(
        default_factory=lambda: ["~/.local/bin", "~/.cargo/bin", "~/.bun/bin"],
    )
    tools: ToolsConfig = Field(default_factory=ToolsConfig)

    def tool(self, name: ToolName) -> ToolConfig:
        return getattr(self.tools, name)

    def installer_path(self, name: ToolName) -> Path:
        """Resolve the installer script for ``name``.

        Absolute installer paths are used as-is; relative ones are
        looked up in ``scripts_dir`` (or the bundled scripts).
        """
        script = Path(self.tool(name).installer)
        if script.is_absolute():
            return script
        base = Path(self.scripts_dir) if self.scripts_dir else BUNDLED_SCRIPTS_DIR
        return base / script
