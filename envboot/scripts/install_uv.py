"""
Install uv using the official installer.

Runs as a standalone script (``python install_uv.py``).  Output goes
straight to stdout/stderr so the caller can stream it; the exit code is
the installer's.
"""

from __future__ import annotations

import shutil
import subprocess
import sys

UNIX_INSTALLER = "https://astral.sh/uv/install.sh"
WINDOWS_INSTALLER = "https://astral.sh/uv/install.ps1"


def build_command() -> list[str]:
    if sys.platform.startswith("win"):
        return [
            "powershell", "-NoProfile", "-ExecutionPolicy", "ByPass",
            "-Command", f"irm {WINDOWS_INSTALLER} | iex",
        ]
    if shutil.which("curl"):
        return ["sh", "-c", f"curl -LsSf {UNIX_INSTALLER} | sh"]
    if shutil.which("wget"):
        return ["sh", "-c", f"wget -qO- {UNIX_INSTALLER} | sh"]
    raise RuntimeError("Neither curl nor wget is available to download the uv installer")


def main() -> int:
    try:
        cmd = build_command()
    except RuntimeError as e:
        print(str(e), file=sys.stderr)
        return 1

    print(f"Running: {' '.join(cmd)}", flush=True)
    try:
        return subprocess.run(cmd, check=False).returncode
    except OSError as e:
        print(f"Failed to start installer: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
