"""
Install bun using the official installer.

Runs as a standalone script (``python install_bun.py``).  The Unix
installer needs ``unzip``; a missing one is reported up front so the
failure is readable in the bootstrap log.
"""

from __future__ import annotations

import shutil
import subprocess
import sys

UNIX_INSTALLER = "https://bun.sh/install"
WINDOWS_INSTALLER = "https://bun.sh/install.ps1"


def build_command() -> list[str]:
    if sys.platform.startswith("win"):
        return [
            "powershell", "-NoProfile", "-ExecutionPolicy", "ByPass",
            "-Command", f"irm {WINDOWS_INSTALLER} | iex",
        ]
    if not shutil.which("unzip"):
        raise RuntimeError("unzip is required to install bun")
    if shutil.which("curl"):
        return ["bash", "-c", f"curl -fsSL {UNIX_INSTALLER} | bash"]
    raise RuntimeError("curl is required to download the bun installer")


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
