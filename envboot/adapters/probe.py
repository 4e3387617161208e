"""
PATH probe — ``shutil.which`` behind the BinaryProbe contract.

Installers usually drop binaries into per-user directories
(``~/.local/bin`` for uv, ``~/.bun/bin`` for bun) that a freshly
started process may not have on PATH yet, so those are searched too.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from envboot.adapters.base import BinaryProbe

logger = logging.getLogger(__name__)


class WhichProbe(BinaryProbe):
    """Resolve commands with ``shutil.which``.

    Args:
        path: PATH to search (default: the process PATH at probe time).
        extra_dirs: Directories searched after ``path``; ``~`` is expanded.
    """

    def __init__(self, path: str | None = None, extra_dirs: list[str] | None = None) -> None:
        self._path = path
        self._extra_dirs = [str(Path(d).expanduser()) for d in (extra_dirs or [])]

    def search_path(self) -> str:
        base = self._path if self._path is not None else os.environ.get("PATH", "")
        return os.pathsep.join([p for p in [base, *self._extra_dirs] if p])

    def exists(self, name: str) -> bool:
        try:
            found = shutil.which(name, path=self.search_path())
        except (OSError, ValueError) as e:
            logger.debug("Probe for %s failed: %s", name, e)
            return False
        logger.debug("Probe %s → %s", name, found or "not found")
        return found is not None
