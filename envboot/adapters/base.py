"""
Adapter base — the contracts between the bootstrap service and the host.

The service never calls ``shutil`` or ``subprocess`` directly.  It talks
to a ``BinaryProbe`` (is this command on PATH?) and a
``StreamingProcessRunner`` (run this installer, streaming its output),
so tests can swap both for in-memory fakes.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

ChunkCallback = Callable[[str], None]


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a finished child process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class BinaryProbe(ABC):
    """Reports whether a command name resolves on the host."""

    @abstractmethod
    def exists(self, name: str) -> bool:
        """True if ``name`` is resolvable.

        MUST never raise: any failure to probe means "not installed".
        """

    def any_exists(self, names: list[str]) -> bool:
        """True if at least one of ``names`` resolves (checked in order)."""
        return any(self.exists(name) for name in names)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class StreamingProcessRunner(ABC):
    """Runs an installer script to completion, streaming its output."""

    @abstractmethod
    def run(
        self,
        script: Path,
        *,
        on_stdout_chunk: ChunkCallback | None = None,
        on_stderr_chunk: ChunkCallback | None = None,
    ) -> ProcessResult:
        """Run ``script`` and return its exit code and full output.

        Chunk callbacks may fire any number of times with arbitrarily
        split text (not necessarily whole lines).

        Raises:
            SpawnError: If the process could not be started at all.
        """

    def command(self, script: Path) -> list[str]:
        """The argument vector ``run`` spawns for ``script``; reported on failure."""
        return [sys.executable, str(script)]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
