"""
Streaming subprocess runner — the single place installers are spawned.

Runs a bundled installer script with the current Python interpreter,
forwarding stdout and stderr to callbacks as they arrive while also
collecting the full text of both streams.  One reader thread per pipe
keeps a chatty stderr from blocking stdout (and vice versa).
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import IO

from envboot.adapters.base import ChunkCallback, ProcessResult, StreamingProcessRunner

logger = logging.getLogger(__name__)


class SpawnError(Exception):
    """The installer process could not be started."""


class SubprocessRunner(StreamingProcessRunner):
    """Run scripts as ``<interpreter> <script>`` and stream their output.

    Args:
        interpreter: Executable used to run scripts (default: this Python).
        env_overrides: Extra environment variables for the child.
        cwd: Working directory for the child.
    """

    def __init__(
        self,
        interpreter: str | None = None,
        env_overrides: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        self.interpreter = interpreter or sys.executable
        self._env_overrides = env_overrides or {}
        self._cwd = cwd

    def command(self, script: Path) -> list[str]:
        return [self.interpreter, str(script)]

    def run(
        self,
        script: Path,
        *,
        on_stdout_chunk: ChunkCallback | None = None,
        on_stderr_chunk: ChunkCallback | None = None,
    ) -> ProcessResult:
        script = Path(script)
        if not script.is_file():
            raise SpawnError(f"Installer script not found: {script}")

        env = os.environ.copy()
        env["PYTHONUNBUFFERED"] = "1"
        for key, value in self._env_overrides.items():
            env[key] = os.path.expandvars(value)

        cmd = self.command(script)
        logger.debug("Spawning: %s", cmd)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                cwd=self._cwd,
            )
        except OSError as e:
            raise SpawnError(str(e)) from e

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        readers = [
            threading.Thread(
                target=_pump, args=(proc.stdout, stdout_parts, on_stdout_chunk),
                name="envboot-stdout", daemon=True,
            ),
            threading.Thread(
                target=_pump, args=(proc.stderr, stderr_parts, on_stderr_chunk),
                name="envboot-stderr", daemon=True,
            ),
        ]
        for t in readers:
            t.start()
        for t in readers:
            t.join()
        exit_code = proc.wait()

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info("%s exited with %d (%dms)", script.name, exit_code, elapsed_ms)
        return ProcessResult(
            exit_code=exit_code,
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
        )


def _pump(stream: IO[str] | None, sink: list[str], callback: ChunkCallback | None) -> None:
    """Copy ``stream`` into ``sink`` line by line, forwarding each chunk."""
    if stream is None:
        return
    with stream:
        for chunk in iter(stream.readline, ""):
            sink.append(chunk)
            if callback is None:
                continue
            try:
                callback(chunk)
            except Exception:
                # Keep draining the pipe or the child blocks on a full buffer
                logger.exception("Output callback failed")
