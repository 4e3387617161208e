"""
Host adapters — probing PATH and running installer scripts.

    from envboot.adapters import WhichProbe, SubprocessRunner
"""

from envboot.adapters.base import (
    BinaryProbe,
    ChunkCallback,
    ProcessResult,
    StreamingProcessRunner,
)
from envboot.adapters.probe import WhichProbe
from envboot.adapters.process import SpawnError, SubprocessRunner

__all__ = [
    "BinaryProbe",
    "ChunkCallback",
    "ProcessResult",
    "SpawnError",
    "StreamingProcessRunner",
    "SubprocessRunner",
    "WhichProbe",
]
