"""
Bootstrap models — the state machine's observable record.

``BootstrapState`` is the single document describing where the
environment bootstrap stands: which stage it is in, which tools are
present, whether it finished or failed, and the bounded log of what
happened along the way.

All models here are frozen.  The service never edits a state in place;
every mutation builds a new instance and swaps the reference, so any
snapshot handed to an observer stays consistent forever.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# Upper bound for captured stderr/stdout tails in a FailureDetail
TAIL_MAX = 4000

# Upper bound for the log ring buffer
MAX_LOGS = 500


class Stage(str, Enum):
    """Named points of the bootstrap state machine."""

    IDLE = "idle"
    START_CHECK = "start-check"
    CHECK_UV = "check-uv"
    CHECK_BUN = "check-bun"
    NEED_INSTALL = "need-install"
    NO_NEED_INSTALL = "no-need-install"
    START_INSTALL_UV = "start-install-uv"
    INSTALLING_UV = "installing-uv"
    START_INSTALL_BUN = "start-install-bun"
    INSTALLING_BUN = "installing-bun"
    ENV_READY = "env-ready"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (Stage.ENV_READY, Stage.FAILED)


LogLevel = Literal["info", "warn", "error"]
LogSource = Literal["uv", "bun", "system"]
ToolName = Literal["uv", "bun"]

# Fixed probe/install order
TOOLS: tuple[ToolName, ...] = ("uv", "bun")


def tail_text(text: str | None, max_chars: int = TAIL_MAX) -> str:
    """Return the last ``max_chars`` characters of ``text``."""
    if not text:
        return ""
    return text[-max_chars:] if len(text) > max_chars else text


class LogEntry(BaseModel):
    """One line in the bootstrap log."""

    model_config = ConfigDict(frozen=True)

    ts: float = Field(default_factory=time.time)
    level: LogLevel
    message: str
    source: LogSource | None = None


class FailureDetail(BaseModel):
    """Everything needed to self-diagnose a failed bootstrap."""

    model_config = ConfigDict(frozen=True)

    message: str
    command: str | None = None
    exit_code: int | None = None
    stderr_tail: str | None = None
    stdout_tail: str | None = None
    suggestion: str | None = None


class BootstrapState(BaseModel):
    """Root state of the bootstrap — replaced wholesale on each mutation.

    Invariants:
        - ``done`` implies exactly one of ``failed`` or "both tools installed"
        - ``installing`` implies not ``done``
        - ``error`` is set iff ``failed``
        - ``logs`` never exceeds the configured bound and keeps insertion order
    """

    model_config = ConfigDict(frozen=True)

    stage: Stage = Stage.IDLE
    uv_installed: bool = False
    bun_installed: bool = False
    installing: bool = False
    done: bool = False
    failed: bool = False
    error: FailureDetail | None = None
    logs: tuple[LogEntry, ...] = ()
    updated_at: float = Field(default_factory=time.time)

    @property
    def ready(self) -> bool:
        """Terminal, not failed, and both tools present."""
        return self.done and not self.failed and self.uv_installed and self.bun_installed

    def installed(self, tool: ToolName) -> bool:
        return self.uv_installed if tool == "uv" else self.bun_installed

    def evolve(self, **changes: object) -> BootstrapState:
        """Return a copy with ``changes`` applied and ``updated_at`` bumped."""
        changes.setdefault("updated_at", time.time())
        return self.model_copy(update=changes)


# ── Events ──────────────────────────────────────────────────────────


class StateSnapshot(BaseModel):
    """The full state after a mutation."""

    model_config = ConfigDict(frozen=True)

    type: Literal["state"] = "state"
    state: BootstrapState


class LogAppended(BaseModel):
    """A single log entry was appended."""

    model_config = ConfigDict(frozen=True)

    type: Literal["log"] = "log"
    log: LogEntry


class StageChanged(BaseModel):
    """The state machine moved to ``stage`` at ``at``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stage"] = "stage"
    stage: Stage
    at: float


BootstrapEvent = Annotated[
    Union[StateSnapshot, LogAppended, StageChanged],
    Field(discriminator="type"),
]
