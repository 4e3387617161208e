"""
Domain models — Pydantic types for the environment bootstrap.

All models are re-exported here for convenient access:

    from envboot.core.models import BootstrapState, Stage, LogEntry, BootstrapConfig
"""

from envboot.core.models.bootstrap import (
    MAX_LOGS,
    TAIL_MAX,
    TOOLS,
    BootstrapEvent,
    BootstrapState,
    FailureDetail,
    LogAppended,
    LogEntry,
    LogLevel,
    LogSource,
    Stage,
    StageChanged,
    StateSnapshot,
    ToolName,
    tail_text,
)
from envboot.core.models.config import BootstrapConfig, ToolConfig, ToolsConfig

__all__ = [
    # bootstrap.py
    "MAX_LOGS",
    "TAIL_MAX",
    "TOOLS",
    "BootstrapEvent",
    "BootstrapState",
    "FailureDetail",
    "LogAppended",
    "LogEntry",
    "LogLevel",
    "LogSource",
    "Stage",
    "StageChanged",
    "StateSnapshot",
    "ToolName",
    "tail_text",
    # config.py
    "BootstrapConfig",
    "ToolConfig",
    "ToolsConfig",
]
