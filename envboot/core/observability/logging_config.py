"""
Logging configuration — process logs for the CLI and the web server.

Every module does ``logger = logging.getLogger(__name__)``; this module
decides where those records go.  Level precedence:

    --debug / --verbose / --quiet  >  ENVBOOT_LOG_LEVEL  >  WARNING

An optional log file (ENVBOOT_LOG_FILE, level ENVBOOT_LOG_FILE_LEVEL)
always gets the full diagnostic format.

These are not the bootstrap's user-facing log lines.  Those live in
``BootstrapState.logs`` and reach users through event sinks.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LEVEL = "ENVBOOT_LOG_LEVEL"
ENV_FILE = "ENVBOOT_LOG_FILE"
ENV_FILE_LEVEL = "ENVBOOT_LOG_FILE_LEVEL"

# ── Formats ─────────────────────────────────────────────────────────

# (format, datefmt) per console level; the first threshold >= level wins
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
)
_FMT_CONSOLE_DEFAULT = "%(levelname)s: %(message)s"

_FMT_FILE = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Flask's dev server logs every request (SSE heartbeats included)
_NOISY_LOGGERS = ("werkzeug",)


def level_from_flags(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name for the global CLI flags (env var as fallback)."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(ENV_LEVEL, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install console (and optional file) handlers on the root logger.

    Args:
        level: Console level name.
        log_file: Path of an extra log file, if any.
        log_file_level: Level for the file (defaults to ``level``).
        quiet_third_party: Hold werkzeug at WARNING unless at DEBUG.
    """
    console_level = _parse_level(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def setup_logging_from_env(level: str) -> None:
    """``setup_logging`` with the file settings taken from the environment."""
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
        quiet_third_party=_parse_level(level) > logging.DEBUG,
    )


def _console_formatter(level: int) -> logging.Formatter:
    for threshold, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter(_FMT_CONSOLE_DEFAULT)


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown names mean WARNING."""
    numeric = getattr(logging, level.upper(), None) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
