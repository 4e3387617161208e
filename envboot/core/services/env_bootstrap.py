"""
Environment bootstrap — make sure uv and bun exist on the host.

The service is a small state machine::

    idle → start-check → check-uv → check-bun
         → no-need-install → env-ready
         → need-install → [start-install-uv → installing-uv]
                        → [start-install-bun → installing-bun]
                        → start-check (recheck) → env-ready | failed

Lifecycle contract of ``start()``
─────────────────────────────────
1. Already ready (terminal, not failed, both tools present): return the
   cached state after sending the caller one snapshot.  No probes run.
2. A run is in flight: send the caller one snapshot, attach it to the
   run's observers, and hand back the same in-flight result.
3. Otherwise: clear the transient flags (logs are kept), move to
   ``start-check`` and launch a new run.

Exactly one run executes at a time no matter how many callers there
are.  Failures of any kind end in the ``failed`` terminal state and
settle every joined caller.  Ordinary exceptions never propagate to
``start()`` callers; ``SystemExit`` and ``KeyboardInterrupt`` are
re-raised in the launching thread after the run is settled.

Event ordering
──────────────
Every stage transition emits ``StageChanged`` immediately followed by a
``StateSnapshot`` of the new stage.  Every log append emits
``LogAppended`` followed by a ``StateSnapshot``.  Emission is serialized
by a dedicated emission lock, so concurrent attachers never see
interleaved pairs.  The state lock is only held to swap references and
never while an observer runs; ``get_state()`` takes no lock at all.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future
from typing import Callable, Iterable

from envboot.adapters.base import BinaryProbe, StreamingProcessRunner
from envboot.adapters.probe import WhichProbe
from envboot.adapters.process import SubprocessRunner
from envboot.core.models.bootstrap import (
    MAX_LOGS,
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
from envboot.core.models.config import BootstrapConfig
from envboot.core.services.event_sink import EventSink
from envboot.core.services.failure_classifier import classify_failure, is_windows
from envboot.core.services.locale import Translator

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """An installer failed; aborts the remaining steps of the run."""

    def __init__(self, tool: ToolName, message: str) -> None:
        super().__init__(message)
        self.tool = tool


# ── Per-tool wiring ─────────────────────────────────────────────────

_CHECK_STAGE: dict[ToolName, Stage] = {
    "uv": Stage.CHECK_UV,
    "bun": Stage.CHECK_BUN,
}

_INSTALL_STAGES: dict[ToolName, tuple[Stage, Stage]] = {
    "uv": (Stage.START_INSTALL_UV, Stage.INSTALLING_UV),
    "bun": (Stage.START_INSTALL_BUN, Stage.INSTALLING_BUN),
}

_MESSAGES: dict[ToolName, dict[str, str]] = {
    "uv": {
        "checking": "messages.checkingUv",
        "installed": "messages.uvInstalled",
        "not_installed": "messages.uvNotInstalled",
        "start_install": "messages.startInstallUv",
        "install_failed": "messages.uvInstallFailed",
        "install_completed": "messages.uvInstallScriptCompleted",
        "install_exception": "messages.uvInstallException",
    },
    "bun": {
        "checking": "messages.checkingBun",
        "installed": "messages.bunInstalled",
        "not_installed": "messages.bunNotInstalled",
        "start_install": "messages.startInstallBun",
        "install_failed": "messages.bunInstallFailed",
        "install_completed": "messages.bunInstallScriptCompleted",
        "install_exception": "messages.bunInstallException",
    },
}


# ── Log ring buffer ─────────────────────────────────────────────────


class LogBuffer:
    """Bounded FIFO of log entries; the oldest entry is evicted first."""

    def __init__(self, maxlen: int = MAX_LOGS, entries: Iterable[LogEntry] = ()) -> None:
        self._entries: deque[LogEntry] = deque(entries, maxlen=maxlen)

    @property
    def maxlen(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: LogEntry) -> tuple[LogEntry, ...]:
        """Append ``entry`` and return the new immutable snapshot."""
        self._entries.append(entry)
        return self.snapshot()

    def snapshot(self) -> tuple[LogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class _LineSplitter:
    """Reassembles arbitrarily split output chunks into trimmed, non-blank lines."""

    def __init__(self, on_line: Callable[[str], None]) -> None:
        self._on_line = on_line
        self._pending = ""

    def feed(self, chunk: str) -> None:
        *lines, self._pending = (self._pending + chunk).split("\n")
        for line in lines:
            self._emit(line)

    def flush(self) -> None:
        pending, self._pending = self._pending, ""
        self._emit(pending)

    def _emit(self, line: str) -> None:
        msg = line.strip()
        if msg:
            self._on_line(msg)


# ── Service ─────────────────────────────────────────────────────────


class EnvBootstrapService:
    """Detects, installs and re-verifies uv and bun.

    Construct one instance at startup and share it with every surface
    (CLI, web) that may trigger a bootstrap.

    Args:
        config: Bootstrap configuration (defaults if None).
        probe: PATH probe (default: ``WhichProbe``).
        runner: Installer runner (default: ``SubprocessRunner``).
        translator: Message lookup (default: ``Translator(config.locale)``).
    """

    def __init__(
        self,
        config: BootstrapConfig | None = None,
        *,
        probe: BinaryProbe | None = None,
        runner: StreamingProcessRunner | None = None,
        translator: Callable[..., str] | None = None,
    ) -> None:
        self.config = config or BootstrapConfig()
        self._probe = probe or WhichProbe(extra_dirs=self.config.probe_dirs)
        self._runner = runner or SubprocessRunner()
        self._t = translator or Translator(self.config.locale)

        # Lock order: _emit_lock, then _lock.  _lock is never held while
        # an observer runs.
        self._emit_lock = threading.RLock()
        self._lock = threading.Lock()
        self._logs = LogBuffer(self.config.max_logs)
        self._state = BootstrapState()
        self._running: Future[BootstrapState] | None = None
        self._observers: list[EventSink] = []

    # ── Public API ──────────────────────────────────────────────────

    def get_state(self) -> BootstrapState:
        """Last known snapshot.  Never triggers a run and never blocks."""
        # States are frozen; reading the reference needs no lock.
        return self._state

    @property
    def running(self) -> bool:
        return self._running is not None

    @property
    def translator(self) -> Callable[..., str]:
        """Message lookup used for every human-readable string."""
        return self._t

    def start(self, sink: EventSink) -> BootstrapState:
        """Run (or join) the bootstrap and block until it settles.

        Never raises for bootstrap failures; inspect ``state.failed``.
        """
        future, launch = self._begin(sink)
        if launch:
            self._execute(future)
        return future.result()

    def start_background(self, sink: EventSink) -> Future[BootstrapState]:
        """Same contract as ``start()``, but the run executes on a daemon thread."""
        future, launch = self._begin(sink)
        if launch:
            threading.Thread(
                target=self._execute, args=(future,),
                name="envboot-run", daemon=True,
            ).start()
        return future

    def install_tool(self, tool: ToolName) -> None:
        """Run ``tool``'s installer, streaming its output into the log.

        Raises:
            InstallError: The installer exited non-zero (state is already failed).
            Exception: Whatever the runner raised when the spawn failed.
        """
        start_stage, installing_stage = _INSTALL_STAGES[tool]
        self._set_stage(start_stage)
        self._warn(self._t(_MESSAGES[tool]["start_install"]), tool)

        script = self.config.installer_path(tool)
        command = " ".join(self._runner.command(script))

        self._set_stage(installing_stage)

        stdout_lines = _LineSplitter(lambda line: self._info(line, tool))
        stderr_lines = _LineSplitter(lambda line: self._warn(line, tool))

        try:
            result = self._runner.run(
                script,
                on_stdout_chunk=stdout_lines.feed,
                on_stderr_chunk=stderr_lines.feed,
            )
            stdout_lines.flush()
            stderr_lines.flush()

            if result.exit_code != 0:
                tail_max = self.config.tail_max
                self._fail(FailureDetail(
                    message=self._t(_MESSAGES[tool]["install_failed"]),
                    command=command,
                    exit_code=result.exit_code,
                    stderr_tail=tail_text(result.stderr, tail_max) or None,
                    stdout_tail=tail_text(result.stdout, tail_max) or None,
                    suggestion=classify_failure(result.stderr, result.stdout, self._t),
                ))
                raise InstallError(tool, f"{tool} install failed (exit {result.exit_code})")

            self._info(self._t(_MESSAGES[tool]["install_completed"]), tool)
        except Exception as e:
            if not self.get_state().failed:
                self._fail(FailureDetail(
                    message=f"{self._t(_MESSAGES[tool]['install_exception'])}{e}",
                    command=command,
                    suggestion=(
                        classify_failure("", str(e), self._t)
                        or self._t(
                            "messages.checkPowerShellFirewall" if is_windows()
                            else "messages.checkNetworkProxy"
                        )
                    ),
                ))
            raise

    # ── Run lifecycle ───────────────────────────────────────────────

    def _begin(self, sink: EventSink) -> tuple[Future[BootstrapState], bool]:
        """Decide between short-circuit, join and launch.  Returns (future, launch)."""
        # Holding _emit_lock keeps the joiner's snapshot ahead of the run's
        # next event.
        with self._emit_lock:
            with self._lock:
                state = self._state
                running = self._running
                if not state.ready:
                    if running is None:
                        self._observers = [sink]
                        self._running = Future()
                    elif sink not in self._observers:
                        self._observers.append(sink)

            if state.ready:
                self._deliver(sink, StateSnapshot(state=state))
                cached: Future[BootstrapState] = Future()
                cached.set_result(state)
                return cached, False

            if running is not None:
                self._deliver(sink, StateSnapshot(state=state))
                logger.debug("Bootstrap already running, joined by %r", sink)
                return running, False

            self._replace(failed=False, done=False, error=None, installing=False)
            self._set_stage(Stage.START_CHECK)
            self._info(self._t("messages.startCheck"), "system")

            logger.info("Bootstrap run started")
            return self._running, True

    def _execute(self, future: Future[BootstrapState]) -> None:
        """Drive one run and settle ``future`` whatever happens."""
        try:
            self._run()
        except Exception as e:
            logger.warning("Bootstrap run aborted: %s", e)
            self._fail_unless_failed(str(e) or type(e).__name__)
        except BaseException as e:
            logger.warning("Bootstrap run interrupted: %r", e)
            self._fail_unless_failed(repr(e))
            raise
        finally:
            with self._lock:
                self._running = None
                self._observers = []
            state = self._state
            logger.info("Bootstrap run finished (stage=%s)", state.stage.value)
            future.set_result(state)

    def _fail_unless_failed(self, message: str) -> None:
        with self._emit_lock:
            if not self._state.failed:
                self._fail(FailureDetail(message=message))

    def _run(self) -> BootstrapState:
        # 1) detect
        for tool in TOOLS:
            self._set_stage(_CHECK_STAGE[tool])
            self._info(self._t(_MESSAGES[tool]["checking"]), tool)
            ok = self._probe_tool(tool)
            self._update(**{f"{tool}_installed": ok})
            self._info(self._t(_MESSAGES[tool]["installed" if ok else "not_installed"]), tool)

        missing = [tool for tool in TOOLS if not self.get_state().installed(tool)]
        if not missing:
            self._set_stage(Stage.NO_NEED_INSTALL)
            self._info(self._t("messages.noNeedInstall"), "system")
            self._set_stage(Stage.ENV_READY, done=True, installing=False)
            return self.get_state()

        # 2) install, strictly one after the other
        self._set_stage(Stage.NEED_INSTALL)
        self._warn(f"{self._t('messages.needInstall')}{', '.join(missing)}", "system")
        self._update(installing=True)

        for tool in missing:
            self.install_tool(tool)

        # 3) re-verify
        self._set_stage(Stage.START_CHECK)
        self._info(self._t("messages.recheckAfterInstall"), "system")
        self._update(
            uv_installed=self._probe_tool("uv"),
            bun_installed=self._probe_tool("bun"),
        )

        state = self.get_state()
        if not (state.uv_installed and state.bun_installed):
            self._fail(FailureDetail(
                message=self._t("messages.installScriptCompletedButRecheckFailed"),
                suggestion=self._t("messages.checkSecuritySoftware"),
            ))
            return self.get_state()

        self._set_stage(Stage.ENV_READY, done=True, installing=False)
        self._info(self._t("messages.initComplete"), "system")
        return self.get_state()

    def _probe_tool(self, tool: ToolName) -> bool:
        aliases = self.config.tool(tool).aliases
        found = self._probe.any_exists(aliases)
        logger.debug("Probe %s (%s) → %s", tool, ", ".join(aliases), found)
        return found

    # ── Transitions ─────────────────────────────────────────────────

    def _fail(self, detail: FailureDetail) -> None:
        """Enter the ``failed`` terminal state and log why."""
        logger.warning("Bootstrap failed: %s", detail.message)
        with self._emit_lock:
            self._replace(
                failed=True, done=True, installing=False,
                error=detail, stage=Stage.FAILED,
            )
            self._emit(StageChanged(stage=Stage.FAILED, at=self._state.updated_at))
            self._emit(StateSnapshot(state=self._state))
            self._error(f"{self._t('messages.initFailed')}{detail.message}", "system")
            if detail.suggestion:
                self._warn(f"{self._t('errors.suggestion')}{detail.suggestion}", "system")

    def _set_stage(self, stage: Stage, **changes: object) -> None:
        """Move to ``stage`` (applying ``changes`` in the same swap) and announce it."""
        with self._emit_lock:
            self._replace(stage=stage, **changes)
            self._emit(StageChanged(stage=stage, at=self._state.updated_at))
            self._emit(StateSnapshot(state=self._state))

    def _update(self, **changes: object) -> None:
        """Replace the state and publish a snapshot."""
        with self._emit_lock:
            self._replace(**changes)
            self._emit(StateSnapshot(state=self._state))

    def _replace(self, **changes: object) -> None:
        with self._lock:
            self._state = self._state.evolve(**changes)

    # ── Logging into the state ──────────────────────────────────────

    def _push_log(self, level: LogLevel, message: str, source: LogSource | None) -> None:
        with self._emit_lock:
            entry = LogEntry(level=level, message=message, source=source)
            self._replace(logs=self._logs.append(entry))
            self._emit(LogAppended(log=entry))
            self._emit(StateSnapshot(state=self._state))

    def _info(self, message: str, source: LogSource | None = None) -> None:
        self._push_log("info", message, source)

    def _warn(self, message: str, source: LogSource | None = None) -> None:
        self._push_log("warn", message, source)

    def _error(self, message: str, source: LogSource | None = None) -> None:
        self._push_log("error", message, source)

    # ── Delivery ────────────────────────────────────────────────────

    def _emit(self, event: BootstrapEvent) -> None:
        with self._lock:
            observers = list(self._observers)
        for sink in observers:
            self._deliver(sink, event)

    def _deliver(self, sink: EventSink, event: BootstrapEvent) -> None:
        try:
            sink.emit(event)
        except Exception:
            logger.warning("Failed to deliver %s event to %r", event.type, sink, exc_info=True)
