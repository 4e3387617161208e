"""
Tests for EnvBootstrapService — detection, installation, single-flight,
event ordering and failure reporting.

All probes and installers are in-memory fakes; nothing here touches PATH
or spawns a process.
"""

from __future__ import annotations

import logging
import threading
import time

import pytest

from envboot.adapters.base import ProcessResult
from envboot.adapters.process import SpawnError, SubprocessRunner
from envboot.core.models.bootstrap import (
    LogAppended,
    LogEntry,
    Stage,
    StageChanged,
    StateSnapshot,
)
from envboot.core.services import env_bootstrap
from envboot.core.services.env_bootstrap import InstallError, LogBuffer, _LineSplitter
from envboot.core.services.event_sink import CallbackSink, EventSink

from tests.fakes import BUN_SCRIPT, UV_SCRIPT, FakeProbe, FakeRunner, RecordingSink


def _snapshots(sink: RecordingSink) -> list:
    return [e.state for e in sink.of_type("state")]


def _messages(state, level: str | None = None) -> list[str]:
    return [e.message for e in state.logs if level is None or e.level == level]


# ═══════════════════════════════════════════════════════════════════
#  Fast path — everything already installed
# ═══════════════════════════════════════════════════════════════════


class TestAlreadyInstalled:
    def test_reaches_env_ready_without_installing(self, make_service):
        probe = FakeProbe({"uvx", "bun"})
        runner = FakeRunner(probe)
        service = make_service(probe, runner)
        sink = RecordingSink()

        state = service.start(sink)

        assert state.stage == Stage.ENV_READY
        assert state.done and not state.failed
        assert state.uv_installed and state.bun_installed
        assert state.error is None
        assert runner.calls == []
        assert sink.stages() == [
            "start-check", "check-uv", "check-bun", "no-need-install", "env-ready",
        ]

    def test_uv_found_through_second_alias(self, make_service):
        probe = FakeProbe({"uv", "bun"})
        service = make_service(probe)

        state = service.start(RecordingSink())

        assert state.uv_installed
        assert probe.calls == ["uvx", "uv", "bun"]

    def test_second_start_is_a_cached_snapshot(self, make_service):
        probe = FakeProbe({"uvx", "bun"})
        runner = FakeRunner(probe)
        service = make_service(probe, runner)

        first = service.start(RecordingSink())
        probes_after_first = list(probe.calls)

        sink = RecordingSink()
        second = service.start(sink)

        assert second is first
        assert probe.calls == probes_after_first
        assert runner.calls == []
        assert len(sink.events) == 1
        assert isinstance(sink.events[0], StateSnapshot)
        assert sink.events[0].state is first

    def test_get_state_never_starts_a_run(self, make_service):
        probe = FakeProbe({"uvx", "bun"})
        service = make_service(probe)

        state = service.get_state()

        assert state.stage == Stage.IDLE
        assert probe.calls == []
        assert not service.running

    def test_log_sources_and_messages(self, make_service):
        service = make_service(FakeProbe({"uvx", "bun"}))

        state = service.start(RecordingSink())

        assert state.logs[0].message == "Checking the runtime environment..."
        assert state.logs[0].source == "system"
        assert ("uv", "uv is installed") in [(e.source, e.message) for e in state.logs]
        assert ("bun", "bun is installed") in [(e.source, e.message) for e in state.logs]
        assert "All tools are present, nothing to install" in _messages(state)


# ═══════════════════════════════════════════════════════════════════
#  Install path
# ═══════════════════════════════════════════════════════════════════


class TestInstall:
    def test_installs_both_sequentially_then_rechecks(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, delay=0.01)
        service = make_service(probe, runner)
        sink = RecordingSink()

        state = service.start(sink)

        assert state.stage == Stage.ENV_READY
        assert state.done and not state.failed and not state.installing
        assert runner.calls == [UV_SCRIPT, BUN_SCRIPT]
        (_, _, uv_finished), (_, bun_started, _) = runner.timeline
        assert uv_finished <= bun_started
        assert sink.stages() == [
            "start-check", "check-uv", "check-bun", "need-install",
            "start-install-uv", "installing-uv",
            "start-install-bun", "installing-bun",
            "start-check", "env-ready",
        ]
        assert _messages(state)[-1] == "Environment is ready"

    def test_only_missing_tool_is_installed(self, make_service):
        probe = FakeProbe({"uvx"})
        runner = FakeRunner(probe)
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.stage == Stage.ENV_READY
        assert runner.calls == [BUN_SCRIPT]
        assert "Missing tools, installing: bun" in _messages(state, "warn")

    def test_need_install_lists_every_missing_tool(self, make_service):
        probe = FakeProbe()
        service = make_service(probe)

        state = service.start(RecordingSink())

        assert "Missing tools, installing: uv, bun" in _messages(state, "warn")

    def test_installing_flag_set_while_installing(self, make_service):
        probe = FakeProbe()
        service = make_service(probe)
        sink = RecordingSink()

        service.start(sink)

        during = [
            s for s in _snapshots(sink)
            if s.stage in (Stage.INSTALLING_UV, Stage.INSTALLING_BUN)
        ]
        assert during
        assert all(s.installing for s in during)

    def test_installer_output_becomes_log_lines(self, make_service):
        probe = FakeProbe({"bun"})
        runner = FakeRunner(
            probe,
            stdout_chunks={UV_SCRIPT: ["downl", "oading uv\ninstal", "led to ~/.local/bin\n\n   \n", "done"]},
            stderr_chunks={UV_SCRIPT: ["  warning: PATH not updated  \r\n"]},
        )
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        uv_logs = [(e.level, e.message) for e in state.logs if e.source == "uv"]
        assert ("info", "downloading uv") in uv_logs
        assert ("info", "installed to ~/.local/bin") in uv_logs
        assert ("info", "done") in uv_logs
        assert ("warn", "warning: PATH not updated") in uv_logs
        assert all(msg.strip() for _, msg in uv_logs)

    def test_install_tool_directly(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe)
        service = make_service(probe, runner)

        service.install_tool("bun")

        assert runner.calls == [BUN_SCRIPT]
        assert "bun install script completed" in _messages(service.get_state())
        assert service.get_state().stage == Stage.INSTALLING_BUN

    def test_start_background_returns_future(self, make_service):
        probe = FakeProbe()
        service = make_service(probe)

        future = service.start_background(RecordingSink())
        state = future.result(timeout=5)

        assert state.stage == Stage.ENV_READY
        assert not service.running


# ═══════════════════════════════════════════════════════════════════
#  Failure paths
# ═══════════════════════════════════════════════════════════════════


class TestFailures:
    def test_nonzero_exit_fails_with_detail(self, make_service, config):
        stderr = "x" * 4100 + "\nconnect ECONNREFUSED 104.16.0.1:443"
        probe = FakeProbe()
        runner = FakeRunner(
            probe,
            results={UV_SCRIPT: ProcessResult(exit_code=1, stdout="fetching", stderr=stderr)},
        )
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.stage == Stage.FAILED
        assert state.failed and state.done and not state.installing
        assert state.error is not None
        assert state.error.message == "uv installation failed"
        assert state.error.exit_code == 1
        assert state.error.command == " ".join(runner.command(config.installer_path("uv")))
        assert state.error.stderr_tail == stderr[-4000:]
        assert len(state.error.stderr_tail) == 4000
        assert state.error.stdout_tail == "fetching"
        assert state.error.suggestion.startswith("The download failed because of a network problem")
        # bun's installer never ran
        assert runner.calls == [UV_SCRIPT]

    def test_failure_logs_error_once_then_suggestion(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(
            probe,
            results={UV_SCRIPT: ProcessResult(exit_code=1, stderr="getaddrinfo ENOTFOUND astral.sh")},
        )
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        errors = _messages(state, "error")
        assert errors == ["Environment setup failed: uv installation failed"]
        assert _messages(state)[-1].startswith("Suggestion: The download failed")

    def test_empty_output_leaves_tails_unset(self, make_service):
        probe = FakeProbe({"uvx"})
        runner = FakeRunner(probe, results={BUN_SCRIPT: ProcessResult(exit_code=2)})
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.error.exit_code == 2
        assert state.error.stderr_tail is None
        assert state.error.stdout_tail is None
        assert state.error.suggestion is None

    def test_recheck_failure_is_distinct(self, make_service):
        probe = FakeProbe()
        # Installers "succeed" but install nothing
        runner = FakeRunner(probe, installs={})
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.stage == Stage.FAILED
        assert state.error.message == (
            "The install script reported success, but the tools still cannot be found"
        )
        assert state.error.message != "uv installation failed"
        assert state.error.exit_code is None
        assert state.error.suggestion.startswith("Security software may have blocked")
        assert runner.calls == [UV_SCRIPT, BUN_SCRIPT]

    def test_recheck_is_not_retried(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, installs={})
        service = make_service(probe, runner)

        service.start(RecordingSink())

        # detection (uvx, uv, bun) + one recheck (uvx, uv, bun)
        assert probe.calls == ["uvx", "uv", "bun"] * 2

    def test_spawn_failure_uses_platform_hint(self, make_service, monkeypatch):
        monkeypatch.setattr(env_bootstrap, "is_windows", lambda: False)
        probe = FakeProbe()
        runner = FakeRunner(
            probe, results={UV_SCRIPT: SpawnError("Installer script not found: /x/install_uv.py")},
        )
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.stage == Stage.FAILED
        assert state.error.message == (
            "uv installer could not be started: Installer script not found: /x/install_uv.py"
        )
        assert state.error.exit_code is None
        assert state.error.suggestion == "Check your network connection and proxy settings."
        assert runner.calls == [UV_SCRIPT]

    def test_spawn_failure_windows_hint(self, make_service, monkeypatch):
        monkeypatch.setattr(env_bootstrap, "is_windows", lambda: True)
        probe = FakeProbe({"uvx"})
        runner = FakeRunner(probe, results={BUN_SCRIPT: SpawnError("spawn failed")})
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.error.message.startswith("bun installer could not be started: ")
        assert "PowerShell" in state.error.suggestion

    def test_bun_spawn_failure_gets_same_hint_as_uv(self, make_service, monkeypatch):
        monkeypatch.setattr(env_bootstrap, "is_windows", lambda: False)
        probe = FakeProbe({"uvx"})
        runner = FakeRunner(probe, results={BUN_SCRIPT: SpawnError("spawn failed")})
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.error.suggestion == "Check your network connection and proxy settings."

    def test_spawn_failure_classified_from_message(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, results={UV_SCRIPT: SpawnError("[Errno 13] Permission denied")})
        service = make_service(probe, runner)

        state = service.start(RecordingSink())

        assert state.error.suggestion.startswith("Permission denied.")

    def test_unexpected_exception_fails_the_run(self, make_service, caplog):
        class ExplodingProbe(FakeProbe):
            def exists(self, name):
                raise RuntimeError("probe exploded")

        service = make_service(ExplodingProbe())

        with caplog.at_level(logging.WARNING, logger="envboot.core.services.env_bootstrap"):
            state = service.start(RecordingSink())

        assert state.stage == Stage.FAILED
        assert state.error.message == "probe exploded"
        assert not service.running
        assert "Bootstrap run aborted" in caplog.text

    def test_failure_command_is_what_the_runner_spawns(self, make_service, tmp_path):
        runner = SubprocessRunner(interpreter="/opt/python/bin/python3")
        service = make_service(FakeProbe(), runner, scripts_dir=str(tmp_path))

        state = service.start(RecordingSink())

        assert state.stage == Stage.FAILED
        assert state.error.command == f"/opt/python/bin/python3 {tmp_path / 'install_uv.py'}"

    def test_install_tool_raises_install_error(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, results={BUN_SCRIPT: ProcessResult(exit_code=1)})
        service = make_service(probe, runner)

        with pytest.raises(InstallError) as exc_info:
            service.install_tool("bun")

        assert exc_info.value.tool == "bun"
        assert service.get_state().failed

    def test_failed_run_can_be_restarted(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, results={UV_SCRIPT: ProcessResult(exit_code=1)})
        service = make_service(probe, runner)

        failed = service.start(RecordingSink())
        assert failed.failed

        runner.results = {}
        sink = RecordingSink()
        state = service.start(sink)

        assert state.stage == Stage.ENV_READY
        assert not state.failed
        assert state.error is None
        assert sink.stages()[0] == "start-check"
        # Logs of the first run survive the restart
        assert state.logs[: len(failed.logs)] == failed.logs

    def test_restart_clears_flags_before_first_event(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, results={UV_SCRIPT: ProcessResult(exit_code=1)})
        service = make_service(probe, runner)
        service.start(RecordingSink())

        runner.results = {}
        sink = RecordingSink()
        service.start(sink)

        first = _snapshots(sink)[0]
        assert first.stage == Stage.START_CHECK
        assert not first.failed and not first.done and first.error is None


# ═══════════════════════════════════════════════════════════════════
#  Events
# ═══════════════════════════════════════════════════════════════════


class TestEvents:
    @pytest.mark.parametrize("results", [
        {},
        {UV_SCRIPT: ProcessResult(exit_code=1)},
    ])
    def test_stage_change_followed_by_matching_snapshot(self, make_service, results):
        probe = FakeProbe()
        service = make_service(probe, FakeRunner(probe, results=results))
        sink = RecordingSink()

        service.start(sink)

        stage_events = [i for i, e in enumerate(sink.events) if isinstance(e, StageChanged)]
        assert stage_events
        for i in stage_events:
            nxt = sink.events[i + 1]
            assert isinstance(nxt, StateSnapshot)
            assert nxt.state.stage == sink.events[i].stage

    def test_failure_emits_failed_stage(self, make_service):
        probe = FakeProbe()
        service = make_service(probe, FakeRunner(probe, installs={}))
        sink = RecordingSink()

        service.start(sink)

        assert sink.stages()[-1] == "failed"

    def test_log_append_followed_by_snapshot_with_entry(self, make_service):
        probe = FakeProbe()
        service = make_service(probe)
        sink = RecordingSink()

        service.start(sink)

        log_events = [i for i, e in enumerate(sink.events) if isinstance(e, LogAppended)]
        assert log_events
        for i in log_events:
            nxt = sink.events[i + 1]
            assert isinstance(nxt, StateSnapshot)
            assert nxt.state.logs[-1] == sink.events[i].log

    @pytest.mark.parametrize("present,results,installs", [
        ({"uvx", "bun"}, {}, None),
        (set(), {}, None),
        (set(), {UV_SCRIPT: ProcessResult(exit_code=1)}, None),
        (set(), {}, {}),
    ])
    def test_every_snapshot_satisfies_state_invariants(
        self, make_service, present, results, installs,
    ):
        probe = FakeProbe(present)
        service = make_service(probe, FakeRunner(probe, results=results, installs=installs))
        sink = RecordingSink()

        service.start(sink)

        for s in _snapshots(sink):
            if s.installing:
                assert not s.done
            if s.done:
                assert s.failed != (s.uv_installed and s.bun_installed)
            assert (s.error is not None) == s.failed
            assert s.stage.terminal == s.done

    def test_raising_sink_does_not_break_the_run(self, make_service, caplog):
        class BrokenSink(EventSink):
            def emit(self, event):
                raise RuntimeError("channel closed")

        probe = FakeProbe()
        service = make_service(probe)

        with caplog.at_level(logging.WARNING, logger="envboot.core.services.env_bootstrap"):
            state = service.start(BrokenSink())

        assert state.stage == Stage.ENV_READY
        assert "Failed to deliver" in caplog.text

    def test_callback_sink_receives_events(self, make_service):
        received = []
        service = make_service(FakeProbe({"uvx", "bun"}))

        service.start(CallbackSink(received.append))

        assert received
        assert received[-1].type == "state"
        assert received[-1].state.stage == Stage.ENV_READY


# ═══════════════════════════════════════════════════════════════════
#  Single-flight
# ═══════════════════════════════════════════════════════════════════


class GatedProbe(FakeProbe):
    """Blocks the first probe until ``release`` is set."""

    def __init__(self, present=None):
        super().__init__(present)
        self.entered = threading.Event()
        self.release = threading.Event()

    def exists(self, name):
        self.entered.set()
        self.release.wait(5)
        return super().exists(name)


class GatedRunner(FakeRunner):
    """Blocks every installer run until ``release`` is set."""

    def __init__(self, probe, **kwargs):
        super().__init__(probe, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, script, **kwargs):
        self.entered.set()
        self.release.wait(5)
        return super().run(script, **kwargs)


class TestSingleFlight:
    def test_concurrent_caller_joins_running_check(self, make_service):
        probe = GatedProbe({"uvx", "bun"})
        service = make_service(probe)
        sink_a, sink_b = RecordingSink(), RecordingSink()
        results = {}

        a = threading.Thread(target=lambda: results.setdefault("a", service.start(sink_a)))
        a.start()
        assert probe.entered.wait(5)
        assert service.running

        b = threading.Thread(target=lambda: results.setdefault("b", service.start(sink_b)))
        b.start()
        assert sink_b.first_event.wait(5)

        probe.release.set()
        a.join(5)
        b.join(5)

        assert results["a"] is results["b"]
        assert results["a"].stage == Stage.ENV_READY
        assert probe.calls == ["uvx", "bun"]
        # Joiner gets a snapshot first, then the live tail of the run
        assert isinstance(sink_b.events[0], StateSnapshot)
        assert sink_b.events[0].state.stage == Stage.CHECK_UV
        assert sink_b.stages()[-1] == "env-ready"
        assert sink_a.stages()[-1] == "env-ready"

    def test_concurrent_caller_joins_running_install(self, make_service):
        probe = FakeProbe()
        runner = GatedRunner(probe)
        service = make_service(probe, runner)
        sink_b = RecordingSink()

        future_a = service.start_background(RecordingSink())
        assert runner.entered.wait(5)

        future_b = service.start_background(sink_b)
        assert future_b is future_a
        assert sink_b.events[0].state.stage == Stage.INSTALLING_UV

        runner.release.set()
        state = future_a.result(timeout=5)

        assert state.stage == Stage.ENV_READY
        assert runner.calls == [UV_SCRIPT, BUN_SCRIPT]
        assert "installing-bun" in sink_b.stages()

    def test_many_callers_one_run(self, make_service):
        probe = FakeProbe()
        runner = FakeRunner(probe, delay=0.05)
        service = make_service(probe, runner)
        barrier = threading.Barrier(8)
        states = []
        lock = threading.Lock()

        def caller():
            barrier.wait(5)
            state = service.start(RecordingSink())
            with lock:
                states.append(state)

        threads = [threading.Thread(target=caller) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert len(states) == 8
        assert all(s.stage == Stage.ENV_READY for s in states)
        assert runner.calls == [UV_SCRIPT, BUN_SCRIPT]
        # one detection pass + one recheck
        assert probe.calls == ["uvx", "uv", "bun", "uvx", "bun"]

    def test_interrupted_run_settles_joined_callers(self, make_service):
        probe = FakeProbe()
        runner = GatedRunner(probe, results={UV_SCRIPT: SystemExit(3)})
        service = make_service(probe, runner)
        exit_codes = []

        def launch():
            try:
                service.start(RecordingSink())
            except SystemExit as e:
                exit_codes.append(e.code)

        launcher = threading.Thread(target=launch)
        launcher.start()
        assert runner.entered.wait(5)

        joined = service.start_background(RecordingSink())
        runner.release.set()
        state = joined.result(timeout=5)
        launcher.join(5)

        assert exit_codes == [3]
        assert state.stage == Stage.FAILED
        assert state.failed and state.done and not state.installing
        assert state.error.message == "SystemExit(3)"
        assert not service.running
        assert service.get_state() is state


# ═══════════════════════════════════════════════════════════════════
#  Reading state while observers are busy
# ═══════════════════════════════════════════════════════════════════


class TestGetStateDuringDelivery:
    def test_slow_sink_does_not_delay_get_state(self, make_service):
        in_sink = threading.Event()

        def slow(event):
            if isinstance(event, StageChanged) and event.stage == Stage.CHECK_UV:
                in_sink.set()
                time.sleep(0.5)

        service = make_service(FakeProbe({"uvx", "bun"}))
        future = service.start_background(CallbackSink(slow))
        assert in_sink.wait(5)

        began = time.monotonic()
        state = service.get_state()
        running = service.running
        elapsed = time.monotonic() - began

        assert elapsed < 0.1
        assert state.stage == Stage.CHECK_UV
        assert running
        assert future.result(timeout=5).stage == Stage.ENV_READY

    def test_sink_waiting_on_a_reader_thread(self, make_service):
        service = make_service(FakeProbe({"uvx", "bun"}))
        seen = []

        def hand_off(event):
            if isinstance(event, StageChanged) and event.stage == Stage.CHECK_BUN:
                reader = threading.Thread(target=lambda: seen.append(service.get_state().stage))
                reader.start()
                reader.join(1.5)
                seen.append(reader.is_alive())

        state = service.start(CallbackSink(hand_off))

        assert seen == [Stage.CHECK_BUN, False]
        assert state.stage == Stage.ENV_READY


# ═══════════════════════════════════════════════════════════════════
#  Log buffer & line splitting
# ═══════════════════════════════════════════════════════════════════


class TestLogBuffer:
    def test_evicts_oldest_first(self):
        buf = LogBuffer(maxlen=500)

        for i in range(600):
            snapshot = buf.append(LogEntry(level="info", message=f"line {i}"))

        assert len(buf) == 500
        assert [e.message for e in snapshot] == [f"line {i}" for i in range(100, 600)]

    def test_snapshot_is_immutable_copy(self):
        buf = LogBuffer(maxlen=3)
        first = buf.append(LogEntry(level="info", message="a"))
        second = buf.append(LogEntry(level="info", message="b"))

        assert isinstance(first, tuple)
        assert [e.message for e in first] == ["a"]
        assert [e.message for e in second] == ["a", "b"]

    def test_state_logs_bounded_during_run(self, make_service):
        probe = FakeProbe({"bun"})
        chatty = "".join(f"line {i}\n" for i in range(600))
        runner = FakeRunner(probe, stdout_chunks={UV_SCRIPT: [chatty]})
        service = make_service(probe, runner)
        sink = RecordingSink()

        state = service.start(sink)

        appended = [e.log for e in sink.of_type("log")]
        assert len(appended) > 600
        assert len(state.logs) == 500
        assert state.logs == tuple(appended[-500:])

    def test_custom_bound_from_config(self, make_service):
        probe = FakeProbe({"uvx", "bun"})
        service = make_service(probe, max_logs=3)

        state = service.start(RecordingSink())

        assert len(state.logs) == 3
        assert state.logs[-1].message == "All tools are present, nothing to install"


class TestLineSplitter:
    def test_joins_partial_chunks(self):
        lines = []
        splitter = _LineSplitter(lines.append)

        for chunk in ["ab", "c\nde", "f\n", "gh"]:
            splitter.feed(chunk)
        assert lines == ["abc", "def"]

        splitter.flush()
        assert lines == ["abc", "def", "gh"]

    def test_drops_blank_and_trims(self):
        lines = []
        splitter = _LineSplitter(lines.append)

        splitter.feed("  one  \r\n\n   \n\ttwo\n")
        splitter.flush()

        assert lines == ["one", "two"]

    def test_flush_without_pending_is_noop(self):
        lines = []
        splitter = _LineSplitter(lines.append)

        splitter.feed("done\n")
        splitter.flush()
        splitter.flush()

        assert lines == ["done"]
