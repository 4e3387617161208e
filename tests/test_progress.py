"""
Tests for stage → progress mapping and failure formatting.
"""

import pytest

from envboot.core.models.bootstrap import FailureDetail, Stage
from envboot.core.services.locale import Translator
from envboot.core.services.progress import STEP_KEYS, format_failure, stage_progress, stage_step


class TestStageStep:
    @pytest.mark.parametrize("stage,step", [
        (Stage.IDLE, 0),
        (Stage.START_CHECK, 0),
        (Stage.CHECK_UV, 1),
        (Stage.CHECK_BUN, 2),
        (Stage.NEED_INSTALL, 3),
        (Stage.NO_NEED_INSTALL, 3),
        (Stage.INSTALLING_UV, 3),
        (Stage.START_INSTALL_BUN, 3),
        (Stage.ENV_READY, 4),
    ])
    def test_mapping(self, stage, step):
        assert stage_step(stage) == step

    def test_every_step_has_a_title(self):
        t = Translator("en-US")
        for stage in Stage:
            key = STEP_KEYS[stage_step(stage)]
            assert t(key) != key


class TestStageProgress:
    def test_monotonic_along_install_path(self):
        path = [
            Stage.START_CHECK, Stage.CHECK_UV, Stage.CHECK_BUN, Stage.NEED_INSTALL,
            Stage.START_INSTALL_UV, Stage.INSTALLING_BUN, Stage.ENV_READY,
        ]
        values = [stage_progress(s) for s in path]
        assert values == sorted(values)
        assert values[-1] == 100

    def test_idle_and_failed_are_zero(self):
        assert stage_progress(Stage.IDLE) == 0
        assert stage_progress(Stage.FAILED) == 0


class TestFormatFailure:
    def test_full_detail(self):
        t = Translator("en-US")
        detail = FailureDetail(
            message="uv installation failed",
            command="python install_uv.py",
            exit_code=1,
            stderr_tail="curl: (7) Failed to connect",
            stdout_tail="downloading...",
            suggestion="Check your proxy.",
        )

        text = format_failure(detail, t)

        lines = text.splitlines()
        assert lines[0] == "uv installation failed"
        assert "Command: python install_uv.py" in lines
        assert "Exit code: 1" in lines
        assert "stderr (last lines):" in lines
        assert "curl: (7) Failed to connect" in lines
        assert "stdout (last lines):" in lines
        assert lines[-1] == "Suggestion: Check your proxy."

    def test_minimal_detail(self):
        text = format_failure(FailureDetail(message="boom"), Translator("en-US"))
        assert text == "boom"

    def test_missing_detail(self):
        assert format_failure(None, Translator("en-US")) == "Unknown error"
