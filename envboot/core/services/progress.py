"""
Progress presentation helpers shared by the CLI and the web API.

Maps stages to a step index / percentage for progress bars and renders
a ``FailureDetail`` as a plain-text report.
"""

from __future__ import annotations

from typing import Callable

from envboot.core.models.bootstrap import FailureDetail, Stage

# Step titles shown by front-ends, in order
STEP_KEYS = (
    "steps.startCheck",
    "steps.checkUv",
    "steps.checkBun",
    "steps.install",
    "steps.complete",
)

_INSTALL_STAGES = (
    Stage.NEED_INSTALL,
    Stage.NO_NEED_INSTALL,
    Stage.START_INSTALL_UV,
    Stage.INSTALLING_UV,
    Stage.START_INSTALL_BUN,
    Stage.INSTALLING_BUN,
)


def stage_step(stage: Stage) -> int:
    """Index into ``STEP_KEYS`` for ``stage``."""
    if stage == Stage.CHECK_UV:
        return 1
    if stage == Stage.CHECK_BUN:
        return 2
    if stage in _INSTALL_STAGES:
        return 3
    if stage == Stage.ENV_READY:
        return 4
    return 0


def stage_progress(stage: Stage) -> int:
    """Rough completion percentage for ``stage`` (0 for idle and failed)."""
    if stage == Stage.START_CHECK:
        return 5
    if stage == Stage.CHECK_UV:
        return 20
    if stage == Stage.CHECK_BUN:
        return 35
    if stage in (Stage.NEED_INSTALL, Stage.NO_NEED_INSTALL):
        return 45
    if stage in _INSTALL_STAGES:
        return 70
    if stage == Stage.ENV_READY:
        return 100
    return 0


def format_failure(detail: FailureDetail | None, t: Callable[[str], str]) -> str:
    """Render a failure for humans: message, command, exit code, tails, suggestion."""
    if detail is None:
        return t("errors.unknownError")

    parts = [detail.message or t("errors.unknownError")]
    if detail.command:
        parts.append(f"{t('errors.command')}{detail.command}")
    if detail.exit_code is not None:
        parts.append(f"{t('errors.exitCode')}{detail.exit_code}")
    if detail.stderr_tail:
        parts.append(f"\n{t('errors.stderrTail')}\n{detail.stderr_tail}")
    if detail.stdout_tail:
        parts.append(f"\n{t('errors.stdoutTail')}\n{detail.stdout_tail}")
    if detail.suggestion:
        parts.append(f"\n{t('errors.suggestion')}{detail.suggestion}")
    return "\n".join(parts)
