"""
Installer failure classification.

Scans captured installer output for well-known failure signatures and
maps the first hit to an actionable suggestion.  Heuristic by nature:
a miss just means no suggestion is shown.
"""

from __future__ import annotations

import sys
from typing import Callable

# (rule name, substrings, message key) — checked in order, first match wins.
# A key of None means "platform dependent", see _PERMISSION_KEYS.
_RULES: tuple[tuple[str, tuple[str, ...], str | None], ...] = (
    (
        "network",
        (
            "enotfound",
            "econnrefused",
            "etimedout",
            "timed out",
            "network is unreachable",
            "could not resolve",
        ),
        "errorSummary.networkIssue",
    ),
    (
        "certificate",
        ("certificate", "self signed", "unable to get local issuer"),
        "errorSummary.certificateIssue",
    ),
    (
        "permission",
        ("eacces", "eperm", "permission denied", "access is denied"),
        None,
    ),
)

_PERMISSION_KEYS = {
    True: "errorSummary.permissionWindows",
    False: "errorSummary.permissionUnix",
}


def is_windows() -> bool:
    return sys.platform.startswith("win")


def match_rule(stderr: str, stdout: str) -> tuple[str, str | None] | None:
    """Return ``(rule name, message key)`` of the first matching rule."""
    haystack = f"{stderr or ''}\n{stdout or ''}".lower()
    for name, needles, key in _RULES:
        if any(needle in haystack for needle in needles):
            return name, key
    return None


def classify_failure(
    stderr: str,
    stdout: str,
    translate: Callable[[str], str],
    *,
    windows: bool | None = None,
) -> str | None:
    """Produce a human suggestion for a failed install, or None.

    Args:
        stderr: Captured standard error.
        stdout: Captured standard output.
        translate: Message lookup (``Translator`` instance).
        windows: Override platform detection for the permission hint.
    """
    hit = match_rule(stderr, stdout)
    if hit is None:
        return None
    _name, key = hit
    if key is None:
        key = _PERMISSION_KEYS[is_windows() if windows is None else windows]
    return translate(key)
