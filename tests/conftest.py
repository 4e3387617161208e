"""
Shared test fixtures — configuration, translator and a service factory.
"""

from __future__ import annotations

import logging

import pytest

from envboot.adapters.base import StreamingProcessRunner
from envboot.core.models.config import BootstrapConfig
from envboot.core.services.env_bootstrap import EnvBootstrapService
from envboot.core.services.locale import Translator
from tests.fakes import FakeProbe, FakeRunner


@pytest.fixture
def translator() -> Translator:
    return Translator("en-US")


@pytest.fixture
def config() -> BootstrapConfig:
    return BootstrapConfig(locale="en-US", probe_dirs=[])


@pytest.fixture
def make_service(config: BootstrapConfig, translator: Translator):
    """Build a service around the given fakes."""

    def _make(
        probe: FakeProbe,
        runner: StreamingProcessRunner | None = None,
        **config_overrides: object,
    ) -> EnvBootstrapService:
        cfg = config.model_copy(update=config_overrides) if config_overrides else config
        return EnvBootstrapService(
            cfg,
            probe=probe,
            runner=runner or FakeRunner(probe),
            translator=translator,
        )

    return _make


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Undo ``setup_logging`` calls made by the CLI under test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
