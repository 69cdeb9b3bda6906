"""Global test fixtures for concord."""

from __future__ import annotations

from pathlib import Path

import pytest

from concord.config.schema import ConcordConfig
from concord.diff_source import StaticDiffSource
from concord.events import EventBus
from tests.helpers.fakes import DIFF, make_config


@pytest.fixture
def tmp_workdir(tmp_path: Path) -> Path:
    """Provide a temporary working directory for file operation tests."""
    return tmp_path


@pytest.fixture
def config() -> ConcordConfig:
    """Two fake agents, alpha and beta, with retries disabled."""
    return make_config("alpha", "beta")


@pytest.fixture
def diff_source() -> StaticDiffSource:
    return StaticDiffSource(DIFF)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()
