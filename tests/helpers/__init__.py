"""Shared test helpers for the concord test suite."""

from __future__ import annotations

from tests.helpers.fakes import ScriptedExecutor, fake_registry, make_config

__all__ = ["ScriptedExecutor", "fake_registry", "make_config"]
