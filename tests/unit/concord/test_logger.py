"""Tests for run-scoped logging context."""

from __future__ import annotations

import asyncio

import pytest
import structlog

from concord.logger import new_run_id, run_context


class TestRunContext:
    def test_binds_and_restores(self) -> None:
        with run_context(mode="plan", run_id="abc12345") as run_id:
            assert run_id == "abc12345"
            assert structlog.contextvars.get_contextvars() == {"run": "abc12345", "mode": "plan"}
        assert "run" not in structlog.contextvars.get_contextvars()

    def test_generated_ids_differ(self) -> None:
        assert len(new_run_id()) == 8
        assert new_run_id() != new_run_id()

    @pytest.mark.asyncio
    async def test_tasks_inherit_binding(self) -> None:
        async def read_mode() -> str:
            return structlog.contextvars.get_contextvars().get("mode", "")

        with run_context(mode="review"):
            modes = await asyncio.gather(read_mode(), read_mode())
        assert modes == ["review", "review"]
