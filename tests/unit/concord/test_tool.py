"""Tests for the tool-surface operation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from concord.diff_source import StaticDiffSource
from concord.errors import ConfigurationError
from concord.models import ComposedResult, DebateResult, ValidationResult
from concord.orchestrator import DebateOrchestrator
from concord.tool import TOOL_SCHEMA, parse_arguments, run_debate_tool, summarize
from tests.helpers.fakes import DIFF, NULL_USER, ScriptedExecutor, fake_registry, make_config, review_json

CONFIG = make_config("alpha", "beta")


def scripted_factory(script):
    def factory(config, request):
        return DebateOrchestrator(
            config,
            executor=ScriptedExecutor(config, script),
            registry=fake_registry(config),
            diff_source=StaticDiffSource(DIFF),
            reporter=lambda result, question: "/tmp/report.md",
        )

    return factory


def agreeing(worker: str, kind: str, n: int) -> str:
    if kind == "generate":
        return review_json(NULL_USER, risks=["cache"])
    if kind == "compose":
        return json.dumps({"proposed_findings": [NULL_USER], "residual_risks": ["cache"]})
    if kind == "validate":
        return json.dumps({"votes": [{"id": "finding_0", "vote": "approve"}]})
    return "{}"


class TestParseArguments:
    def test_defaults(self) -> None:
        request = parse_arguments({"question": "Review"}, CONFIG)
        assert request.agents == ("alpha", "beta")
        assert request.mode == "review"
        assert request.platform == "general"
        assert request.max_rounds == 3
        assert request.confidence_threshold == 80
        assert request.path is None

    def test_explicit_values(self) -> None:
        request = parse_arguments(
            {"question": "Plan", "mode": "plan", "platform": "ios", "maxRounds": 5,
             "confidenceThreshold": 50, "agents": ["beta", "alpha"], "path": "/repo"},
            CONFIG,
        )
        assert request.mode == "plan"
        assert request.platform == "ios"
        assert request.max_rounds == 5
        assert request.confidence_threshold == 50
        assert request.agents == ("beta", "alpha")
        assert request.path == "/repo"

    @pytest.mark.parametrize(
        "arguments",
        [
            {},
            {"question": "   "},
            {"question": "Q", "maxRounds": 0},
            {"question": "Q", "maxRounds": 6},
            {"question": "Q", "maxRounds": True},
            {"question": "Q", "maxRounds": "3"},
            {"question": "Q", "maxRounds": 2.5},
            {"question": "Q", "confidenceThreshold": 49},
            {"question": "Q", "confidenceThreshold": 101},
            {"question": "Q", "mode": "debate"},
            {"question": "Q", "platform": "windows"},
            {"question": "Q", "agents": "alpha"},
            {"question": "Q", "agents": ["alpha", 3]},
            {"question": "Q", "agents": ["alpha", "gamma"]},
            {"question": "Q", "path": 42},
        ],
    )
    def test_rejects_invalid(self, arguments: dict) -> None:
        with pytest.raises(ConfigurationError):
            parse_arguments(arguments, CONFIG)

    def test_schema_requires_question(self) -> None:
        assert TOOL_SCHEMA["inputSchema"]["required"] == ["question"]


class TestRunDebateTool:
    @pytest.mark.asyncio
    async def test_review_summary(self) -> None:
        summary = await run_debate_tool(
            {"question": "Review the session fix"},
            config=CONFIG,
            orchestrator_factory=scripted_factory(agreeing),
        )
        assert summary["mode"] == "review"
        assert summary["winner"] == "alpha"
        assert summary["rounds"] == 1
        assert summary["confidence"] == 100
        assert summary["degraded"] is False
        assert summary["final_findings_count"] == 1
        assert summary["final_findings"][0]["title"] == NULL_USER["title"]
        assert summary["final_residual_risks"] == ["cache"]
        assert summary["validation_summary"] == {"approved": 1, "rejected": 0, "ties": 0}
        assert summary["report_path"] == "/tmp/report.md"
        json.dumps(summary)

    @pytest.mark.asyncio
    async def test_failure_payload(self) -> None:
        payload = await run_debate_tool({"question": "Q", "agents": ["alpha"]}, config=CONFIG,
                                        orchestrator_factory=scripted_factory(agreeing))
        assert payload["category"] == "configuration"
        assert payload["phase"] == "initializing"
        assert "At least 2 agents" in payload["error"]

    @pytest.mark.asyncio
    async def test_invalid_arguments_payload(self) -> None:
        payload = await run_debate_tool({"maxRounds": 3}, config=CONFIG)
        assert payload == {
            "error": "question is required",
            "category": "configuration",
            "phase": None,
            "details": {},
        }

    @pytest.mark.asyncio
    async def test_bad_config_value_payload(self, tmp_path: Path) -> None:
        (tmp_path / "concord.yaml").write_text("version: abc\n", encoding="utf-8")
        payload = await run_debate_tool({"question": "Q", "path": str(tmp_path)})
        assert payload["category"] == "configuration"
        assert "Invalid configuration value" in payload["error"]

    @pytest.mark.asyncio
    async def test_unexpected_error_payload(self) -> None:
        class Exploding:
            async def run(self, request):
                raise OSError("disk full")

        payload = await run_debate_tool(
            {"question": "Q"}, config=CONFIG, orchestrator_factory=lambda config, request: Exploding()
        )
        assert payload == {
            "error": "Internal error: disk full",
            "category": "internal",
            "phase": None,
            "details": {"type": "OSError"},
        }

    @pytest.mark.asyncio
    async def test_degraded_summary(self) -> None:
        def script(worker: str, kind: str, n: int) -> str:
            return "" if worker == "beta" else agreeing(worker, kind, n)

        summary = await run_debate_tool({"question": "Q"}, config=CONFIG,
                                        orchestrator_factory=scripted_factory(script))
        assert summary["degraded"] is True
        assert summary["confidence"] == 50
        assert summary["winner"] == "alpha"
        assert summary["final_residual_risks"][-1].startswith("Single-agent mode")


class TestSummarize:
    @pytest.mark.asyncio
    async def test_plan_keys(self) -> None:
        plan = json.dumps({
            "steps": [{"phase": 1, "title": "Create user model"}],
            "summary": "Start with the data model.",
        })

        def script(worker: str, kind: str, n: int) -> str:
            if kind == "generate":
                return plan
            if kind == "compose":
                return json.dumps({
                    "proposed_steps": [{"phase": 1, "title": "Create user model"}],
                    "summary": "Model first",
                })
            if kind == "validate":
                return json.dumps({"votes": [{"id": "step_0", "vote": "approve"}]})
            return "{}"

        summary = await run_debate_tool({"question": "Plan", "mode": "plan"}, config=CONFIG,
                                        orchestrator_factory=scripted_factory(script))
        assert summary["mode"] == "plan"
        assert summary["final_steps_count"] == 1
        assert summary["final_plan"][0]["title"] == "Create user model"
        assert summary["final_summary"] == "Model first"
        assert "final_findings" not in summary

    def test_duration_in_ms(self) -> None:
        result = DebateResult(
            mode="review", winner="a", rounds=(), composed=ComposedResult(composer="a"),
            validation=ValidationResult(), final_items=(), residual_risks=(), open_questions=(),
            confidence=90, duration_s=1.2345,
        )
        assert summarize(result)["duration_ms"] == 1234
