"""Tool-surface operation: run a debate from loosely typed call arguments.

``run_debate_tool`` is what an RPC dispatcher calls.  It validates the
arguments, runs the orchestrator and returns a JSON-serialisable summary.
Failures come back as ``DebateError.to_payload()`` dictionaries rather
than exceptions, so a transport never crashes on a bad call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from concord.config.loader import load_config
from concord.config.schema import ConcordConfig
from concord.errors import ConfigurationError, DebateError, ErrorCategory
from concord.models import MODES, PLATFORMS, DebateRequest, DebateResult
from concord.orchestrator import DebateOrchestrator
from concord.reporter import MarkdownReporter, report_dir

logger = logging.getLogger(__name__)

TOOL_NAME = "debate"

MAX_ROUNDS_RANGE = (1, 5)
THRESHOLD_RANGE = (50, 100)

TOOL_SCHEMA: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": (
        "Run a multi-round debate between coding agents. 'review' mode produces "
        "P0/P1/P2 findings for the uncommitted git diff; 'plan' mode produces a "
        "phased implementation plan. Agents generate in parallel, critique each "
        "other, and repeat until the confidence threshold or the round limit; "
        "the winner composes the result and the others validate it."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "question": {"type": "string", "description": "Review question or planning request"},
            "mode": {"type": "string", "enum": list(MODES), "description": "Default: review"},
            "agents": {"type": "array", "items": {"type": "string"}, "description": "At least 2 agent ids"},
            "path": {"type": "string", "description": "Repository path. Defaults to the working directory"},
            "platform": {"type": "string", "enum": list(PLATFORMS), "description": "Default: general"},
            "maxRounds": {"type": "integer", "minimum": 1, "maximum": 5, "description": "Default: 3"},
            "confidenceThreshold": {"type": "integer", "minimum": 50, "maximum": 100, "description": "Default: 80"},
        },
        "required": ["question"],
    },
}

OrchestratorFactory = Callable[[ConcordConfig, DebateRequest], DebateOrchestrator]


def _int_in_range(arguments: Mapping[str, Any], key: str, default: int, bounds: tuple[int, int]) -> int:
    value = arguments.get(key)
    if value is None:
        return default
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ConfigurationError(f"{key} must be an integer", details={key: value})
    low, high = bounds
    if not low <= value <= high:
        raise ConfigurationError(f"{key} must be between {low} and {high}", details={key: value})
    return int(value)


def _choice(arguments: Mapping[str, Any], key: str, default: str, choices: tuple[str, ...]) -> str:
    value = arguments.get(key) or default
    if value not in choices:
        raise ConfigurationError(
            f"{key} must be one of: {', '.join(choices)}",
            details={key: value},
        )
    return value


def parse_arguments(arguments: Mapping[str, Any], config: ConcordConfig) -> DebateRequest:
    """Validate raw tool arguments into a ``DebateRequest``."""
    question = arguments.get("question")
    if not isinstance(question, str) or not question.strip():
        raise ConfigurationError("question is required")

    agents = arguments.get("agents")
    if agents is None:
        agent_ids = config.debate.default_agents
    elif isinstance(agents, (list, tuple)) and all(isinstance(a, str) for a in agents):
        agent_ids = tuple(agents)
    else:
        raise ConfigurationError("agents must be a list of agent ids", details={"agents": agents})
    for agent in agent_ids:
        config.agent(agent)

    path = arguments.get("path")
    if path is not None and not isinstance(path, str):
        raise ConfigurationError("path must be a string", details={"path": path})

    return DebateRequest(
        question=question,
        agents=tuple(agent_ids),
        mode=_choice(arguments, "mode", "review", MODES),
        platform=_choice(arguments, "platform", "general", PLATFORMS),
        max_rounds=_int_in_range(arguments, "maxRounds", config.debate.max_rounds, MAX_ROUNDS_RANGE),
        confidence_threshold=_int_in_range(
            arguments, "confidenceThreshold", config.debate.confidence_threshold, THRESHOLD_RANGE
        ),
        path=path,
    )


def summarize(result: DebateResult) -> dict[str, Any]:
    """Mode-specific summary returned to the tool caller."""
    plan = result.mode == "plan"
    items = [item.as_dict() for item in result.final_items]
    summary: dict[str, Any] = {
        "mode": result.mode,
        "winner": result.winner,
        "rounds": len(result.rounds),
        "confidence": result.confidence,
        "degraded": result.degraded,
        ("final_steps_count" if plan else "final_findings_count"): len(items),
        "report_path": result.report_path,
        "duration_ms": round(result.duration_s * 1000),
        ("final_plan" if plan else "final_findings"): items,
    }
    if plan:
        summary["final_summary"] = result.summary
    summary["final_residual_risks"] = list(result.residual_risks)
    summary["final_open_questions"] = list(result.open_questions)
    summary["validation_summary"] = {
        "approved": len(result.validation.approved),
        "rejected": len(result.validation.rejected),
        "ties": len(result.validation.ties),
    }
    return summary


def default_orchestrator(config: ConcordConfig, request: DebateRequest) -> DebateOrchestrator:
    reporter = MarkdownReporter(report_dir(request.path, config.debate.output_dir))
    return DebateOrchestrator(config, reporter=reporter)


async def run_debate_tool(
    arguments: Mapping[str, Any],
    *,
    config: ConcordConfig | None = None,
    orchestrator_factory: OrchestratorFactory = default_orchestrator,
) -> dict[str, Any]:
    """Run one debate; return a summary dict or a failure payload."""
    started = time.monotonic()
    try:
        path = arguments.get("path")
        cfg = config or load_config(cwd=path if isinstance(path, str) else ".")
        request = parse_arguments(arguments, cfg)
        result = await orchestrator_factory(cfg, request).run(request)
    except DebateError as exc:
        logger.error("Debate failed after %.1fs: %s", time.monotonic() - started, exc)
        return exc.to_payload()
    except Exception as exc:
        logger.exception("Debate crashed after %.1fs", time.monotonic() - started)
        return DebateError(
            f"Internal error: {exc}",
            category=ErrorCategory.INTERNAL,
            details={"type": type(exc).__name__},
        ).to_payload()
    return summarize(result)
