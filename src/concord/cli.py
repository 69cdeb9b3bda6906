"""CLI entrypoint for concord."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from concord.config.loader import load_config
from concord.config.schema import ConcordConfig
from concord.errors import DebateError
from concord.events import EventBus, log_progress
from concord.logger import setup_logging
from concord.models import MODES, PLATFORMS
from concord.orchestrator import DebateOrchestrator
from concord.registry import WorkerRegistry
from concord.reporter import MarkdownReporter, report_dir
from concord.tool import parse_arguments, summarize

logger = logging.getLogger(__name__)


def _load(config_path: Path | None, cwd: str | None) -> ConcordConfig:
    try:
        return load_config(config_path, cwd=cwd or ".")
    except DebateError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Path to a concord.yaml file")
@click.option("--debug", "debug_flag", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines on stderr")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, debug_flag: bool, json_logs: bool) -> None:
    """Concord multi-agent debate runner."""
    setup_logging(debug=debug_flag, json_output=json_logs)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command("run")
@click.argument("question", nargs=-1)
@click.option("--agent", "agents", multiple=True, help="Agent id to include (repeatable)")
@click.option("--mode", type=click.Choice(list(MODES)), default="review", show_default=True)
@click.option("--platform", type=click.Choice(list(PLATFORMS)), default="general", show_default=True)
@click.option("--max-rounds", type=click.IntRange(1, 5), default=None, help="Round limit (1-5)")
@click.option("--threshold", type=click.IntRange(50, 100), default=None, help="Confidence threshold (50-100)")
@click.option("--path", "repo_path", type=click.Path(exists=True, file_okay=False), default=None,
              help="Repository path (defaults to the working directory)")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
@click.pass_context
def run_command(
    ctx: click.Context,
    question: tuple[str, ...],
    agents: tuple[str, ...],
    mode: str,
    platform: str,
    max_rounds: int | None,
    threshold: int | None,
    repo_path: str | None,
    as_json: bool,
) -> None:
    """Run a debate on QUESTION."""
    question_text = " ".join(question).strip()
    if not question_text:
        raise click.ClickException("Question text is required")

    cfg = _load(ctx.obj["config_path"], repo_path)
    arguments: dict[str, Any] = {
        "question": question_text,
        "mode": mode,
        "platform": platform,
        "agents": list(agents) or None,
        "maxRounds": max_rounds,
        "confidenceThreshold": threshold,
        "path": repo_path,
    }

    bus = EventBus()
    bus.subscribe(log_progress)
    try:
        request = parse_arguments(arguments, cfg)
        orchestrator = DebateOrchestrator(
            cfg,
            bus=bus,
            reporter=MarkdownReporter(report_dir(request.path, cfg.debate.output_dir)),
        )
        result = asyncio.run(orchestrator.run(request))
    except DebateError as exc:
        if as_json:
            click.echo(json.dumps(exc.to_payload(), indent=2))
            raise SystemExit(1) from exc
        raise click.ClickException(str(exc)) from exc

    summary = summarize(result)
    if as_json:
        click.echo(json.dumps(summary, indent=2))
        return
    _print_summary(summary)


def _print_summary(summary: dict[str, Any]) -> None:
    plan = summary["mode"] == "plan"
    items = summary["final_plan"] if plan else summary["final_findings"]
    click.echo(
        f"winner={summary['winner']} rounds={summary['rounds']} "
        f"confidence={summary['confidence']}%" + (" (single-agent)" if summary["degraded"] else "")
    )
    for item in items:
        if plan:
            click.echo(f"  [phase {item['phase']}] {item['title']}")
        else:
            where = f" ({item['file']})" if item.get("file") else ""
            click.echo(f"  [{item['severity']}] {item['title']}{where}")
    for risk in summary["final_residual_risks"]:
        click.echo(f"  risk: {risk}")
    if summary["report_path"]:
        click.echo(f"Report: {summary['report_path']}")


@main.command("agents")
@click.pass_context
def agents_command(ctx: click.Context) -> None:
    """List configured agents."""
    cfg = _load(ctx.obj["config_path"], None)
    defaults = set(cfg.debate.default_agents)
    for name, agent in cfg.agents.items():
        marker = "*" if name in defaults else " "
        click.echo(f"{marker} {name}: {' '.join([agent.binary, *agent.args])} (timeout {agent.timeout_seconds:g}s)")


def _doctor_rows(cfg: ConcordConfig, probe: bool) -> list[dict[str, Any]]:
    registry = WorkerRegistry(cfg)
    rows: list[dict[str, Any]] = []
    for name in registry.names:
        health = registry.check_health(name, probe=probe)
        rows.append({
            "agent": name,
            "binary": health.binary,
            "default": name in cfg.debate.default_agents,
            "ok": health.healthy,
            "details": health.details or "ok",
        })
    return rows


def _print_doctor(rows: list[dict[str, Any]]) -> bool:
    click.echo("Agent preflight:")
    all_ok = True
    for row in rows:
        icon = "OK" if row["ok"] else "FAIL"
        default = " (default)" if row["default"] else ""
        click.echo(f"  [{icon}] agent={row['agent']}{default} binary={row['binary']} - {row['details']}")
        if row["default"]:
            all_ok = all_ok and bool(row["ok"])
    return all_ok


@main.command("doctor")
@click.option("--probe", is_flag=True, help="Also run each binary with --version")
@click.pass_context
def doctor_command(ctx: click.Context, probe: bool) -> None:
    """Check that agent binaries are available."""
    cfg = _load(ctx.obj["config_path"], None)
    ok = _print_doctor(_doctor_rows(cfg, probe))
    raise SystemExit(0 if ok else 1)
