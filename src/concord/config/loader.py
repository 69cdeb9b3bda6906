"""YAML config loader for concord."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from concord.config.schema import (
    AgentConfig,
    ConcordConfig,
    ConfidenceWeights,
    DebateConfig,
    ExecutionConfig,
    GitConfig,
    RetryConfig,
    default_agents,
)
from concord.errors import ConfigurationError, ParseError

CONFIG_FILENAMES = ("concord.yaml", ".concord.yaml")


def find_config(cwd: str | Path = ".") -> Path | None:
    base = Path(cwd)
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: str | Path | None = None, *, cwd: str | Path = ".") -> ConcordConfig:
    """Build a fresh ``ConcordConfig`` from *path* (or a discovered file).

    Missing files yield the defaults.  User agents are merged over the
    default agents by name.
    """
    p = Path(path) if path is not None else find_config(cwd)
    if p is None or not p.exists():
        return ConcordConfig()
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid YAML in {p}: {exc}", details={"path": str(p)}) from exc
    return config_from_dict(raw if isinstance(raw, dict) else {})


def config_from_dict(raw: dict[str, Any]) -> ConcordConfig:
    """Build a config from parsed YAML; bad field values raise ``ConfigurationError``."""
    try:
        return _build(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc


def _build(raw: dict[str, Any]) -> ConcordConfig:
    execution_raw = _section(raw, "execution")
    debate_raw = _section(raw, "debate")
    confidence_raw = _section(raw, "confidence")
    git_raw = _section(raw, "git")

    retry = RetryConfig(**_pick(_section(execution_raw, "retry"), RetryConfig))
    execution_fields = _pick(execution_raw, ExecutionConfig)
    execution_fields.pop("retry", None)
    execution = ExecutionConfig(**execution_fields, retry=retry)

    debate_fields = _pick(debate_raw, DebateConfig)
    if "default_agents" in debate_fields:
        debate_fields["default_agents"] = tuple(str(a) for a in debate_fields["default_agents"] or ())
    debate = DebateConfig(**debate_fields)

    confidence = ConfidenceWeights(**_pick(confidence_raw, ConfidenceWeights))
    git = GitConfig(**_pick(git_raw, GitConfig))

    agents = default_agents()
    raw_agents = raw.get("agents", {})
    if isinstance(raw_agents, dict):
        for name, item in raw_agents.items():
            if not isinstance(item, dict):
                continue
            agents[str(name)] = _merge_agent(str(name), agents.get(str(name)), item)

    return ConcordConfig(
        version=int(raw.get("version", 1)),
        agents=agents,
        execution=execution,
        debate=debate,
        confidence=confidence,
        git=git,
    )


def _merge_agent(name: str, base: AgentConfig | None, item: dict[str, Any]) -> AgentConfig:
    fields = _pick(item, AgentConfig)
    fields.pop("name", None)
    retry_raw = fields.pop("retry", None)
    if "args" in fields:
        fields["args"] = tuple(str(a) for a in fields["args"] or ())
    if "timeout_seconds" in fields:
        fields["timeout_seconds"] = float(fields["timeout_seconds"])

    if base is not None:
        merged = {
            "binary": base.binary,
            "args": base.args,
            "timeout_seconds": base.timeout_seconds,
            "retry": base.retry,
        } | fields
    else:
        merged = {"binary": name} | fields
    if isinstance(retry_raw, dict):
        merged["retry"] = RetryConfig(**_pick(retry_raw, RetryConfig))
    return AgentConfig(name=name, **merged)


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    return value if isinstance(value, dict) else {}


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
