"""Configuration schema for concord YAML files.

All sections are frozen: a run receives one ``ConcordConfig`` at
construction time and never observes it changing.  Tests build a fresh
object instead of clearing a cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from concord.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_retries: int = 2
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 15.0
    jitter_ratio: float = 0.2


@dataclass(frozen=True, slots=True)
class AgentConfig:
    name: str
    binary: str
    args: tuple[str, ...] = ()
    timeout_seconds: float = 300.0
    retry: RetryConfig | None = None  # None = use ExecutionConfig.retry


@dataclass(frozen=True, slots=True)
class ExecutionConfig:
    max_output_length: int = 10_000
    kill_grace_seconds: float = 5.0
    max_parallel: int = 8
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass(frozen=True, slots=True)
class DebateConfig:
    default_agents: tuple[str, ...] = ("codex", "claude")
    max_rounds: int = 3
    confidence_threshold: int = 80
    output_dir: str = ".debate"
    min_valid_output_chars: int = 50
    disputed_risk_cap: int = 10


@dataclass(frozen=True, slots=True)
class ConfidenceWeights:
    agreement: float = 0.6
    pairwise: float = 0.4


@dataclass(frozen=True, slots=True)
class GitConfig:
    include_staged: bool = False
    max_diff_lines: int = 1000


def default_agents() -> dict[str, AgentConfig]:
    return {
        "codex": AgentConfig(
            name="codex",
            binary="codex",
            args=("exec", "--skip-git-repo-check"),
        ),
        "claude": AgentConfig(
            name="claude",
            binary="claude",
            args=("--print", "--dangerously-skip-permissions"),
        ),
        "gemini": AgentConfig(
            name="gemini",
            binary="gemini",
            args=("--prompt",),
        ),
    }


@dataclass(frozen=True, slots=True)
class ConcordConfig:
    version: int = 1
    agents: dict[str, AgentConfig] = field(default_factory=default_agents)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    debate: DebateConfig = field(default_factory=DebateConfig)
    confidence: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    git: GitConfig = field(default_factory=GitConfig)

    @property
    def agent_names(self) -> list[str]:
        return list(self.agents)

    def agent(self, name: str) -> AgentConfig:
        try:
            return self.agents[name]
        except KeyError:
            raise ConfigurationError(
                f'Agent "{name}" not found in configuration. '
                f"Available: {', '.join(self.agents)}",
                details={"agent": name, "available": list(self.agents)},
            ) from None

    def retry_for(self, name: str) -> RetryConfig:
        return self.agent(name).retry or self.execution.retry
